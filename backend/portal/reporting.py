from __future__ import annotations
from typing import Any, Dict, List, Sequence

from .authz import ADMIN_ONLY, REVIEWERS, authorize
from .models import CriteriaRecord, Status, User, record_to_dict, user_summary, user_to_dict
from .security import Principal
from .store import CriteriaStore
from .users import UserDirectory

SUBMITTED_OR_LATER = (Status.submitted, Status.reviewed, Status.rejected)


def _name_key(user: User):
	# Plain code-point order, so "Zed" comes before "amy"
	return (user.name or "", user.id)


class ReportingEngine:
	"""Read-only views across users and schools. Authorization always runs before any query."""

	def __init__(self, store: CriteriaStore, users: UserDirectory) -> None:
		self.store = store
		self.users = users

	def all_files_across_users(self, principal: Principal) -> List[Dict[str, Any]]:
		authorize(principal, ADMIN_ONLY)
		records = self.store.find_all_with_files()
		owners = self.users.get_many(r.owner_user_id for r in records)
		rows = []
		for record in records:
			owner = owners.get(record.owner_user_id)
			if owner is None:
				continue
			rows.append((record, owner))
		rows.sort(key=lambda pair: (pair[0].criteria_number, _name_key(pair[1]), pair[0].metric_number, pair[0].id))
		return [
			{
				"id": record.id,
				"criteriaNumber": record.criteria_number,
				"metricNumber": record.metric_number,
				"files": list(record.files or []),
				"status": record.status,
				"createdAt": record.created_at.isoformat() if record.created_at else None,
				"user": user_summary(owner),
			}
			for record, owner in rows
		]

	def users_with_submitted_data(self, principal: Principal) -> List[Dict[str, Any]]:
		authorize(principal, ADMIN_ONLY)
		return self._group_by_owner(self.store.find_by_statuses(SUBMITTED_OR_LATER))

	def school_data(self, school: str, principal: Principal) -> List[Dict[str, Any]]:
		authorize(principal, REVIEWERS, scope_school=school)
		return self._group_by_owner(self.store.find_by_school(school))

	def _group_by_owner(self, records: Sequence[CriteriaRecord]) -> List[Dict[str, Any]]:
		grouped: Dict[int, List[CriteriaRecord]] = {}
		for record in records:
			grouped.setdefault(record.owner_user_id, []).append(record)
		owners = self.users.get_many(grouped.keys())
		out = []
		for owner in sorted(owners.values(), key=_name_key):
			items = grouped[owner.id]
			out.append({
				"user": user_to_dict(owner),
				"count": len(items),
				"records": [record_to_dict(r) for r in items],
			})
		return out
