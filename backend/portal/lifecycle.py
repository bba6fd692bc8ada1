from __future__ import annotations
import logging
import math
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from .authz import ADMIN_ONLY, CONTENT_EDITORS, REVIEWERS, authorize
from .errors import Forbidden, InvalidTransition, NotFound, RecordLocked, ValidationError
from .models import CriteriaRecord, Role, Status
from .security import Principal
from .store import CriteriaStore
from .users import UserDirectory

logger = logging.getLogger(__name__)

LOCKED_STATUSES = frozenset({Status.submitted, Status.reviewed})
REOPENABLE_STATUSES = frozenset({Status.submitted, Status.reviewed, Status.rejected})
DECISIONS: Dict[str, Status] = {"approve": Status.reviewed, "reject": Status.rejected}

MAX_PAYLOAD_DEPTH = 8


def validate_payload(payload: Any, *, _path: str = "payload", _depth: int = 0) -> Dict[str, Any]:
	"""Check the open field mapping: string keys, values are str/number/bool or a nested mapping."""
	if not isinstance(payload, Mapping):
		raise ValidationError("%s must be an object" % _path)
	if _depth > MAX_PAYLOAD_DEPTH:
		raise ValidationError("%s is nested too deeply" % _path)
	out: Dict[str, Any] = {}
	for key, value in payload.items():
		if not isinstance(key, str) or not key.strip():
			raise ValidationError("%s has an empty or non-string field name" % _path)
		field = "%s.%s" % (_path, key)
		if isinstance(value, Mapping):
			out[key] = validate_payload(value, _path=field, _depth=_depth + 1)
		elif isinstance(value, float) and not math.isfinite(value):
			# NaN and Infinity parse from lenient JSON but cannot be written back out
			raise ValidationError("%s must be a finite number" % field)
		elif isinstance(value, (str, bool, int, float)):
			out[key] = value
		else:
			raise ValidationError("%s must be a string, number, boolean or object" % field)
	return out


def validate_key(criteria_number: Any, metric_number: Any) -> tuple[int, str]:
	if isinstance(criteria_number, bool) or not isinstance(criteria_number, int) or criteria_number < 1:
		raise ValidationError("criteriaNumber must be a positive integer")
	metric = str(metric_number).strip() if metric_number is not None else ""
	if not metric or len(metric) > 32:
		raise ValidationError("metricNumber is required")
	return criteria_number, metric


class CriteriaLifecycle:
	def __init__(self, store: CriteriaStore, users: UserDirectory) -> None:
		self.store = store
		self.users = users

	def _load(self, record_id: int) -> CriteriaRecord:
		record = self.store.get(record_id)
		if record is None:
			raise NotFound("Criteria record not found")
		return record

	def _resolve_owner(self, principal: Principal, owner_user_id: Optional[int]) -> tuple[int, Optional[str]]:
		if owner_user_id is None or owner_user_id == principal.user_id:
			if principal.role == Role.admin:
				# Admins may have no school; fall back to the directory entry
				owner = self.users.get(principal.user_id)
				return principal.user_id, (owner.school if owner else principal.school)
			return principal.user_id, principal.school
		if not principal.is_admin:
			raise Forbidden("Only an admin may edit another user's records")
		owner = self.users.get(owner_user_id)
		if owner is None:
			raise NotFound("User not found")
		return owner.id, owner.school

	def _lock_guard(self, principal: Principal):
		def guard(record: CriteriaRecord) -> None:
			if Status(record.status) in LOCKED_STATUSES and not principal.is_admin:
				raise RecordLocked("Record is %s and can no longer be edited" % record.status)
		return guard

	def ensure_editable(self, principal: Principal, criteria_number: int, metric_number: str, *, owner_user_id: Optional[int] = None) -> None:
		authorize(principal, CONTENT_EDITORS)
		criteria_number, metric_number = validate_key(criteria_number, metric_number)
		owner_id, _ = self._resolve_owner(principal, owner_user_id)
		record = self.store.find_by_owner_and_key(owner_id, criteria_number, metric_number)
		if record is not None:
			self._lock_guard(principal)(record)

	def save(
		self,
		principal: Principal,
		criteria_number: int,
		metric_number: str,
		payload: Mapping[str, Any],
		files: Sequence[Dict[str, Any]] = (),
		*,
		owner_user_id: Optional[int] = None,
		replace_files: bool = False,
	) -> CriteriaRecord:
		authorize(principal, CONTENT_EDITORS)
		criteria_number, metric_number = validate_key(criteria_number, metric_number)
		clean = validate_payload(payload)
		owner_id, school = self._resolve_owner(principal, owner_user_id)
		record = self.store.upsert(
			owner_id,
			school,
			criteria_number,
			metric_number,
			clean,
			list(files),
			replace_files=replace_files,
			guard=self._lock_guard(principal),
		)
		logger.info(
			"Saved criteria %s metric %s for user %s by %s (record=%s, files=%d)",
			criteria_number, metric_number, owner_id, principal.user_id, record.id, len(record.files or []),
		)
		return record

	def attach_files(
		self,
		principal: Principal,
		criteria_number: int,
		metric_number: str,
		files: Sequence[Dict[str, Any]],
		*,
		owner_user_id: Optional[int] = None,
	) -> CriteriaRecord:
		return self.save(principal, criteria_number, metric_number, {}, files, owner_user_id=owner_user_id)

	def _transition(self, record: CriteriaRecord, allowed: Iterable[Status], target: Status, message: str) -> CriteriaRecord:
		# The store re-checks the status in the same statement that writes it
		updated = self.store.transition(record.id, allowed, target)
		if updated is None:
			current = self._load(record.id)
			raise InvalidTransition(message % current.status)
		return updated

	def submit(self, record_id: int, principal: Principal) -> CriteriaRecord:
		record = self._load(record_id)
		if record.owner_user_id != principal.user_id:
			raise InvalidTransition("Only the owner may submit this record")
		message = "Cannot submit a record that is %s"
		if record.status != Status.draft.value:
			raise InvalidTransition(message % record.status)
		record = self._transition(record, (Status.draft,), Status.submitted, message)
		logger.info("Record %s submitted by user %s", record.id, principal.user_id)
		return record

	def review(self, record_id: int, principal: Principal, decision: str) -> CriteriaRecord:
		target = DECISIONS.get((decision or "").strip().lower())
		if target is None:
			raise ValidationError("decision must be 'approve' or 'reject'")
		authorize(principal, REVIEWERS)
		record = self._load(record_id)
		authorize(principal, REVIEWERS, scope_school=record.school or "")
		message = "Only submitted records can be reviewed (record is %s)"
		if record.status != Status.submitted.value:
			raise InvalidTransition(message % record.status)
		record = self._transition(record, (Status.submitted,), target, message)
		logger.info("Record %s %s by %s %s", record.id, target.value, principal.role.value, principal.user_id)
		return record

	def reopen(self, record_id: int, principal: Principal) -> CriteriaRecord:
		authorize(principal, ADMIN_ONLY)
		record = self._load(record_id)
		if Status(record.status) not in REOPENABLE_STATUSES:
			raise InvalidTransition("Record is already a draft")
		record = self._transition(record, REOPENABLE_STATUSES, Status.draft, "Cannot reopen a record that is %s")
		logger.info("Record %s reopened by admin %s", record.id, principal.user_id)
		return record

	def own_records(self, principal: Principal, criteria_number: Optional[int] = None) -> List[CriteriaRecord]:
		return self.store.find_by_owner(principal.user_id, criteria_number)
