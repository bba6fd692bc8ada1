from __future__ import annotations
import logging
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from sqlalchemy import case, select, update
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from .db import Database
from .errors import DuplicateKey, InvalidTransition, NotFound, PortalError, StorageUnavailable
from .models import CriteriaRecord, Status, utcnow

logger = logging.getLogger(__name__)

Guard = Callable[[CriteriaRecord], None]


def _ordered(stmt):
	return stmt.order_by(CriteriaRecord.criteria_number, CriteriaRecord.metric_number, CriteriaRecord.id)


class CriteriaStore:
	"""Persistence for criteria records.

	Every call runs in its own short session, so one instance is shared by all
	requests. Writes touch a single row; the natural-key unique constraint is
	what keeps concurrent upserts from creating duplicates.
	"""

	def __init__(self, database: Database) -> None:
		self.database = database

	def get(self, record_id: int) -> Optional[CriteriaRecord]:
		try:
			with self.database.session() as db:
				return db.get(CriteriaRecord, record_id)
		except OperationalError as err:
			raise StorageUnavailable() from err

	def find_by_owner_and_key(self, owner_user_id: int, criteria_number: int, metric_number: str) -> Optional[CriteriaRecord]:
		try:
			with self.database.session() as db:
				return self._find_key(db, owner_user_id, criteria_number, metric_number)
		except OperationalError as err:
			raise StorageUnavailable() from err

	def upsert(
		self,
		owner_user_id: int,
		school: Optional[str],
		criteria_number: int,
		metric_number: str,
		payload: Dict[str, Any],
		appended_files: Sequence[Dict[str, Any]] = (),
		*,
		replace_files: bool = False,
		guard: Optional[Guard] = None,
	) -> CriteriaRecord:
		conflict: Optional[PortalError] = None
		try:
			with self.database.session() as db:
				# Later passes only run when a concurrent writer got there first
				for _ in range(2):
					record = self._find_key(db, owner_user_id, criteria_number, metric_number)
					if record is not None:
						if guard is not None:
							guard(record)
						self._merge(record, payload, appended_files, replace_files)
						try:
							# The version check makes the guard's view of the row the one being written
							db.commit()
						except StaleDataError:
							db.rollback()
							logger.info("Record %s changed during save, checking it again", record.id)
							conflict = InvalidTransition("Record changed while saving, please retry")
							continue
						return record
					record = CriteriaRecord(
						owner_user_id=owner_user_id,
						school=school,
						criteria_number=criteria_number,
						metric_number=metric_number,
						payload=dict(payload),
						files=list(appended_files),
						status=Status.draft.value,
					)
					db.add(record)
					try:
						db.commit()
					except IntegrityError:
						db.rollback()
						logger.info(
							"Upsert conflict on user=%s criteria=%s metric=%s, merging onto existing record",
							owner_user_id, criteria_number, metric_number,
						)
						conflict = DuplicateKey()
						continue
					return record
		except OperationalError as err:
			raise StorageUnavailable() from err
		raise conflict or DuplicateKey()

	def transition(self, record_id: int, allowed: Iterable[Status], status: Status) -> Optional[CriteriaRecord]:
		"""Move a record to ``status`` only if it is currently in one of ``allowed``.

		Check and write are one UPDATE, so two racing callers cannot both act on the
		same prior status. Returns None when the record is in some other status.
		"""
		table = CriteriaRecord.__table__
		now = utcnow()
		stmt = (
			update(table)
			.where(table.c.id == record_id, table.c.status.in_([s.value for s in allowed]))
			.values(
				status=status.value,
				updated_at=case((table.c.created_at > now, table.c.created_at), else_=now),
				version=table.c.version + 1,
			)
		)
		try:
			with self.database.session() as db:
				result = db.execute(stmt)
				if result.rowcount == 0:
					db.rollback()
					if db.get(CriteriaRecord, record_id) is None:
						raise NotFound("Criteria record not found")
					return None
				db.commit()
				return db.get(CriteriaRecord, record_id)
		except OperationalError as err:
			raise StorageUnavailable() from err

	def set_status(self, record_id: int, status: Status) -> CriteriaRecord:
		"""Unconditional status write."""
		return self.transition(record_id, Status, status)

	def find_by_owner(self, owner_user_id: int, criteria_number: Optional[int] = None) -> List[CriteriaRecord]:
		stmt = select(CriteriaRecord).where(CriteriaRecord.owner_user_id == owner_user_id)
		if criteria_number is not None:
			stmt = stmt.where(CriteriaRecord.criteria_number == criteria_number)
		return self._all(_ordered(stmt))

	def find_all_with_files(self) -> List[CriteriaRecord]:
		# JSON emptiness is not portable across dialects; filter in Python
		return [r for r in self._all(_ordered(select(CriteriaRecord))) if r.files]

	def find_by_school(self, school: str) -> List[CriteriaRecord]:
		return self._all(_ordered(select(CriteriaRecord).where(CriteriaRecord.school == school)))

	def find_by_statuses(self, statuses: Iterable[Status]) -> List[CriteriaRecord]:
		values = [s.value for s in statuses]
		return self._all(_ordered(select(CriteriaRecord).where(CriteriaRecord.status.in_(values))))

	def _all(self, stmt) -> List[CriteriaRecord]:
		try:
			with self.database.session() as db:
				return list(db.execute(stmt).scalars().all())
		except OperationalError as err:
			raise StorageUnavailable() from err

	@staticmethod
	def _find_key(db: Session, owner_user_id: int, criteria_number: int, metric_number: str) -> Optional[CriteriaRecord]:
		return db.execute(
			select(CriteriaRecord).where(
				CriteriaRecord.owner_user_id == owner_user_id,
				CriteriaRecord.criteria_number == criteria_number,
				CriteriaRecord.metric_number == metric_number,
			)
		).scalars().first()

	@staticmethod
	def _merge(
		record: CriteriaRecord,
		payload: Dict[str, Any],
		appended_files: Sequence[Dict[str, Any]],
		replace_files: bool,
	) -> None:
		# Reassign rather than mutate so the JSON columns are flagged dirty
		record.payload = {**(record.payload or {}), **payload}
		if replace_files:
			record.files = list(appended_files)
		elif appended_files:
			record.files = list(record.files or []) + list(appended_files)
		record.touch()
