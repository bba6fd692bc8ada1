from __future__ import annotations
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict

from sqlalchemy import Column, String, DateTime, Integer, JSON, ForeignKey, UniqueConstraint
from .db import Base


class Role(str, Enum):
	user = "user"
	school_admin = "school_admin"
	admin = "admin"


class Status(str, Enum):
	draft = "draft"
	submitted = "submitted"
	reviewed = "reviewed"
	rejected = "rejected"


def utcnow() -> datetime:
	# Naive UTC, matching what SQLite hands back
	return datetime.now(timezone.utc).replace(tzinfo=None)


class User(Base):
	__tablename__ = "users"
	id = Column(Integer, primary_key=True, autoincrement=True)
	name = Column(String(128), nullable=False)
	email = Column(String(256), nullable=False, unique=True, index=True)
	password_hash = Column(String(256), nullable=False)
	role = Column(String(32), nullable=False, default=Role.user.value)
	school = Column(String(256), nullable=True, index=True)
	created_at = Column(DateTime, default=utcnow, nullable=False)
	updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)


class CriteriaRecord(Base):
	__tablename__ = "criteria_records"
	# One record per owner and (criteria, metric) pair
	__table_args__ = (
		UniqueConstraint("owner_user_id", "criteria_number", "metric_number", name="uq_criteria_owner_key"),
	)
	id = Column(Integer, primary_key=True, autoincrement=True)
	owner_user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
	school = Column(String(256), nullable=True, index=True)
	criteria_number = Column(Integer, nullable=False, index=True)
	metric_number = Column(String(32), nullable=False)
	payload = Column(JSON, nullable=False, default=dict)
	files = Column(JSON, nullable=False, default=list)
	status = Column(String(16), nullable=False, default=Status.draft.value, index=True)
	created_at = Column(DateTime, default=utcnow, nullable=False)
	updated_at = Column(DateTime, default=utcnow, nullable=False)
	# Bumped on every write; an UPDATE against a stale version matches no row
	version = Column(Integer, nullable=False)

	__mapper_args__ = {"version_id_col": version}

	def touch(self) -> None:
		now = utcnow()
		created = self.created_at or now
		self.updated_at = now if now >= created else created


def _iso(value: datetime | None) -> str | None:
	return value.isoformat() if value is not None else None


def user_summary(user: User) -> Dict[str, Any]:
	return {"id": user.id, "name": user.name, "email": user.email}


def user_to_dict(user: User) -> Dict[str, Any]:
	return {
		"id": user.id,
		"name": user.name,
		"email": user.email,
		"role": user.role,
		"school": user.school,
		"createdAt": _iso(user.created_at),
	}


def record_to_dict(record: CriteriaRecord) -> Dict[str, Any]:
	return {
		"id": record.id,
		"ownerUserId": record.owner_user_id,
		"school": record.school,
		"criteriaNumber": record.criteria_number,
		"metricNumber": record.metric_number,
		"payload": dict(record.payload or {}),
		"files": list(record.files or []),
		"status": record.status,
		"createdAt": _iso(record.created_at),
		"updatedAt": _iso(record.updated_at),
	}
