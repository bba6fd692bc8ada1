from __future__ import annotations
import logging
from typing import Dict, Iterable, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, OperationalError

from .db import Database
from .errors import DuplicateKey, StorageUnavailable, ValidationError
from .models import Role, User, utcnow
from .security import hash_password, verify_password
from .settings import Settings

logger = logging.getLogger(__name__)


class UserDirectory:
	"""Resolves user ids to profiles and manages accounts."""

	def __init__(self, database: Database) -> None:
		self.database = database

	def get(self, user_id: int) -> Optional[User]:
		try:
			with self.database.session() as db:
				return db.get(User, user_id)
		except OperationalError as err:
			raise StorageUnavailable() from err

	def get_many(self, user_ids: Iterable[int]) -> Dict[int, User]:
		ids = {int(x) for x in user_ids}
		if not ids:
			return {}
		try:
			with self.database.session() as db:
				rows = db.execute(select(User).where(User.id.in_(ids))).scalars().all()
		except OperationalError as err:
			raise StorageUnavailable() from err
		return {u.id: u for u in rows}

	def find_by_email(self, email: str) -> Optional[User]:
		try:
			with self.database.session() as db:
				return db.execute(select(User).where(User.email == _normalize_email(email))).scalars().first()
		except OperationalError as err:
			raise StorageUnavailable() from err

	def create(self, *, name: str, email: str, password: str, role: Role = Role.user, school: Optional[str] = None) -> User:
		name = (name or "").strip()
		email = _normalize_email(email)
		school = (school or "").strip() or None
		if not name or not email or not password:
			raise ValidationError("name, email and password are required")
		if "@" not in email:
			raise ValidationError("email is not valid")
		_check_password(password)
		if role != Role.admin and school is None:
			raise ValidationError("school is required")
		row = User(name=name, email=email, password_hash=hash_password(password), role=role.value, school=school)
		try:
			with self.database.session() as db:
				db.add(row)
				try:
					db.commit()
				except IntegrityError:
					db.rollback()
					raise DuplicateKey("Email already registered")
				db.refresh(row)
		except OperationalError as err:
			raise StorageUnavailable() from err
		logger.info("Created %s account %s (school=%s)", row.role, row.email, row.school)
		return row

	def change_password(self, user_id: int, password: str, *, expected_hash: Optional[str] = None) -> bool:
		"""Store a new password hash. With ``expected_hash`` the write only happens if the stored hash still matches."""
		_check_password(password)
		stmt = update(User.__table__).where(User.__table__.c.id == user_id)
		if expected_hash is not None:
			stmt = stmt.where(User.__table__.c.password_hash == expected_hash)
		stmt = stmt.values(password_hash=hash_password(password), updated_at=utcnow())
		try:
			with self.database.session() as db:
				changed = db.execute(stmt).rowcount > 0
				db.commit()
		except OperationalError as err:
			raise StorageUnavailable() from err
		if changed:
			logger.info("Password changed for user %s", user_id)
		return changed

	def authenticate(self, email: str, password: str) -> Optional[User]:
		user = self.find_by_email(email)
		if user is None or not verify_password(password, user.password_hash):
			return None
		return user

	def ensure_seed_admin(self, settings: Settings) -> Optional[User]:
		email = settings.seed_admin_email
		password = settings.seed_admin_password
		if not email or not password:
			return None
		existing = self.find_by_email(email)
		if existing is not None:
			return existing
		try:
			return self.create(
				name=settings.seed_admin_name,
				email=email,
				password=password,
				role=Role.admin,
				school=settings.seed_admin_school,
			)
		except DuplicateKey:
			# Another worker seeded it first
			return self.find_by_email(email)


def _normalize_email(email: str) -> str:
	return (email or "").strip().lower()


def _check_password(password: str) -> None:
	if len(password or "") < 6:
		raise ValidationError("password must be at least 6 characters")
