from __future__ import annotations
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional, Tuple
import hashlib
import logging

from jose import ExpiredSignatureError, JWTError, jwt
from passlib.context import CryptContext
from pydantic import BaseModel

from .errors import Unauthenticated, ValidationError
from .models import Role, User
from .settings import Settings

logging.getLogger('passlib').setLevel(logging.ERROR)
RESET_PURPOSE = "password_reset"
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


class Principal(BaseModel):
	user_id: int
	role: Role
	school: Optional[str] = None

	@property
	def is_admin(self) -> bool:
		return self.role == Role.admin


def _bcrypt_safe(password: str) -> str:
	# bcrypt only looks at the first 72 bytes
	password_bytes = password.encode('utf-8')
	if len(password_bytes) > 72:
		password_bytes = password_bytes[:72]
	return password_bytes.decode('utf-8', errors='ignore')


def hash_password(password: str) -> str:
	return pwd_context.hash(_bcrypt_safe(password))


def verify_password(plain_password: str, hashed_password: str) -> bool:
	return pwd_context.verify(_bcrypt_safe(plain_password), hashed_password)


def _resolve_expiry(settings: Settings, expires_delta: Optional[timedelta]) -> datetime:
	delta = expires_delta
	if delta is None:
		minutes = settings.access_token_expire_minutes
		delta = timedelta(minutes=minutes) if minutes > 0 else timedelta(days=1)
	return datetime.now(timezone.utc) + delta


def create_access_token(user: User, settings: Settings, expires_delta: Optional[timedelta] = None) -> str:
	to_encode: Dict[str, Any] = {
		"sub": str(user.id),
		"role": user.role,
		"school": user.school,
		"exp": _resolve_expiry(settings, expires_delta),
	}
	return jwt.encode(to_encode, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def verify(raw_token: Optional[str], settings: Settings) -> Principal:
	"""Decode a bearer token into a Principal.

	The claim is trusted as issued: the role is not re-read from the user table,
	so a role change takes effect when the user's token is next issued.
	"""
	if not raw_token or not raw_token.strip():
		raise Unauthenticated("Authentication token missing")
	try:
		payload = jwt.decode(
			raw_token.strip(),
			settings.jwt_secret_key,
			algorithms=[settings.jwt_algorithm],
			options={"require_exp": True},
		)
	except ExpiredSignatureError:
		raise Unauthenticated("Authentication token expired")
	except JWTError:
		raise Unauthenticated("Invalid authentication token")

	subject = payload.get("sub")
	role = payload.get("role")
	# Reset tokens share the signing key but never authenticate a request
	if subject is None or role is None or payload.get("purpose"):
		raise Unauthenticated("Malformed authentication token")
	try:
		user_id = int(subject)
		role_value = Role(role)
	except (TypeError, ValueError):
		raise Unauthenticated("Malformed authentication token")
	school = payload.get("school")
	return Principal(user_id=user_id, role=role_value, school=str(school) if school else None)


def password_fingerprint(password_hash: str) -> str:
	return hashlib.sha256(password_hash.encode("utf-8")).hexdigest()[:16]


def create_reset_token(user: User, settings: Settings, expires_delta: Optional[timedelta] = None) -> str:
	# The fingerprint ties the token to the current password, so it stops working once used
	delta = expires_delta if expires_delta is not None else timedelta(minutes=settings.reset_token_expire_minutes)
	to_encode: Dict[str, Any] = {
		"sub": str(user.id),
		"purpose": RESET_PURPOSE,
		"pwd": password_fingerprint(user.password_hash),
		"exp": datetime.now(timezone.utc) + delta,
	}
	return jwt.encode(to_encode, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def read_reset_token(raw_token: Optional[str], settings: Settings) -> Tuple[int, str]:
	"""Return (user id, password fingerprint) from a reset token."""
	if not raw_token or not raw_token.strip():
		raise ValidationError("Reset token is required")
	try:
		payload = jwt.decode(
			raw_token.strip(),
			settings.jwt_secret_key,
			algorithms=[settings.jwt_algorithm],
			options={"require_exp": True},
		)
	except ExpiredSignatureError:
		raise ValidationError("Reset link has expired")
	except JWTError:
		raise ValidationError("Reset link is invalid")
	if payload.get("purpose") != RESET_PURPOSE or not payload.get("pwd"):
		raise ValidationError("Reset link is invalid")
	try:
		user_id = int(payload.get("sub"))
	except (TypeError, ValueError):
		raise ValidationError("Reset link is invalid")
	return user_id, str(payload["pwd"])
