from __future__ import annotations
from typing import Callable, FrozenSet, Iterable, Optional

from fastapi import Depends, Request
from fastapi.security import OAuth2PasswordBearer

from .errors import Forbidden
from .models import Role
from .security import Principal, verify


ANY_ROLE: FrozenSet[Role] = frozenset(Role)
CONTENT_EDITORS: FrozenSet[Role] = frozenset({Role.user, Role.admin})
REVIEWERS: FrozenSet[Role] = frozenset({Role.school_admin, Role.admin})
ADMIN_ONLY: FrozenSet[Role] = frozenset({Role.admin})

# auto_error=False so a missing header goes through verify() and the envelope handler
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/token", auto_error=False)


def authorize(principal: Principal, required_roles: Iterable[Role], scope_school: Optional[str] = None) -> None:
	"""Admit or raise Forbidden. Every role decision in the portal goes through here."""
	if principal.role not in frozenset(required_roles):
		raise Forbidden("Access denied for role '%s'" % principal.role.value)
	if scope_school is not None and principal.role != Role.admin and principal.school != scope_school:
		raise Forbidden("Access denied for school '%s'" % scope_school)


def get_current_principal(request: Request, token: Optional[str] = Depends(oauth2_scheme)) -> Principal:
	return verify(token, request.app.state.settings)


def require_roles(*roles: Role) -> Callable[..., Principal]:
	required = frozenset(roles) if roles else ANY_ROLE

	def dependency(principal: Principal = Depends(get_current_principal)) -> Principal:
		authorize(principal, required)
		return principal

	return dependency
