from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from ..authz import ADMIN_ONLY, require_roles
from ..models import Role, user_to_dict
from ..reporting import ReportingEngine
from ..security import Principal
from ..users import UserDirectory
from ._deps import envelope, get_reporting, get_users

router = APIRouter(prefix="/admin", tags=["admin"])


class CreateUserRequest(BaseModel):
	name: str
	email: str
	password: str
	role: Role = Role.user
	school: Optional[str] = None


@router.get("/files")
def all_files(
	principal: Principal = Depends(require_roles(*ADMIN_ONLY)),
	reporting: ReportingEngine = Depends(get_reporting),
):
	rows = reporting.all_files_across_users(principal)
	return envelope(rows, count=len(rows))


@router.post("/users", status_code=201)
def create_user(
	req: CreateUserRequest,
	principal: Principal = Depends(require_roles(*ADMIN_ONLY)),
	users: UserDirectory = Depends(get_users),
):
	user = users.create(name=req.name, email=req.email, password=req.password, role=req.role, school=req.school)
	return envelope(user_to_dict(user), message="User created")
