from fastapi import APIRouter, Depends
from fastapi.security import OAuth2PasswordRequestForm
from pydantic import BaseModel

from ..authz import require_roles
from ..errors import NotFound, Unauthenticated
from ..models import Role, user_to_dict
from ..password_reset import PasswordReset
from ..security import Principal, create_access_token
from ..settings import Settings
from ..users import UserDirectory
from ._deps import envelope, get_password_reset, get_settings, get_users

router = APIRouter(prefix="/auth", tags=["auth"])


class RegisterRequest(BaseModel):
	name: str
	email: str
	password: str
	school: str


class Token(BaseModel):
	access_token: str
	token_type: str = "bearer"


class ForgotPasswordRequest(BaseModel):
	email: str


class ResetPasswordRequest(BaseModel):
	token: str
	password: str


@router.post("/register", status_code=201)
def register(req: RegisterRequest, users: UserDirectory = Depends(get_users), settings: Settings = Depends(get_settings)):
	# Self-registration always yields a plain user; other roles come from /admin/users
	user = users.create(name=req.name, email=req.email, password=req.password, role=Role.user, school=req.school)
	token = create_access_token(user, settings)
	return envelope(
		{"user": user_to_dict(user), "token": Token(access_token=token).model_dump()},
		message="Registration successful",
	)


@router.post("/token")
def login(
	form_data: OAuth2PasswordRequestForm = Depends(),
	users: UserDirectory = Depends(get_users),
	settings: Settings = Depends(get_settings),
):
	user = users.authenticate(form_data.username, form_data.password)
	if not user:
		raise Unauthenticated("Incorrect email or password")
	# Token fields stay top-level so OAuth2 password-flow clients can read them
	token = Token(access_token=create_access_token(user, settings))
	return {**envelope(), **token.model_dump()}


@router.get("/me")
def me(principal: Principal = Depends(require_roles()), users: UserDirectory = Depends(get_users)):
	user = users.get(principal.user_id)
	if user is None:
		raise NotFound("User not found")
	profile = user_to_dict(user)
	# Role and school as carried by the token, which is what authorization uses
	profile["role"] = principal.role.value
	profile["school"] = principal.school
	return envelope(profile)


@router.post("/forgot-password")
def forgot_password(req: ForgotPasswordRequest, reset: PasswordReset = Depends(get_password_reset)):
	reset.request(req.email)
	return envelope(message="If that email is registered, a password reset link has been sent")


@router.post("/reset-password")
def reset_password(req: ResetPasswordRequest, reset: PasswordReset = Depends(get_password_reset)):
	reset.reset(req.token, req.password)
	return envelope(message="Password has been reset")
