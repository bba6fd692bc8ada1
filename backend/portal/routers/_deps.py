from __future__ import annotations
from typing import Any, Dict, Optional

from fastapi import Request

from ..blob_store import BlobStore
from ..lifecycle import CriteriaLifecycle
from ..password_reset import PasswordReset
from ..reporting import ReportingEngine
from ..settings import Settings
from ..users import UserDirectory


def get_settings(request: Request) -> Settings:
	return request.app.state.settings


def get_users(request: Request) -> UserDirectory:
	return request.app.state.users


def get_lifecycle(request: Request) -> CriteriaLifecycle:
	return request.app.state.lifecycle


def get_password_reset(request: Request) -> PasswordReset:
	return request.app.state.password_reset


def get_reporting(request: Request) -> ReportingEngine:
	return request.app.state.reporting


def get_blob_store(request: Request) -> BlobStore:
	return request.app.state.blob_store


def envelope(data: Any = None, *, message: Optional[str] = None, count: Optional[int] = None) -> Dict[str, Any]:
	body: Dict[str, Any] = {"success": True}
	if message is not None:
		body["message"] = message
	if data is not None:
		body["data"] = data
	if count is not None:
		body["count"] = count
	return body
