from __future__ import annotations
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from ..authz import ADMIN_ONLY, ANY_ROLE, CONTENT_EDITORS, REVIEWERS, require_roles
from ..lifecycle import CriteriaLifecycle
from ..models import record_to_dict, utcnow
from ..reporting import ReportingEngine
from ..security import Principal
from ._deps import envelope, get_lifecycle, get_reporting

router = APIRouter(prefix="/criteria", tags=["criteria"])


class _CamelModel(BaseModel):
	model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class FileDescriptor(_CamelModel):
	url: str = Field(min_length=1)
	original_name: str = Field(min_length=1)
	size: int = Field(ge=0)
	uploaded_at: Optional[str] = None

	def to_record(self) -> Dict[str, Any]:
		data = self.model_dump(by_alias=True)
		if not data.get("uploadedAt"):
			data["uploadedAt"] = utcnow().isoformat()
		return data


class SaveRequest(_CamelModel):
	criteria_number: int = Field(ge=1)
	metric_number: str = Field(min_length=1, max_length=32)
	payload: Dict[str, Any] = Field(default_factory=dict)
	files: List[FileDescriptor] = Field(default_factory=list)
	# Admin only: save on behalf of another user
	owner_user_id: Optional[int] = None
	# Replace the attachment list instead of appending to it
	replace_files: bool = False

	@field_validator("metric_number", mode="before")
	@classmethod
	def _metric_as_text(cls, value: Any) -> Any:
		if isinstance(value, (int, float)) and not isinstance(value, bool):
			return str(value)
		return value


class ReviewRequest(BaseModel):
	decision: str


@router.post("/save")
def save_criteria(
	req: SaveRequest,
	principal: Principal = Depends(require_roles(*CONTENT_EDITORS)),
	lifecycle: CriteriaLifecycle = Depends(get_lifecycle),
):
	record = lifecycle.save(
		principal,
		req.criteria_number,
		req.metric_number,
		req.payload,
		[f.to_record() for f in req.files],
		owner_user_id=req.owner_user_id,
		replace_files=req.replace_files,
	)
	return envelope(record_to_dict(record), message="Criteria data saved successfully")


@router.get("")
def list_own_criteria(
	principal: Principal = Depends(require_roles(*ANY_ROLE)),
	lifecycle: CriteriaLifecycle = Depends(get_lifecycle),
):
	records = lifecycle.own_records(principal)
	return envelope([record_to_dict(r) for r in records], count=len(records))


@router.get("/admin/users")
def users_with_data(
	principal: Principal = Depends(require_roles(*ADMIN_ONLY)),
	reporting: ReportingEngine = Depends(get_reporting),
):
	users = reporting.users_with_submitted_data(principal)
	return envelope(users, count=len(users))


@router.get("/school/{school}")
def school_data(
	school: str,
	principal: Principal = Depends(require_roles(*REVIEWERS)),
	reporting: ReportingEngine = Depends(get_reporting),
):
	groups = reporting.school_data(school, principal)
	return envelope(groups, count=len(groups))


@router.put("/submit/{record_id}")
def submit_criteria(
	record_id: int,
	principal: Principal = Depends(require_roles(*ANY_ROLE)),
	lifecycle: CriteriaLifecycle = Depends(get_lifecycle),
):
	record = lifecycle.submit(record_id, principal)
	return envelope(record_to_dict(record), message="Criteria data submitted successfully")


@router.put("/review/{record_id}")
def review_criteria(
	record_id: int,
	req: ReviewRequest,
	principal: Principal = Depends(require_roles(*REVIEWERS)),
	lifecycle: CriteriaLifecycle = Depends(get_lifecycle),
):
	record = lifecycle.review(record_id, principal, req.decision)
	return envelope(record_to_dict(record), message=f"Criteria data {record.status}")


@router.put("/reopen/{record_id}")
def reopen_criteria(
	record_id: int,
	principal: Principal = Depends(require_roles(*ADMIN_ONLY)),
	lifecycle: CriteriaLifecycle = Depends(get_lifecycle),
):
	record = lifecycle.reopen(record_id, principal)
	return envelope(record_to_dict(record), message="Criteria data reopened")


@router.get("/{criteria_number}")
def get_criteria(
	criteria_number: int,
	principal: Principal = Depends(require_roles(*ANY_ROLE)),
	lifecycle: CriteriaLifecycle = Depends(get_lifecycle),
):
	records = lifecycle.own_records(principal, criteria_number)
	return envelope([record_to_dict(r) for r in records], count=len(records))
