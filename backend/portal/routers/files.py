from __future__ import annotations
import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile
from starlette.concurrency import run_in_threadpool

from ..authz import CONTENT_EDITORS, require_roles
from ..blob_store import BlobStore, file_descriptor, validate_upload
from ..lifecycle import CriteriaLifecycle
from ..models import record_to_dict
from ..security import Principal
from ..settings import Settings
from ._deps import envelope, get_blob_store, get_lifecycle, get_settings

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/files", tags=["files"])


@router.post("/upload")
async def upload_file(
	criteria_number: int = Form(..., alias="criteriaNumber"),
	metric_number: str = Form(..., alias="metricNumber"),
	owner_user_id: Optional[int] = Form(default=None, alias="ownerUserId"),
	file: UploadFile = File(...),
	principal: Principal = Depends(require_roles(*CONTENT_EDITORS)),
	lifecycle: CriteriaLifecycle = Depends(get_lifecycle),
	blob_store: BlobStore = Depends(get_blob_store),
	settings: Settings = Depends(get_settings),
):
	original_name = file.filename or ""
	if file.size is not None:
		validate_upload(original_name, file.size, settings)
	# Never hold more than one byte past the limit in memory
	content = await file.read(settings.max_upload_bytes + 1)
	validate_upload(original_name, len(content), settings)
	# Fail fast on locked records before sending bytes anywhere
	await run_in_threadpool(
		lifecycle.ensure_editable, principal, criteria_number, metric_number, owner_user_id=owner_user_id
	)

	ref = await blob_store.upload(
		content,
		{
			"filename": original_name,
			"content_type": file.content_type,
			"criteria_number": criteria_number,
			"metric_number": metric_number,
			"user_id": principal.user_id,
		},
	)
	logger.info("Uploaded %s (%d bytes) for user %s -> %s", original_name, ref.size, principal.user_id, ref.url)

	# The record only references the blob once the store has confirmed it
	record = await run_in_threadpool(
		lifecycle.attach_files,
		principal,
		criteria_number,
		metric_number,
		[file_descriptor(original_name, ref)],
		owner_user_id=owner_user_id,
	)
	return envelope(record_to_dict(record), message="File uploaded successfully")
