from __future__ import annotations
import asyncio
import logging
import re
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import httpx

from .errors import StorageUnavailable, ValidationError
from .models import utcnow
from .settings import Settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BlobRef:
	url: str
	size: int


def _clean_name(value: str) -> str:
	cleaned = re.sub(r"[^A-Za-z0-9._-]+", "_", (value or "").strip())
	return cleaned or "file"


def validate_upload(filename: str, size: int, settings: Settings) -> None:
	if not filename:
		raise ValidationError("A file name is required")
	if size <= 0:
		raise ValidationError("Uploaded file is empty")
	if size > settings.max_upload_bytes:
		limit_mb = settings.max_upload_bytes / (1024 * 1024)
		raise ValidationError("File too large. Maximum size is %gMB." % limit_mb)
	ext = Path(filename).suffix.lower().lstrip(".")
	if ext not in settings.allowed_extensions:
		raise ValidationError("Invalid file type '.%s'. Allowed: %s" % (ext, ", ".join(settings.allowed_extensions)))


def file_descriptor(original_name: str, ref: BlobRef) -> Dict[str, Any]:
	return {
		"url": ref.url,
		"originalName": original_name,
		"size": ref.size,
		"uploadedAt": utcnow().isoformat(),
	}


class BlobStore:
	async def upload(self, data: bytes, metadata: Dict[str, Any]) -> BlobRef:
		raise NotImplementedError

	async def aclose(self) -> None:
		return None


class LocalBlobStore(BlobStore):
	"""Writes blobs under a directory that the app serves at /uploads."""

	def __init__(self, root: str, public_base_url: str) -> None:
		self.root = Path(root)
		self.public_base_url = public_base_url.rstrip("/")

	async def upload(self, data: bytes, metadata: Dict[str, Any]) -> BlobRef:
		name = "%s_%s" % (uuid.uuid4().hex, _clean_name(str(metadata.get("filename", ""))))
		path = self.root / name
		try:
			self.root.mkdir(parents=True, exist_ok=True)
			await asyncio.to_thread(path.write_bytes, data)
		except OSError as err:
			logger.error("Local blob write failed for %s: %s", path, err)
			raise StorageUnavailable() from err
		return BlobRef(url=f"{self.public_base_url}/uploads/{name}", size=len(data))


class HttpBlobStore(BlobStore):
	"""Posts blobs to an external store that answers with JSON {url, size}."""

	def __init__(self, base_url: str, *, token: Optional[str] = None, timeout: float = 30.0, client: Optional[httpx.AsyncClient] = None) -> None:
		self.base_url = base_url
		self._headers = {"Authorization": f"Bearer {token}"} if token else {}
		self._client = client or httpx.AsyncClient(timeout=timeout)

	async def upload(self, data: bytes, metadata: Dict[str, Any]) -> BlobRef:
		filename = str(metadata.get("filename") or "file")
		content_type = str(metadata.get("content_type") or "application/octet-stream")
		form = {k: str(v) for k, v in metadata.items() if k not in ("filename", "content_type") and v is not None}
		try:
			r = await self._client.post(
				self.base_url,
				headers=self._headers,
				data=form,
				files={"file": (filename, data, content_type)},
			)
			r.raise_for_status()
			body = r.json()
			url = str(body["url"])
			size = int(body.get("size", len(data)))
		except (httpx.HTTPError, ValueError, KeyError, TypeError) as err:
			logger.error("Blob upload of %s failed: %s", filename, err)
			raise StorageUnavailable() from err
		if not url:
			raise StorageUnavailable()
		return BlobRef(url=url, size=size)

	async def aclose(self) -> None:
		await self._client.aclose()


def build_blob_store(settings: Settings) -> BlobStore:
	if settings.blob_backend == "http":
		if not settings.blob_store_url:
			raise ValueError("BLOB_STORE_URL is not configured")
		return HttpBlobStore(
			settings.blob_store_url,
			token=settings.blob_store_token,
			timeout=settings.blob_store_timeout_seconds,
		)
	return LocalBlobStore(settings.upload_dir, settings.public_base_url)
