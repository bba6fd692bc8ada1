import asyncio

import httpx
import pytest
from fastapi.testclient import TestClient

from portal.blob_store import BlobRef, BlobStore, HttpBlobStore, validate_upload
from portal.errors import StorageUnavailable, ValidationError
from portal.main import create_app
from portal.models import Role
from portal.security import create_access_token
from portal.settings import Settings


def _upload(client, headers, name="evidence.pdf", content=b"%PDF-1.4 test", criteria="2", metric="1"):
    return client.post(
        "/files/upload",
        data={"criteriaNumber": criteria, "metricNumber": metric},
        files={"file": (name, content, "application/pdf")},
        headers=headers,
    )


class _RecordingBlobStore(BlobStore):
    def __init__(self, fail=False):
        self.fail = fail
        self.calls = []

    async def upload(self, data, metadata):
        self.calls.append(metadata)
        if self.fail:
            raise StorageUnavailable()
        return BlobRef(url=f"https://blobs.example/{metadata['filename']}", size=len(data))


@pytest.fixture
def blob_client(settings):
    blobs = _RecordingBlobStore()
    with TestClient(create_app(settings, blob_store=blobs)) as c:
        yield c, blobs


def _headers_for(client, settings, name, role=Role.user, school="Lincoln High"):
    user = client.app.state.users.create(
        name=name, email=f"{name.lower()}@portal.test", password="secret-pw", role=role, school=school
    )
    return user, {"Authorization": f"Bearer {create_access_token(user, settings)}"}


def test_local_upload_appends_file_and_serves_it(client, account):
    _, headers = account("Uma")
    resp = _upload(client, headers)
    assert resp.status_code == 200
    record = resp.json()["data"]
    assert record["status"] == "draft"
    assert len(record["files"]) == 1
    descriptor = record["files"][0]
    assert descriptor["originalName"] == "evidence.pdf"
    assert descriptor["size"] == len(b"%PDF-1.4 test")
    assert descriptor["url"].startswith("http://testserver/uploads/")

    served = client.get(descriptor["url"].replace("http://testserver", ""))
    assert served.status_code == 200
    assert served.content == b"%PDF-1.4 test"

    resp = _upload(client, headers, name="second.pdf")
    assert [f["originalName"] for f in resp.json()["data"]["files"]] == ["evidence.pdf", "second.pdf"]


def test_failed_upload_leaves_record_untouched(settings):
    blobs = _RecordingBlobStore(fail=True)
    with TestClient(create_app(settings, blob_store=blobs)) as client:
        user, headers = _headers_for(client, settings, "Uma")
        client.post(
            "/criteria/save",
            json={"criteriaNumber": 2, "metricNumber": "1", "payload": {"text": "x"}},
            headers=headers,
        )
        resp = _upload(client, headers)
        assert resp.status_code == 500
        assert resp.json()["error"] == "StorageUnavailable"
        assert len(blobs.calls) == 1

        record = client.get("/criteria/2", headers=headers).json()["data"][0]
        assert record["files"] == []
        assert record["payload"] == {"text": "x"}


def test_upload_to_locked_record_never_reaches_blob_store(blob_client, settings):
    client, blobs = blob_client
    _, headers = _headers_for(client, settings, "Uma")
    record_id = client.post(
        "/criteria/save", json={"criteriaNumber": 2, "metricNumber": "1"}, headers=headers
    ).json()["data"]["id"]
    client.put(f"/criteria/submit/{record_id}", headers=headers)

    resp = _upload(client, headers)
    assert resp.status_code == 400
    assert resp.json()["error"] == "RecordLocked"
    assert blobs.calls == []


def test_upload_rejects_disallowed_type(blob_client, settings):
    client, blobs = blob_client
    _, headers = _headers_for(client, settings, "Uma")
    resp = _upload(client, headers, name="payload.exe")
    assert resp.status_code == 400
    assert resp.json()["error"] == "ValidationError"
    assert blobs.calls == []


def test_school_admin_cannot_upload(blob_client, settings):
    client, blobs = blob_client
    _, headers = _headers_for(client, settings, "Lena", role=Role.school_admin)
    assert _upload(client, headers).status_code == 403
    assert blobs.calls == []


def test_oversized_upload_rejected_before_storage(settings, monkeypatch):
    monkeypatch.setenv("MAX_UPLOAD_BYTES", "16")
    small = Settings()
    blobs = _RecordingBlobStore()
    with TestClient(create_app(small, blob_store=blobs)) as client:
        _, headers = _headers_for(client, small, "Uma")
        resp = _upload(client, headers, content=b"x" * 64)
        assert resp.status_code == 400
        assert resp.json()["error"] == "ValidationError"
        assert blobs.calls == []

        assert _upload(client, headers, content=b"x" * 16).status_code == 200
        assert len(blobs.calls) == 1


def test_validate_upload_limits(settings):
    validate_upload("ok.PDF", 10, settings)
    with pytest.raises(ValidationError):
        validate_upload("big.pdf", settings.max_upload_bytes + 1, settings)
    with pytest.raises(ValidationError):
        validate_upload("empty.pdf", 0, settings)
    with pytest.raises(ValidationError):
        validate_upload("noext", 10, settings)


async def _run_http_upload(handler):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    store = HttpBlobStore("https://blobs.example/upload", token="t0k", client=client)
    try:
        return await store.upload(b"abc", {"filename": "a.pdf", "content_type": "application/pdf"})
    finally:
        await store.aclose()


def test_http_blob_store_success():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["auth"] = request.headers.get("Authorization")
        return httpx.Response(200, json={"url": "https://cdn.example/a.pdf", "size": 3})

    ref = asyncio.run(_run_http_upload(handler))
    assert ref == BlobRef(url="https://cdn.example/a.pdf", size=3)
    assert seen["auth"] == "Bearer t0k"


@pytest.mark.parametrize(
    "response",
    [
        lambda: httpx.Response(503, text="down"),
        lambda: httpx.Response(200, json={"size": 3}),
        lambda: httpx.Response(200, text="not json"),
    ],
)
def test_http_blob_store_failures_are_storage_unavailable(response):
    with pytest.raises(StorageUnavailable):
        asyncio.run(_run_http_upload(lambda request: response()))
