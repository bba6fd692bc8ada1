from fastapi.testclient import TestClient

from portal.main import create_app
from portal.models import Role

from conftest import ADMIN_EMAIL, ADMIN_PASSWORD


def _login(client, email, password):
    return client.post("/auth/token", data={"username": email, "password": password})


def test_health_reports_database(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    assert body["data"]["database"] == "Connected"


def test_unknown_route_uses_error_envelope(client):
    resp = client.get("/route-not-exists")
    assert resp.status_code == 404
    body = resp.json()
    assert body["success"] is False
    assert body["error"] == "NotFound"


def test_register_login_and_me(client):
    resp = client.post(
        "/auth/register",
        json={"name": "Uma", "email": "Uma@Portal.test", "password": "secret-pw", "school": "Lincoln High"},
    )
    assert resp.status_code == 201
    body = resp.json()
    assert body["data"]["user"]["role"] == "user"
    assert body["data"]["user"]["email"] == "uma@portal.test"

    resp = _login(client, "uma@portal.test", "secret-pw")
    assert resp.status_code == 200
    token = resp.json()["access_token"]
    assert resp.json()["token_type"] == "bearer"

    resp = client.get("/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert resp.status_code == 200
    me = resp.json()["data"]
    assert me["name"] == "Uma"
    assert me["school"] == "Lincoln High"


def test_register_duplicate_email(client):
    body = {"name": "Uma", "email": "uma@portal.test", "password": "secret-pw", "school": "Lincoln High"}
    assert client.post("/auth/register", json=body).status_code == 201
    resp = client.post("/auth/register", json=body)
    assert resp.status_code == 400
    assert resp.json()["error"] == "DuplicateKey"


def test_register_requires_school(client):
    resp = client.post(
        "/auth/register",
        json={"name": "Uma", "email": "uma@portal.test", "password": "secret-pw", "school": " "},
    )
    assert resp.status_code == 400
    assert resp.json()["error"] == "ValidationError"


def test_wrong_password_is_unauthenticated(client):
    resp = _login(client, ADMIN_EMAIL, "not-it")
    assert resp.status_code == 401
    assert resp.json()["success"] is False


def test_seeded_admin_can_create_school_admin(client):
    token = _login(client, ADMIN_EMAIL, ADMIN_PASSWORD).json()["access_token"]
    headers = {"Authorization": f"Bearer {token}"}
    resp = client.post(
        "/admin/users",
        json={
            "name": "Lena",
            "email": "lena@portal.test",
            "password": "secret-pw",
            "role": "school_admin",
            "school": "Lincoln High",
        },
        headers=headers,
    )
    assert resp.status_code == 201
    assert resp.json()["data"]["role"] == "school_admin"

    lena_token = _login(client, "lena@portal.test", "secret-pw").json()["access_token"]
    resp = client.post(
        "/admin/users",
        json={"name": "X", "email": "x@portal.test", "password": "secret-pw", "school": "Lincoln High"},
        headers={"Authorization": f"Bearer {lena_token}"},
    )
    assert resp.status_code == 403


def test_admin_files_endpoint(client, account):
    user, headers = account("Uma")
    _, admin_headers = account("Ada", role=Role.admin, school=None)
    client.post(
        "/files/upload",
        data={"criteriaNumber": "1", "metricNumber": "1"},
        files={"file": ("a.pdf", b"abc", "application/pdf")},
        headers=headers,
    )
    client.post("/criteria/save", json={"criteriaNumber": 2, "metricNumber": "1"}, headers=headers)

    resp = client.get("/admin/files", headers=admin_headers)
    assert resp.status_code == 200
    body = resp.json()
    assert body["count"] == 1
    row = body["data"][0]
    assert row["criteriaNumber"] == 1
    assert row["user"] == {"id": user.id, "name": "Uma", "email": user.email}
    assert row["files"][0]["originalName"] == "a.pdf"

    assert client.get("/admin/files", headers=headers).status_code == 403


def _boom_app(settings):
    app = create_app(settings)

    @app.get("/boom")
    def boom():
        raise RuntimeError("secret internals")

    return app


def test_unexpected_error_hides_detail(settings):
    with TestClient(_boom_app(settings), raise_server_exceptions=False) as client:
        resp = client.get("/boom")
    assert resp.status_code == 500
    body = resp.json()
    assert body["success"] is False
    assert body["error"] == "Unexpected"
    assert "secret internals" not in resp.text


def test_unexpected_error_detail_when_debugging(settings, monkeypatch):
    monkeypatch.setenv("DEBUG_ERRORS", "true")
    from portal.settings import Settings

    with TestClient(_boom_app(Settings()), raise_server_exceptions=False) as client:
        resp = client.get("/boom")
    assert resp.status_code == 500
    assert resp.json()["detail"] == {"name": "RuntimeError", "message": "secret internals"}
