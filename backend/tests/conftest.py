import pathlib
import sys

import pytest
from fastapi.testclient import TestClient
from passlib.context import CryptContext

ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from portal import security
from portal.blob_store import LocalBlobStore
from portal.db import Database
from portal.lifecycle import CriteriaLifecycle
from portal.main import create_app
from portal.models import Role
from portal.reporting import ReportingEngine
from portal.security import Principal, create_access_token
from portal.settings import Settings
from portal.store import CriteriaStore
from portal.users import UserDirectory

JWT_SECRET = "portal_test_secret"
ADMIN_EMAIL = "admin@portal.test"
ADMIN_PASSWORD = "admin-pass"


@pytest.fixture(autouse=True)
def fast_hashing(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setattr(security, "pwd_context", CryptContext(schemes=["bcrypt"], bcrypt__rounds=4))
    yield


@pytest.fixture
def settings(tmp_path: pathlib.Path, monkeypatch: pytest.MonkeyPatch) -> Settings:
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'portal.db'}")
    monkeypatch.setenv("JWT_SECRET_KEY", JWT_SECRET)
    monkeypatch.setenv("UPLOAD_DIR", str(tmp_path / "uploads"))
    monkeypatch.setenv("PUBLIC_BASE_URL", "http://testserver")
    monkeypatch.setenv("SEED_ADMIN_EMAIL", ADMIN_EMAIL)
    monkeypatch.setenv("SEED_ADMIN_PASSWORD", ADMIN_PASSWORD)
    monkeypatch.setenv("BLOB_BACKEND", "local")
    monkeypatch.setenv("DEBUG_ERRORS", "false")
    return Settings()


@pytest.fixture
def database(settings: Settings):
    db = Database(settings.database_url)
    db.open()
    yield db
    db.close()


@pytest.fixture
def users(database: Database) -> UserDirectory:
    return UserDirectory(database)


@pytest.fixture
def store(database: Database) -> CriteriaStore:
    return CriteriaStore(database)


@pytest.fixture
def lifecycle(store: CriteriaStore, users: UserDirectory) -> CriteriaLifecycle:
    return CriteriaLifecycle(store, users)


@pytest.fixture
def reporting(store: CriteriaStore, users: UserDirectory) -> ReportingEngine:
    return ReportingEngine(store, users)


def principal_for(user) -> Principal:
    return Principal(user_id=user.id, role=Role(user.role), school=user.school)


@pytest.fixture
def make_user(users: UserDirectory):
    counter = {"n": 0}

    def _make(name: str, *, role: Role = Role.user, school: str | None = "Lincoln High"):
        counter["n"] += 1
        email = f"{name.lower().replace(' ', '.')}.{counter['n']}@portal.test"
        return users.create(name=name, email=email, password="secret-pw", role=role, school=school)

    return _make


@pytest.fixture
def app(settings: Settings, tmp_path: pathlib.Path):
    return create_app(settings, blob_store=LocalBlobStore(str(tmp_path / "uploads"), settings.public_base_url))


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


@pytest.fixture
def account(client: TestClient, settings: Settings):
    """Create an account through the app's directory and return (user, auth headers)."""
    counter = {"n": 0}

    def _account(name: str, *, role: Role = Role.user, school: str | None = "Lincoln High"):
        counter["n"] += 1
        email = f"{name.lower().replace(' ', '.')}.{counter['n']}@portal.test"
        user = client.app.state.users.create(name=name, email=email, password="secret-pw", role=role, school=school)
        token = create_access_token(user, settings)
        return user, {"Authorization": f"Bearer {token}"}

    return _account
