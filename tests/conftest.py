import asyncio
import io
import os
import sys
import tempfile
import uuid
import zipfile
from contextlib import asynccontextmanager
from datetime import UTC, datetime, timedelta
from types import ModuleType

import fastapi.dependencies.utils as fastapi_deps_utils
import fastapi.routing as fastapi_routing
import httpx
import jwt
import pytest
import starlette.concurrency as starlette_concurrency
import starlette.routing as starlette_routing
from sqlalchemy import create_engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker


async def _patched_run_in_threadpool(func, *args, **kwargs):
    """Run inline in tests to avoid cross-thread sqlite/session deadlocks."""
    return func(*args, **kwargs)


starlette_concurrency.run_in_threadpool = _patched_run_in_threadpool
starlette_routing.run_in_threadpool = _patched_run_in_threadpool
fastapi_routing.run_in_threadpool = _patched_run_in_threadpool
fastapi_deps_utils.run_in_threadpool = _patched_run_in_threadpool


class SyncASGIClient:
    def __init__(self, app):
        self._app = app

    async def _request(self, method: str, url: str, **kwargs):
        async with httpx.AsyncClient(
            transport=httpx.ASGITransport(app=self._app, raise_app_exceptions=False),
            base_url="http://testserver",
            follow_redirects=True,
        ) as client:
            return await client.request(method, url, **kwargs)

    def request(self, method: str, url: str, **kwargs):
        return asyncio.run(self._request(method, url, **kwargs))

    def get(self, url: str, **kwargs):
        return self.request("GET", url, **kwargs)

    def post(self, url: str, **kwargs):
        return self.request("POST", url, **kwargs)

    def put(self, url: str, **kwargs):
        return self.request("PUT", url, **kwargs)

    def patch(self, url: str, **kwargs):
        return self.request("PATCH", url, **kwargs)

    def delete(self, url: str, **kwargs):
        return self.request("DELETE", url, **kwargs)

    def close(self) -> None:
        return None


# Create a test engine BEFORE any release_engine imports
_test_engine = create_engine(
    "sqlite+pysqlite:///file:release_engine_test?mode=memory&cache=shared",
    connect_args={"check_same_thread": False, "uri": True},
)


class TestBase(DeclarativeBase):
    __test__ = False


_TestSessionLocal = sessionmaker(bind=_test_engine, autoflush=False, autocommit=False)

mock_db_module = ModuleType("release_engine.db")
mock_db_module.Base = TestBase  # type: ignore[attr-defined]
mock_db_module.SessionLocal = _TestSessionLocal  # type: ignore[attr-defined]
mock_db_module.get_engine = lambda: _test_engine  # type: ignore[attr-defined]

# Also mock release_engine.config to prevent .env loading
mock_config_module = ModuleType("release_engine.config")

_BLOB_DIR = tempfile.mkdtemp(prefix="release-engine-blobs-")


class MockSettings:
    database_url = "sqlite+pysqlite:///:memory:"
    db_pool_size = 5
    db_max_overflow = 10
    db_pool_timeout = 30
    db_pool_recycle = 1800
    log_level = "INFO"
    jwt_secret = "test-secret"
    jwt_algorithm = "HS256"
    blob_storage_dir = _BLOB_DIR
    blob_url_prefix = "/blobs"
    package_max_size_bytes = 1024 * 1024
    redis_url = None
    update_check_rate_limit = 1000
    report_status_rate_limit = 1000
    rate_limit_window_seconds = 60
    audit_recent_activity_limit = 10
    testing = True


mock_config_module.settings = MockSettings()  # type: ignore[attr-defined]
mock_config_module.Settings = MockSettings  # type: ignore[attr-defined]

# Insert mocks before any release_engine imports
sys.modules["release_engine.config"] = mock_config_module
sys.modules["release_engine.db"] = mock_db_module

os.environ["JWT_SECRET"] = "test-secret"
os.environ["JWT_ALGORITHM"] = "HS256"

# Now import the models - they'll use our mocked db module
from release_engine.models.app import App, AppPlatform  # noqa: E402
from release_engine.models.audit_log import AuditLogEntry  # noqa: E402, F401
from release_engine.models.deployment import Deployment  # noqa: E402
from release_engine.models.package import Package, PackageTombstone  # noqa: E402, F401
from release_engine.models.status_report import DeviceActivePackage, StatusReport  # noqa: E402, F401
from release_engine.services.common import Actor  # noqa: E402
from release_engine.services.hashing import generate_deployment_key  # noqa: E402

# Create all tables
TestBase.metadata.create_all(_test_engine)

# Re-export Base for compatibility
Base = TestBase


@pytest.fixture(scope="session")
def engine():
    return _test_engine


@pytest.fixture()
def db_session(engine):
    """Create a database session for testing."""
    Session = sessionmaker(bind=engine, autoflush=False, autocommit=False)
    session = Session()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(autouse=True)
def _clean_tables(engine):
    yield
    with engine.begin() as conn:
        for table in reversed(TestBase.metadata.sorted_tables):
            conn.execute(table.delete())


@pytest.fixture(autouse=True)
def _reset_rate_limiters():
    """Reset rate limiter state between tests."""
    from release_engine.rate_limit import report_status_limiter, update_check_limiter

    update_check_limiter.reset()
    report_status_limiter.reset()


def _unique_email() -> str:
    return f"test-{uuid.uuid4().hex}@example.com"


@pytest.fixture()
def actor():
    return Actor(user_id=str(uuid.uuid4()), email=_unique_email(), ip_address="127.0.0.1", user_agent="pytest")


@pytest.fixture()
def other_actor():
    return Actor(user_id=str(uuid.uuid4()), email=_unique_email())


@pytest.fixture()
def admin_actor():
    return Actor(user_id=str(uuid.uuid4()), email=_unique_email(), roles=frozenset({"admin"}))


def auth_for(actor: Actor) -> dict:
    """The dict ``require_user_auth`` hands to routers, for direct calls."""
    return {
        "user_id": actor.user_id,
        "email": actor.email,
        "roles": sorted(actor.roles),
        "ip_address": actor.ip_address,
        "user_agent": actor.user_agent,
    }


@pytest.fixture()
def auth(actor):
    return auth_for(actor)


@pytest.fixture()
def app_record(db_session, actor):
    app = App(
        name=f"app-{uuid.uuid4().hex[:6]}",
        platform=AppPlatform.react_native,
        owner_id=actor.user_id,
        owner_email=actor.email,
    )
    db_session.add(app)
    db_session.commit()
    db_session.refresh(app)
    return app


@pytest.fixture()
def deployment(db_session, app_record):
    deployment = Deployment(
        app_id=app_record.app_id,
        name="Production",
        key=generate_deployment_key(),
    )
    db_session.add(deployment)
    db_session.commit()
    db_session.refresh(deployment)
    return deployment


def make_bundle(files: dict[str, bytes] | None = None) -> bytes:
    """A zip bundle; distinct ``files`` give distinct package hashes."""
    files = files or {"index.bundle": uuid.uuid4().bytes}
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w") as archive:
        for name, content in files.items():
            archive.writestr(name, content)
    return buf.getvalue()


# ============ FastAPI Test Client Fixtures ============


@pytest.fixture()
def client(db_session):
    """Create a test client with database dependency override."""
    from release_engine.api.deps import get_db
    from release_engine.main import app

    def override_get_db():
        return db_session

    app.dependency_overrides[get_db] = override_get_db

    @asynccontextmanager
    async def _test_lifespan(_app):
        yield

    original_lifespan = app.router.lifespan_context
    app.router.lifespan_context = _test_lifespan
    test_client = SyncASGIClient(app)
    try:
        yield test_client
    finally:
        test_client.close()
        app.router.lifespan_context = original_lifespan
        app.dependency_overrides.clear()


def _create_access_token(user_id: str, email: str | None = None, roles: list[str] | None = None) -> str:
    """Create a JWT access token for testing."""
    secret = os.getenv("JWT_SECRET", "test-secret")
    algorithm = os.getenv("JWT_ALGORITHM", "HS256")
    now = datetime.now(UTC)
    expire = now + timedelta(minutes=15)
    payload = {
        "sub": user_id,
        "email": email,
        "roles": roles or [],
        "exp": int(expire.timestamp()),
        "iat": int(now.timestamp()),
    }
    return str(jwt.encode(payload, secret, algorithm=algorithm))


@pytest.fixture()
def auth_headers(actor):
    """Return authorization headers for authenticated requests."""
    return {"Authorization": f"Bearer {_create_access_token(actor.user_id, actor.email)}"}


@pytest.fixture()
def admin_headers(admin_actor):
    token = _create_access_token(admin_actor.user_id, admin_actor.email, roles=["admin"])
    return {"Authorization": f"Bearer {token}"}
