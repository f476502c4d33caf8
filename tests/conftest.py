"""Shared test fixtures for the FlowBundle API test suite.

Uses an in-memory SQLite database and an in-memory storage gateway, so no
Postgres or Supabase is needed. Each test gets a fresh database seeded
with the default sectors.
"""

import io
import zipfile
from collections.abc import AsyncGenerator, Callable
from datetime import datetime, timedelta, timezone
from typing import Optional

import pytest
from httpx import ASGITransport, AsyncClient
from jose import jwt
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from flowbundle.core.config import Settings, get_settings
from flowbundle.core.errors import DeleteFailed, FetchFailed, SigningFailed, UploadFailed
from flowbundle.db.models import Base, Flow, Version
from flowbundle.db.seed import seed_sectors
from flowbundle.db.session import get_db
from flowbundle.main import create_app
from flowbundle.storage.gateway import get_storage

# ---------------------------------------------------------------------------
# JWT test constants
# ---------------------------------------------------------------------------

TEST_JWT_SECRET = "test-secret-for-unit-tests"
TEST_ISSUER = "auth-api"
STORAGE_PREFIX = "fluxos-arquivos/fluxos"

ADMIN_ID = 1
LEAD_ID = 2
EMPLOYEE_ID = 3
OTHER_LEAD_ID = 4


def make_jwt(
    user_id: int = ADMIN_ID,
    role: str = "ADMIN",
    *,
    email: str = "admin@athena.local",
    name: Optional[str] = "Admin User",
    secret: str = TEST_JWT_SECRET,
    issuer: str = TEST_ISSUER,
    expired: bool = False,
) -> str:
    """Mint a HS256 JWT shaped like the platform's auth tokens."""
    now = datetime.now(timezone.utc)
    exp = now - timedelta(hours=1) if expired else now + timedelta(hours=1)
    payload = {
        "sub": email,
        "role": role,
        "userId": user_id,
        "name": name,
        "iss": issuer,
        "exp": exp,
        "iat": now,
    }
    return jwt.encode(payload, secret, algorithm="HS256")


# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------


class FakeStorage:
    """In-memory stand-in for the Supabase gateway.

    Names listed in `fail_upload` / `fail_sign` / `fail_fetch` (matched as
    substrings of the key or URL) make the corresponding call fail the way
    the real gateway does.
    """

    base_url = "https://storage.test/object/sign/fluxos"

    def __init__(self) -> None:
        self.objects: dict[str, tuple[bytes, str]] = {}
        self.deleted: list[str] = []
        self.fail_upload: set[str] = set()
        self.fail_sign: set[str] = set()
        self.fail_fetch: set[str] = set()
        self.fail_delete: set[str] = set()

    def upload(self, content: bytes, key: str, mime_type: str) -> str:
        if any(name in key for name in self.fail_upload):
            raise UploadFailed(key, "Upload rejected")
        self.objects[key] = (content, mime_type)
        return key

    def sign(self, key: str, expires_in: int = 3600) -> str:
        if any(name in key for name in self.fail_sign):
            raise SigningFailed(key, "Signing rejected")
        return f"{self.base_url}/{key}?token=tok&expires={expires_in}"

    def fetch(self, url: str) -> bytes:
        if any(name in url for name in self.fail_fetch):
            raise FetchFailed(url, "Fetch failed")
        key = url.removeprefix(self.base_url + "/").split("?", 1)[0]
        if key not in self.objects:
            raise FetchFailed(url, "Object not found")
        return self.objects[key][0]

    def delete(self, key: str) -> None:
        if any(name in key for name in self.fail_delete):
            raise DeleteFailed(key, "Delete rejected")
        self.objects.pop(key, None)
        self.deleted.append(key)

    def keys_ending_with(self, suffix: str) -> list[str]:
        return [k for k in self.objects if k.endswith(suffix)]


@pytest.fixture
def storage() -> FakeStorage:
    return FakeStorage()


# ---------------------------------------------------------------------------
# Archives
# ---------------------------------------------------------------------------


def build_zip(entries: list[tuple[str, bytes]]) -> bytes:
    """Zip `entries` in the given order. Names ending in "/" become directories."""
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", zipfile.ZIP_STORED) as zf:
        for name, content in entries:
            if name.endswith("/"):
                zf.writestr(zipfile.ZipInfo(name), b"")
            else:
                zf.writestr(name, content)
    return buffer.getvalue()


def corrupt_member(archive: bytes, payload: bytes) -> bytes:
    """Flip the stored bytes of one member so reading it fails its CRC check."""
    assert archive.count(payload) == 1
    return archive.replace(payload, bytes(b ^ 0xFF for b in payload))


@pytest.fixture
def make_zip() -> Callable[[list[tuple[str, bytes]]], bytes]:
    return build_zip


SAMPLE_INDEX = b"""<!DOCTYPE html>
<html>
<head>
<link rel="stylesheet" href="libs/app.css">
<script src="./libs/app.js"></script>
<style>body { background: url('img/bg.png'); }</style>
</head>
<body>
<img src="img/logo.png">
<a href="https://example.com">external</a>
</body>
</html>
"""


@pytest.fixture
def sample_bundle() -> bytes:
    """A small but realistic flow bundle."""
    return build_zip([
        ("index.html", SAMPLE_INDEX),
        ("libs/", b""),
        ("libs/app.css", b".box { background: url(../img/bg.png); }"),
        ("libs/app.js", b"console.log('flow');"),
        ("img/logo.png", b"\x89PNG\r\n\x1a\nlogo"),
        ("img/bg.png", b"\x89PNG\r\n\x1a\nbg"),
        ("__MACOSX/._index.html", b"junk"),
        (".DS_Store", b"junk"),
    ])


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@pytest.fixture
async def async_engine():
    """Create a fresh async SQLite engine for each test."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
async def db_session(async_engine) -> AsyncGenerator[AsyncSession, None]:
    """Provide a test DB session with the default sectors in place."""
    session_factory = async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    async with session_factory() as session:
        await seed_sectors(session)
        await session.commit()
        yield session


@pytest.fixture
async def version(db_session) -> Version:
    """A persisted flow "TI-001" with an empty version 1."""
    flow = Flow(title="Onboarding", code="TI-001", status="draft", published_by_id=ADMIN_ID)
    db_session.add(flow)
    await db_session.flush()
    v = Version(flow_id=flow.id, number=1, notes="Initial version")
    db_session.add(v)
    await db_session.flush()
    return v


# ---------------------------------------------------------------------------
# App and clients
# ---------------------------------------------------------------------------


def _override_settings() -> Settings:
    """Return Settings with the test JWT secret."""
    return Settings(
        jwt_secret=TEST_JWT_SECRET,
        jwt_issuer=TEST_ISSUER,
        database_url="sqlite+aiosqlite:///:memory:",
        storage_prefix=STORAGE_PREFIX,
        sentry_dsn="",
        debug=False,
    )


@pytest.fixture
def app(async_engine, db_session, storage):
    """Create a FastAPI app with DB, settings and storage dependencies overridden.

    The SlowAPI limiter keeps its counters in process memory, so they are
    reset before each test.
    """
    from flowbundle.core.limiter import limiter

    limiter.reset()

    test_app = create_app()

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        session_factory = async_sessionmaker(
            async_engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    test_app.dependency_overrides[get_db] = override_get_db
    test_app.dependency_overrides[get_settings] = _override_settings
    test_app.dependency_overrides[get_storage] = lambda: storage
    return test_app


def _client(app, token: Optional[str] = None) -> AsyncClient:
    headers = {"Authorization": f"Bearer {token}"} if token else {}
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test", headers=headers)


@pytest.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client without credentials."""
    async with _client(app) as ac:
        yield ac


@pytest.fixture
async def admin_client(app) -> AsyncGenerator[AsyncClient, None]:
    async with _client(app, make_jwt(ADMIN_ID, "ADMIN")) as ac:
        yield ac


@pytest.fixture
async def lead_client(app) -> AsyncGenerator[AsyncClient, None]:
    token = make_jwt(LEAD_ID, "LIDER_DE_SETOR", email="lead@athena.local", name="Lead")
    async with _client(app, token) as ac:
        yield ac


@pytest.fixture
async def other_lead_client(app) -> AsyncGenerator[AsyncClient, None]:
    token = make_jwt(OTHER_LEAD_ID, "LIDER_DE_SETOR", email="other@athena.local", name="Other")
    async with _client(app, token) as ac:
        yield ac


@pytest.fixture
async def employee_client(app) -> AsyncGenerator[AsyncClient, None]:
    token = make_jwt(EMPLOYEE_ID, "FUNCIONARIO", email="emp@athena.local", name="Employee")
    async with _client(app, token) as ac:
        yield ac


@pytest.fixture
def token_factory() -> Callable[..., str]:
    return make_jwt


@pytest.fixture
def client_factory(app) -> Callable[..., AsyncClient]:
    """Build extra clients for a given token (use as an async context manager)."""
    return lambda token=None: _client(app, token)


@pytest.fixture
def corrupt() -> Callable[[bytes, bytes], bytes]:
    return corrupt_member
