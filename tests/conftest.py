from datetime import datetime, timedelta, timezone

import jwt
import pytest
from fastapi.testclient import TestClient

from videoguard.config import Settings
from videoguard.database import Database
from videoguard.main import create_app
from videoguard.models.enrollment import EnrollmentEntry
from videoguard.services.audit import AuditLogger
from videoguard.services.fingerprint import RequestContext
from videoguard.services.guard import VideoSessionGuard
from videoguard.services.sessions import VideoSessionStore
from videoguard.services.views import VideoViewStore


class FakeClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def settings() -> Settings:
    return Settings(
        database_url="sqlite://",
        jwt_secret="test-jwt-secret",
        drm_secret="test-drm-secret",
        max_concurrent_sessions=3,
        max_daily_views=50,
        watermark_enabled=True,
        cleanup_on_startup=False,
    )


@pytest.fixture
def database(settings) -> Database:
    database = Database(settings.database_url)
    database.init_db()
    yield database
    database.engine.dispose()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime.now(timezone.utc))


@pytest.fixture
def store(database) -> VideoSessionStore:
    return VideoSessionStore(database)


@pytest.fixture
def views(database) -> VideoViewStore:
    return VideoViewStore(database)


@pytest.fixture
def audit(database, clock) -> AuditLogger:
    return AuditLogger(database, clock=clock)


@pytest.fixture
def guard(store, views, audit, settings, clock) -> VideoSessionGuard:
    return VideoSessionGuard(
        store=store, views=views, audit=audit, settings=settings, clock=clock
    )


@pytest.fixture
def device() -> RequestContext:
    return RequestContext(
        headers={"User-Agent": "UA-X", "Accept-Language": "en-US,en;q=0.9"},
        remote_address="10.0.0.1",
    )


@pytest.fixture
def enroll(database):
    def _enroll(user_id: str, batch_id: str, **fields) -> None:
        fields.setdefault("payment_status", "completed")
        with database.session_scope() as session:
            session.add(EnrollmentEntry(student_id=user_id, batch_id=batch_id, **fields))

    return _enroll


@pytest.fixture
def client(settings, database, guard):
    app = create_app(settings=settings, database=database, guard=guard)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def access_token(settings):
    def _token(user_id: str, expires_in: timedelta = timedelta(minutes=15)) -> str:
        now = datetime.now(timezone.utc)
        payload = {
            "sub": user_id,
            "type": "access",
            "iat": int(now.timestamp()),
            "exp": int((now + expires_in).timestamp()),
        }
        return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)

    return _token


@pytest.fixture
def auth_headers(access_token):
    def _headers(user_id: str, **extra) -> dict:
        token = access_token(user_id)
        headers = {
            "Authorization": f"Bearer {token}",
            "User-Agent": "UA-X",
            "Accept-Language": "en-US",
        }
        headers.update(extra)
        return headers

    return _headers
