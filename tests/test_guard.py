from dataclasses import replace
from datetime import datetime, timedelta, timezone

import jwt
import pytest
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from videoguard.models.audit import AuditLogEntry, SecurityAlertEntry
from videoguard.services.audit import AuditLogger
from videoguard.services.errors import (
    DailyViewLimitExceeded,
    DeviceMismatch,
    InvalidVideoSession,
    InvalidVideoToken,
    MissingVideoToken,
    SessionLimitExceeded,
    SessionNotFound,
    VideoServiceError,
)
from videoguard.services.fingerprint import RequestContext, epoch_hour
from videoguard.services.guard import VideoSessionGuard
from videoguard.services.sessions import StoreError, VideoSessionStore


def other_device(device: RequestContext, **changes) -> RequestContext:
    headers = dict(device.headers)
    headers.update(changes.get("headers", {}))
    return RequestContext(
        headers=headers, remote_address=changes.get("ip", device.remote_address)
    )


def audit_events(database) -> list[tuple[str, str]]:
    with database.session_scope() as session:
        entries = session.execute(select(AuditLogEntry).order_by(AuditLogEntry.id)).scalars()
        return [(entry.event_type, entry.risk_level) for entry in entries]


def security_alerts(database) -> list[tuple[str, str, str, bool]]:
    with database.session_scope() as session:
        entries = session.execute(
            select(SecurityAlertEntry).order_by(SecurityAlertEntry.id)
        ).scalars()
        return [
            (entry.alert_type, entry.event_type, entry.risk_level, entry.reviewed)
            for entry in entries
        ]


class FailingStore(VideoSessionStore):
    def create_session(self, record, *, max_active, now):
        raise StoreError("database unavailable")

    def get_active_session(self, session_id, *, now):
        raise StoreError("database unavailable")

    def touch(self, session_id, *, now):
        raise StoreError("database unavailable")


class BrokenDatabase:
    def session_scope(self):
        raise SQLAlchemyError("audit database unavailable")


class TestGenerateVideoToken:
    def test_returns_token_session_and_lifetime(self, guard, device):
        issued = guard.generate_video_token(device, "u1", "video42", "batch7")
        assert issued.session_id
        assert issued.expires_in == 7200
        assert issued.watermark_enabled is True

        payload = jwt.decode(issued.token, options={"verify_signature": False})
        assert payload["userId"] == "u1"
        assert payload["videoId"] == "video42"
        assert payload["batchId"] == "batch7"
        assert payload["sessionId"] == issued.session_id
        assert len(payload["deviceFingerprint"]) == 64
        assert payload["watermarkData"]["userId"] == "u1"
        assert payload["watermarkData"]["position"] == "bottom-right"

    def test_persists_the_session(self, guard, store, device, clock):
        issued = guard.generate_video_token(device, "u1", "video42", "batch7")
        session = store.get_session(issued.session_id)
        assert session.user_id == "u1"
        assert session.issued_hour == epoch_hour(clock.now)
        assert session.expires_at == clock.now + timedelta(seconds=7200)
        assert session.last_access_at == clock.now

    def test_same_device_same_hour_same_fingerprint(self, guard, device):
        first = guard.generate_video_token(device, "u1", "video42", "batch7")
        second = guard.generate_video_token(device, "u1", "video42", "batch7")
        first_payload = jwt.decode(first.token, options={"verify_signature": False})
        second_payload = jwt.decode(second.token, options={"verify_signature": False})
        assert first_payload["deviceFingerprint"] == second_payload["deviceFingerprint"]
        assert first.session_id != second.session_id

    def test_additional_claims_cannot_override_binding(self, guard, device):
        issued = guard.generate_video_token(
            device,
            "u1",
            "video42",
            "batch7",
            additional_claims={"userId": "intruder", "courseId": "course-3"},
        )
        payload = jwt.decode(issued.token, options={"verify_signature": False})
        assert payload["userId"] == "u1"
        assert payload["courseId"] == "course-3"

    def test_watermark_can_be_disabled(self, store, views, audit, settings, clock, device):
        guard = VideoSessionGuard(
            store=store,
            views=views,
            audit=audit,
            settings=replace(settings, watermark_enabled=False),
            clock=clock,
        )
        issued = guard.generate_video_token(device, "u1", "video42", "batch7")
        payload = jwt.decode(issued.token, options={"verify_signature": False})
        assert "watermarkData" not in payload
        assert issued.watermark_enabled is False

    def test_concurrent_session_limit_rejects_consistently(self, guard, device):
        for _ in range(3):
            guard.generate_video_token(device, "u1", "video42", "batch7")
        for _ in range(2):
            with pytest.raises(SessionLimitExceeded) as excinfo:
                guard.generate_video_token(device, "u1", "video42", "batch7")
            assert excinfo.value.code == "MAX_SESSIONS_EXCEEDED"
        assert len(guard.get_active_video_sessions("u1")) == 3

    def test_terminating_frees_a_slot(self, guard, device):
        issued = [guard.generate_video_token(device, "u1", "video42", "batch7") for _ in range(3)]
        guard.terminate_video_session(issued[0].session_id, "u1")
        guard.generate_video_token(device, "u1", "video42", "batch7")
        assert len(guard.get_active_video_sessions("u1")) == 3

    def test_daily_view_limit(self, store, views, audit, settings, clock, device):
        guard = VideoSessionGuard(
            store=store,
            views=views,
            audit=audit,
            settings=replace(settings, max_daily_views=2),
            clock=clock,
        )
        for _ in range(2):
            views.record_view("u1", "video42", "batch7", "s", now=clock.now)
        with pytest.raises(DailyViewLimitExceeded):
            guard.generate_video_token(device, "u1", "video42", "batch7")

    def test_store_failure_returns_no_token(self, database, views, audit, settings, clock, device):
        guard = VideoSessionGuard(
            store=FailingStore(database),
            views=views,
            audit=audit,
            settings=settings,
            clock=clock,
        )
        with pytest.raises(VideoServiceError) as excinfo:
            guard.generate_video_token(device, "u1", "video42", "batch7")
        assert excinfo.value.status_code == 500
        assert "database" not in excinfo.value.message


class TestVerifyVideoToken:
    def test_round_trip(self, guard, device):
        issued = guard.generate_video_token(device, "u1", "video42", "batch7")
        access = guard.verify_video_token(device, issued.token)
        assert access.user_id == "u1"
        assert access.video_id == "video42"
        assert access.batch_id == "batch7"
        assert access.session_id == issued.session_id
        assert access.watermark_data["userId"] == "u1"

    def test_verifies_in_the_next_hour(self, guard, device, clock):
        issued = guard.generate_video_token(device, "u1", "video42", "batch7")
        issued_hour = epoch_hour(clock.now)
        clock.advance(hours=1)
        assert epoch_hour(clock.now) == issued_hour + 1
        access = guard.verify_video_token(device, issued.token)
        assert access.issued_hour == issued_hour

    def test_verifies_token_minted_an_hour_ago(self, guard, device, clock):
        clock.advance(hours=-1, minutes=-5)
        issued = guard.generate_video_token(device, "u1", "video42", "batch7")
        clock.advance(hours=1, minutes=5)
        assert guard.verify_video_token(device, issued.token).user_id == "u1"

    def test_different_ip_is_a_device_mismatch(self, guard, device, database):
        issued = guard.generate_video_token(device, "u1", "video42", "batch7")
        with pytest.raises(DeviceMismatch) as excinfo:
            guard.verify_video_token(other_device(device, ip="10.0.0.2"), issued.token)
        assert excinfo.value.status_code == 403
        assert ("SUSPICIOUS_ACTIVITY", "CRITICAL") in audit_events(database)
        assert security_alerts(database) == [
            ("HIGH_RISK_ACTIVITY", "SUSPICIOUS_ACTIVITY", "CRITICAL", False)
        ]

    def test_different_user_agent_is_a_device_mismatch(self, guard, device):
        issued = guard.generate_video_token(device, "u1", "video42", "batch7")
        with pytest.raises(DeviceMismatch):
            guard.verify_video_token(
                other_device(device, headers={"user-agent": "UA-Y"}), issued.token
            )

    def test_missing_token(self, guard, device):
        with pytest.raises(MissingVideoToken) as excinfo:
            guard.verify_video_token(device, None)
        assert excinfo.value.to_dict()["code"] == "MISSING_VIDEO_TOKEN"
        with pytest.raises(MissingVideoToken):
            guard.verify_video_token(device, "")

    def test_malformed_token(self, guard, device, database):
        with pytest.raises(InvalidVideoToken):
            guard.verify_video_token(device, "definitely.not.a-token")
        assert audit_events(database) == [("UNAUTHORIZED_ACCESS", "MEDIUM")]
        assert security_alerts(database) == []

    def test_expired_token(self, guard, device, clock):
        clock.advance(hours=-3)
        issued = guard.generate_video_token(device, "u1", "video42", "batch7")
        clock.advance(hours=3)
        with pytest.raises(InvalidVideoToken):
            guard.verify_video_token(device, issued.token)

    def test_terminated_session(self, guard, device, database):
        issued = guard.generate_video_token(device, "u1", "video42", "batch7")
        assert guard.terminate_video_session(issued.session_id, "u1") is True
        with pytest.raises(InvalidVideoSession):
            guard.verify_video_token(device, issued.token)
        assert ("UNAUTHORIZED_ACCESS", "HIGH") in audit_events(database)
        assert security_alerts(database) == [
            ("HIGH_RISK_ACTIVITY", "UNAUTHORIZED_ACCESS", "HIGH", False)
        ]

    def test_session_expired_by_clock(self, guard, device, clock):
        issued = guard.generate_video_token(device, "u1", "video42", "batch7")
        clock.advance(hours=2)
        with pytest.raises(InvalidVideoSession):
            guard.verify_video_token(device, issued.token)

    def test_lookup_failure_fails_closed(self, guard, database, views, audit, settings, clock, device):
        issued = guard.generate_video_token(device, "u1", "video42", "batch7")
        broken = VideoSessionGuard(
            store=FailingStore(database),
            views=views,
            audit=audit,
            settings=settings,
            clock=clock,
        )
        with pytest.raises(VideoServiceError):
            broken.verify_video_token(device, issued.token)


    def test_token_bound_to_a_fixed_issuing_hour(self, guard, device, clock):
        clock.now = datetime.fromtimestamp(430000 * 3600, tz=timezone.utc) + timedelta(minutes=10)
        issued = guard.generate_video_token(device, "u1", "video42", "batch7")
        clock.advance(hours=1)
        assert guard.verify_video_token(device, issued.token).issued_hour == 430000
        with pytest.raises(DeviceMismatch):
            guard.verify_video_token(other_device(device, ip="10.0.0.2"), issued.token)

    def test_failed_check_records_the_request_action(self, guard, device, database):
        context = RequestContext(
            headers=dict(device.headers),
            remote_address=device.remote_address,
            method="GET",
            path="/api/video/access/video42",
        )
        with pytest.raises(InvalidVideoToken):
            guard.verify_video_token(context, "definitely.not.a-token")
        with database.session_scope() as session:
            entry = session.execute(select(AuditLogEntry)).scalar_one()
            assert entry.action == "GET /api/video/access/video42"
            assert entry.ip_address == "10.0.0.1"


class TestAuditOutage:
    @pytest.fixture
    def guard(self, store, views, settings, clock):
        return VideoSessionGuard(
            store=store,
            views=views,
            audit=AuditLogger(BrokenDatabase(), clock=clock),
            settings=settings,
            clock=clock,
        )

    def test_valid_token_is_still_granted(self, guard, device):
        issued = guard.generate_video_token(device, "u1", "video42", "batch7")
        access = guard.verify_video_token(device, issued.token)
        assert access.session_id == issued.session_id

    def test_malformed_token_is_still_rejected(self, guard, device):
        with pytest.raises(InvalidVideoToken):
            guard.verify_video_token(device, "definitely.not.a-token")

    def test_terminated_session_is_still_rejected(self, guard, device):
        issued = guard.generate_video_token(device, "u1", "video42", "batch7")
        guard.terminate_video_session(issued.session_id, "u1")
        with pytest.raises(InvalidVideoSession):
            guard.verify_video_token(device, issued.token)

    def test_device_mismatch_is_still_rejected(self, guard, device):
        issued = guard.generate_video_token(device, "u1", "video42", "batch7")
        with pytest.raises(DeviceMismatch):
            guard.verify_video_token(other_device(device, ip="10.0.0.2"), issued.token)

class TestRecordAccess:
    def test_refreshes_last_access(self, guard, store, device, clock):
        issued = guard.generate_video_token(device, "u1", "video42", "batch7")
        clock.advance(minutes=20)
        guard.record_access(issued.session_id)
        assert store.get_session(issued.session_id).last_access_at == clock.now

    def test_failures_are_swallowed(self, database, views, audit, settings, clock):
        guard = VideoSessionGuard(
            store=FailingStore(database),
            views=views,
            audit=audit,
            settings=settings,
            clock=clock,
        )
        guard.record_access("any-session")


class TestTerminateVideoSession:
    def test_twice_is_not_an_error(self, guard, device):
        issued = guard.generate_video_token(device, "u1", "video42", "batch7")
        assert guard.terminate_video_session(issued.session_id, "u1") is True
        assert guard.terminate_video_session(issued.session_id, "u1") is False

    def test_unknown_session_is_not_an_error(self, guard):
        assert guard.terminate_video_session("no-such-session", "u1") is False

    def test_someone_elses_session(self, guard, device):
        issued = guard.generate_video_token(device, "u1", "video42", "batch7")
        with pytest.raises(SessionNotFound):
            guard.terminate_video_session(issued.session_id, "u2")
        assert guard.verify_video_token(device, issued.token).user_id == "u1"


class TestActiveSessions:
    def test_lists_only_live_sessions_of_the_user(self, guard, device, clock):
        kept = guard.generate_video_token(device, "u1", "video42", "batch7")
        ended = guard.generate_video_token(device, "u1", "video43", "batch7")
        guard.generate_video_token(device, "u2", "video42", "batch7")
        guard.terminate_video_session(ended.session_id, "u1")
        sessions = guard.get_active_video_sessions("u1")
        assert [s.session_id for s in sessions] == [kept.session_id]

    def test_expire_stale_sessions(self, guard, device, clock):
        guard.generate_video_token(device, "u1", "video42", "batch7")
        clock.advance(hours=3)
        assert guard.expire_stale_sessions() == 1
        assert guard.get_active_video_sessions("u1") == []
