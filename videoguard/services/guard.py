from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
import logging
from typing import Any, Callable
import uuid

from videoguard.config import Settings
from videoguard.models.session import SESSION_ACTIVE
from videoguard.services.audit import AuditEvent, AuditLogger, RiskLevel
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
from videoguard.services.fingerprint import (
    RequestContext,
    epoch_hour,
    fingerprints_match,
    generate_device_fingerprint,
)
from videoguard.services.sessions import (
    SessionLimitReached,
    StoreError,
    VideoSession,
    VideoSessionStore,
)
from videoguard.services.tokens import (
    RESERVED_VIDEO_CLAIMS,
    TokenError,
    create_video_token,
    decode_video_token,
)
from videoguard.services.views import VideoViewStore

LOGGER = logging.getLogger(__name__)

WATERMARK_POSITION = "bottom-right"


@dataclass(frozen=True)
class IssuedVideoToken:
    token: str
    session_id: str
    expires_in: int
    watermark_enabled: bool


@dataclass(frozen=True)
class VideoAccess:
    user_id: str
    session_id: str
    video_id: str
    batch_id: str
    issued_hour: int
    watermark_data: dict | None = None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _start_of_day(moment: datetime) -> datetime:
    return moment.replace(hour=0, minute=0, second=0, microsecond=0)


class VideoSessionGuard:
    def __init__(
        self,
        *,
        store: VideoSessionStore,
        views: VideoViewStore,
        audit: AuditLogger,
        settings: Settings,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._views = views
        self._audit = audit
        self._settings = settings
        self._clock = clock

    @property
    def audit(self) -> AuditLogger:
        return self._audit

    @property
    def max_concurrent_sessions(self) -> int:
        return self._settings.max_concurrent_sessions

    def generate_video_token(
        self,
        context: RequestContext,
        user_id: str,
        video_id: str,
        batch_id: str,
        additional_claims: dict[str, Any] | None = None,
    ) -> IssuedVideoToken:
        """Issue a token bound to the requesting device.

        The caller must already have confirmed the user is entitled to
        ``batch_id``. A user holding ``max_concurrent_sessions`` active
        sessions is refused; older sessions are never evicted.
        """
        now = self._clock()
        try:
            daily_views = self._views.count_since(user_id, _start_of_day(now))
        except StoreError as exc:
            LOGGER.exception("Failed to count daily views user=%s", user_id)
            raise VideoServiceError() from exc
        if daily_views >= self._settings.max_daily_views:
            raise DailyViewLimitExceeded()

        issued_hour = epoch_hour(now)
        fingerprint = generate_device_fingerprint(context, issued_hour)
        session_id = str(uuid.uuid4())
        lifetime = self._settings.video_token_expire_seconds
        expires_at = now + timedelta(seconds=lifetime)

        claims = {
            key: value
            for key, value in (additional_claims or {}).items()
            if key not in RESERVED_VIDEO_CLAIMS
        }
        claims.update(
            {
                "userId": user_id,
                "videoId": video_id,
                "batchId": batch_id,
                "sessionId": session_id,
                "deviceFingerprint": fingerprint,
                "issuedHour": issued_hour,
            }
        )
        if self._settings.watermark_enabled:
            claims["watermarkData"] = {
                "userId": user_id,
                "timestamp": int(now.timestamp() * 1000),
                "position": WATERMARK_POSITION,
            }
        try:
            token = create_video_token(
                claims, issued_at=now, expires_at=expires_at, settings=self._settings
            )
        except TokenError as exc:
            LOGGER.exception("Failed to sign video token")
            raise VideoServiceError() from exc

        record = VideoSession(
            session_id=session_id,
            user_id=user_id,
            video_id=video_id,
            batch_id=batch_id,
            device_fingerprint=fingerprint,
            issued_hour=issued_hour,
            status=SESSION_ACTIVE,
            created_at=now,
            last_access_at=now,
            expires_at=expires_at,
        )
        try:
            self._store.create_session(
                record, max_active=self._settings.max_concurrent_sessions, now=now
            )
        except SessionLimitReached as exc:
            LOGGER.info(
                "Video session limit reached user=%s active=%s", user_id, exc.active_count
            )
            raise SessionLimitExceeded() from exc
        except StoreError as exc:
            LOGGER.exception("Failed to persist video session user=%s", user_id)
            raise VideoServiceError() from exc

        LOGGER.info("Issued video session=%s user=%s video=%s", session_id, user_id, video_id)
        return IssuedVideoToken(
            token=token,
            session_id=session_id,
            expires_in=lifetime,
            watermark_enabled=self._settings.watermark_enabled,
        )

    def verify_video_token(self, context: RequestContext, token: str | None) -> VideoAccess:
        if not token:
            raise MissingVideoToken()
        now = self._clock()
        try:
            data = decode_video_token(token, now=now, settings=self._settings)
        except TokenError as exc:
            self._audit.log_event(
                AuditEvent.UNAUTHORIZED_ACCESS,
                context,
                risk_level=RiskLevel.MEDIUM,
                success=False,
                reason="Invalid or expired video token",
            )
            raise InvalidVideoToken() from exc

        try:
            session = self._store.get_active_session(data.session_id, now=now)
        except StoreError as exc:
            LOGGER.exception("Video session lookup failed session=%s", data.session_id)
            raise VideoServiceError() from exc
        if session is None or session.user_id != data.user_id:
            self._audit.log_event(
                AuditEvent.UNAUTHORIZED_ACCESS,
                context,
                user_id=data.user_id,
                risk_level=RiskLevel.HIGH,
                success=False,
                reason="Invalid or expired video session",
                videoId=data.video_id,
                sessionId=data.session_id,
            )
            raise InvalidVideoSession()

        current = generate_device_fingerprint(context, data.issued_hour)
        if not (
            fingerprints_match(data.device_fingerprint, current)
            and fingerprints_match(session.device_fingerprint, current)
        ):
            self._audit.log_event(
                AuditEvent.SUSPICIOUS_ACTIVITY,
                context,
                user_id=data.user_id,
                risk_level=RiskLevel.CRITICAL,
                success=False,
                reason="Device fingerprint mismatch",
                videoId=data.video_id,
                sessionId=data.session_id,
            )
            raise DeviceMismatch()

        return VideoAccess(
            user_id=data.user_id,
            session_id=data.session_id,
            video_id=data.video_id,
            batch_id=data.batch_id,
            issued_hour=data.issued_hour,
            watermark_data=data.watermark_data,
        )

    def record_access(self, session_id: str) -> None:
        # lastAccessAt is a liveness hint; losing an update is acceptable.
        try:
            self._store.touch(session_id, now=self._clock())
        except StoreError:
            LOGGER.warning("Failed to refresh lastAccessAt session=%s", session_id, exc_info=True)

    def record_view(self, access: VideoAccess, context: RequestContext | None = None) -> None:
        try:
            self._views.record_view(
                access.user_id,
                access.video_id,
                access.batch_id,
                access.session_id,
                now=self._clock(),
            )
        except StoreError as exc:
            LOGGER.exception("Failed to record video view session=%s", access.session_id)
            raise VideoServiceError() from exc
        self._audit.log_event(
            AuditEvent.VIDEO_VIEW,
            context,
            user_id=access.user_id,
            videoId=access.video_id,
            batchId=access.batch_id,
            sessionId=access.session_id,
        )

    def terminate_video_session(
        self, session_id: str, user_id: str, context: RequestContext | None = None
    ) -> bool:
        """End ``session_id`` on behalf of its owner.

        Returns False when there was nothing left to terminate. Raises
        SessionNotFound when the session belongs to someone else.
        """
        try:
            session = self._store.get_session(session_id)
            if session is None:
                return False
            if session.user_id != user_id:
                raise SessionNotFound()
            terminated = self._store.terminate(session_id, now=self._clock())
        except StoreError as exc:
            LOGGER.exception("Failed to terminate video session=%s", session_id)
            raise VideoServiceError() from exc
        if terminated:
            LOGGER.info("Terminated video session=%s user=%s", session_id, user_id)
            self._audit.log_event(
                AuditEvent.VIDEO_SESSION_END,
                context,
                user_id=user_id,
                sessionId=session_id,
                terminatedBy="user",
            )
        return terminated

    def get_active_video_sessions(self, user_id: str) -> list[VideoSession]:
        try:
            return self._store.list_active(user_id, now=self._clock())
        except StoreError as exc:
            LOGGER.exception("Failed to list video sessions user=%s", user_id)
            raise VideoServiceError() from exc

    def expire_stale_sessions(self) -> int:
        try:
            return self._store.expire_stale(self._clock())
        except StoreError as exc:
            LOGGER.exception("Failed to expire stale video sessions")
            raise VideoServiceError() from exc
