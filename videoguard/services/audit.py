from datetime import datetime, timezone
from enum import Enum
import logging
from typing import Any, Callable
import uuid

from sqlalchemy.exc import SQLAlchemyError

from videoguard.database import Database
from videoguard.models.audit import AuditLogEntry, SecurityAlertEntry
from videoguard.services.fingerprint import RequestContext

LOGGER = logging.getLogger(__name__)


class AuditEvent(str, Enum):
    VIDEO_ACCESS = "VIDEO_ACCESS"
    VIDEO_VIEW = "VIDEO_VIEW"
    VIDEO_SESSION_END = "VIDEO_SESSION_END"
    UNAUTHORIZED_ACCESS = "UNAUTHORIZED_ACCESS"
    SUSPICIOUS_ACTIVITY = "SUSPICIOUS_ACTIVITY"
    SYSTEM_ERROR = "SYSTEM_ERROR"


class RiskLevel(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


ALERT_LEVELS = {RiskLevel.HIGH, RiskLevel.CRITICAL}
HIGH_RISK_ACTIVITY = "HIGH_RISK_ACTIVITY"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AuditLogger:
    """Writes security-relevant events to ``audit_logs``.

    HIGH and CRITICAL events also open an unreviewed ``security_alerts`` row in
    the same transaction. Logging an event never fails the request that
    produced it: storage errors are logged and dropped.
    """

    def __init__(self, database: Database, clock: Callable[[], datetime] = _utcnow) -> None:
        self._database = database
        self._clock = clock

    def log_event(
        self,
        event_type: AuditEvent,
        context: RequestContext | None = None,
        *,
        user_id: str | None = None,
        risk_level: RiskLevel = RiskLevel.LOW,
        action: str | None = None,
        success: bool = True,
        **details: Any,
    ) -> None:
        if risk_level in ALERT_LEVELS:
            LOGGER.warning(
                "Security event %s risk=%s user=%s details=%s",
                event_type.value,
                risk_level.value,
                user_id,
                details,
            )
        if action is None and context is not None and context.method:
            action = f"{context.method} {context.path}"
        event_id = str(uuid.uuid4())
        ip_address = context.remote_address if context else None
        user_agent = context.header("user-agent") if context else None
        created_at = self._clock()
        try:
            with self._database.session_scope() as session:
                session.add(
                    AuditLogEntry(
                        event_id=event_id,
                        event_type=event_type.value,
                        user_id=user_id,
                        action=action,
                        details=details or None,
                        ip_address=ip_address,
                        user_agent=user_agent,
                        risk_level=risk_level.value,
                        success=success,
                        created_at=created_at,
                    )
                )
                if risk_level in ALERT_LEVELS:
                    session.add(
                        SecurityAlertEntry(
                            event_id=event_id,
                            alert_type=HIGH_RISK_ACTIVITY,
                            event_type=event_type.value,
                            user_id=user_id,
                            risk_level=risk_level.value,
                            details=details or None,
                            ip_address=ip_address,
                            user_agent=user_agent,
                            reviewed=False,
                            created_at=created_at,
                        )
                    )
        except SQLAlchemyError:
            LOGGER.exception("Failed to write audit log event=%s", event_type.value)
