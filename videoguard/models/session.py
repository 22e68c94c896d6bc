from sqlalchemy import BigInteger, Column, DateTime, Index, Integer, String

from videoguard.database import Base

SESSION_ACTIVE = "active"
SESSION_TERMINATED = "terminated"


class VideoSessionEntry(Base):
    __tablename__ = "video_sessions"

    id = Column(Integer, primary_key=True)
    session_id = Column(String(64), nullable=False, unique=True, index=True)
    user_id = Column(String(128), nullable=False)
    video_id = Column(String(128), nullable=False)
    batch_id = Column(String(128), nullable=False)
    device_fingerprint = Column(String(64), nullable=False)
    issued_hour = Column(BigInteger, nullable=False)
    status = Column(String(16), nullable=False, default=SESSION_ACTIVE)
    created_at = Column(DateTime(timezone=True), nullable=False)
    last_access_at = Column(DateTime(timezone=True), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    terminated_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ix_video_sessions_user_status", "user_id", "status", "expires_at"),
    )


class VideoSessionQuota(Base):
    """Per-user lock row serializing session issuance."""

    __tablename__ = "video_session_quotas"

    user_id = Column(String(128), primary_key=True)
    updated_at = Column(DateTime(timezone=True), nullable=False)
