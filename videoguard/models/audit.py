from sqlalchemy import JSON, Boolean, Column, DateTime, Integer, String

from videoguard.database import Base


class AuditLogEntry(Base):
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True)
    event_id = Column(String(64), nullable=False, unique=True)
    event_type = Column(String(64), nullable=False, index=True)
    user_id = Column(String(128), nullable=True, index=True)
    action = Column(String(255), nullable=True)
    details = Column(JSON, nullable=True)
    ip_address = Column(String(64), nullable=True)
    user_agent = Column(String(512), nullable=True)
    risk_level = Column(String(16), nullable=False)
    success = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False)


class SecurityAlertEntry(Base):
    __tablename__ = "security_alerts"

    id = Column(Integer, primary_key=True)
    event_id = Column(String(64), nullable=False, index=True)
    alert_type = Column(String(64), nullable=False)
    event_type = Column(String(64), nullable=False)
    user_id = Column(String(128), nullable=True, index=True)
    risk_level = Column(String(16), nullable=False)
    details = Column(JSON, nullable=True)
    ip_address = Column(String(64), nullable=True)
    user_agent = Column(String(512), nullable=True)
    reviewed = Column(Boolean, nullable=False, default=False)
    reviewed_by = Column(String(128), nullable=True)
    reviewed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
