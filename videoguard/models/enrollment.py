from sqlalchemy import Column, DateTime, Index, Integer, String

from videoguard.database import Base


class EnrollmentEntry(Base):
    __tablename__ = "enrollments"

    id = Column(Integer, primary_key=True)
    student_id = Column(String(128), nullable=False)
    batch_id = Column(String(128), nullable=False)
    payment_status = Column(String(32), nullable=True)
    status = Column(String(32), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (Index("ix_enrollments_student_batch", "student_id", "batch_id"),)
