from sqlalchemy import or_, select
from sqlalchemy.exc import SQLAlchemyError

from videoguard.database import Database
from videoguard.models.enrollment import EnrollmentEntry
from videoguard.services.sessions import StoreError


class EnrollmentStore:
    """Read-only entitlement lookup consulted before a video token is issued."""

    def __init__(self, database: Database) -> None:
        self._database = database

    def is_enrolled(self, user_id: str, batch_id: str) -> bool:
        try:
            with self._database.session_scope() as session:
                entry = session.execute(
                    select(EnrollmentEntry.id)
                    .where(
                        EnrollmentEntry.student_id == user_id,
                        EnrollmentEntry.batch_id == batch_id,
                        # Legacy rows only carry ``status``.
                        or_(
                            EnrollmentEntry.payment_status == "completed",
                            EnrollmentEntry.status == "active",
                        ),
                    )
                    .limit(1)
                ).scalar_one_or_none()
                return entry is not None
        except SQLAlchemyError as exc:
            raise StoreError("Failed to look up enrollment") from exc
