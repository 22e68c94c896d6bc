from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from videoguard.database import Database
from videoguard.models.view import VideoViewEntry
from videoguard.services.sessions import StoreError


class VideoViewStore:
    def __init__(self, database: Database) -> None:
        self._database = database

    def record_view(
        self, user_id: str, video_id: str, batch_id: str, session_id: str, *, now: datetime
    ) -> None:
        try:
            with self._database.session_scope() as session:
                session.add(
                    VideoViewEntry(
                        user_id=user_id,
                        video_id=video_id,
                        batch_id=batch_id,
                        session_id=session_id,
                        viewed_at=now,
                    )
                )
        except SQLAlchemyError as exc:
            raise StoreError("Failed to record video view") from exc

    def count_since(self, user_id: str, since: datetime) -> int:
        try:
            with self._database.session_scope() as session:
                return session.execute(
                    select(func.count())
                    .select_from(VideoViewEntry)
                    .where(VideoViewEntry.user_id == user_id, VideoViewEntry.viewed_at >= since)
                ).scalar_one()
        except SQLAlchemyError as exc:
            raise StoreError("Failed to count video views") from exc
