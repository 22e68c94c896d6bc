from dataclasses import dataclass
from datetime import datetime, timezone
import logging

from sqlalchemy import func, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError

from videoguard.database import Database
from videoguard.models.session import (
    SESSION_ACTIVE,
    SESSION_TERMINATED,
    VideoSessionEntry,
    VideoSessionQuota,
)

LOGGER = logging.getLogger(__name__)


class StoreError(RuntimeError):
    pass


class SessionLimitReached(Exception):
    def __init__(self, active_count: int) -> None:
        self.active_count = active_count
        super().__init__(f"{active_count} active video sessions")


@dataclass(frozen=True)
class VideoSession:
    session_id: str
    user_id: str
    video_id: str
    batch_id: str
    device_fingerprint: str
    issued_hour: int
    status: str
    created_at: datetime
    last_access_at: datetime
    expires_at: datetime
    terminated_at: datetime | None = None


def _as_utc(value: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes; everything is stored in UTC.
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def _to_session(entry: VideoSessionEntry) -> VideoSession:
    return VideoSession(
        session_id=entry.session_id,
        user_id=entry.user_id,
        video_id=entry.video_id,
        batch_id=entry.batch_id,
        device_fingerprint=entry.device_fingerprint,
        issued_hour=entry.issued_hour,
        status=entry.status,
        created_at=_as_utc(entry.created_at),
        last_access_at=_as_utc(entry.last_access_at),
        expires_at=_as_utc(entry.expires_at),
        terminated_at=_as_utc(entry.terminated_at),
    )


_UPSERT_DIALECTS = {"postgresql": postgresql.insert, "sqlite": sqlite.insert}


def _claim_quota_row(session, user_id: str, now: datetime) -> None:
    # The first statement of the transaction is a write on the user's quota
    # row: SQLite takes its database write lock, PostgreSQL locks the row.
    insert = _UPSERT_DIALECTS.get(session.get_bind().dialect.name)
    if insert is not None:
        session.execute(
            insert(VideoSessionQuota)
            .values(user_id=user_id, updated_at=now)
            .on_conflict_do_nothing(index_elements=["user_id"])
        )
    else:
        quota = session.execute(
            select(VideoSessionQuota)
            .where(VideoSessionQuota.user_id == user_id)
            .with_for_update()
        ).scalar_one_or_none()
        if quota is None:
            session.add(VideoSessionQuota(user_id=user_id, updated_at=now))
            session.flush()
    session.execute(
        update(VideoSessionQuota)
        .where(VideoSessionQuota.user_id == user_id)
        .values(updated_at=now)
    )


def _active_filter(now: datetime):
    return (
        VideoSessionEntry.status == SESSION_ACTIVE,
        VideoSessionEntry.expires_at > now,
    )


class VideoSessionStore:
    def __init__(self, database: Database) -> None:
        self._database = database

    def create_session(self, record: VideoSession, *, max_active: int, now: datetime) -> VideoSession:
        """Insert ``record`` unless the user already holds ``max_active`` sessions.

        The user's quota row is written before counting and stays locked until
        commit, so concurrent issuances for one user run the check one at a
        time.
        """
        try:
            with self._database.session_scope() as session:
                _claim_quota_row(session, record.user_id, now)
                active_count = session.execute(
                    select(func.count())
                    .select_from(VideoSessionEntry)
                    .where(VideoSessionEntry.user_id == record.user_id, *_active_filter(now))
                ).scalar_one()
                if active_count >= max_active:
                    raise SessionLimitReached(active_count)

                session.add(
                    VideoSessionEntry(
                        session_id=record.session_id,
                        user_id=record.user_id,
                        video_id=record.video_id,
                        batch_id=record.batch_id,
                        device_fingerprint=record.device_fingerprint,
                        issued_hour=record.issued_hour,
                        status=SESSION_ACTIVE,
                        created_at=record.created_at,
                        last_access_at=record.last_access_at,
                        expires_at=record.expires_at,
                        terminated_at=None,
                    )
                )
        except SQLAlchemyError as exc:
            raise StoreError("Failed to create video session") from exc
        return record

    def get_session(self, session_id: str) -> VideoSession | None:
        try:
            with self._database.session_scope() as session:
                entry = session.execute(
                    select(VideoSessionEntry).where(VideoSessionEntry.session_id == session_id)
                ).scalar_one_or_none()
                return _to_session(entry) if entry is not None else None
        except SQLAlchemyError as exc:
            raise StoreError("Failed to load video session") from exc

    def get_active_session(self, session_id: str, *, now: datetime) -> VideoSession | None:
        try:
            with self._database.session_scope() as session:
                entry = session.execute(
                    select(VideoSessionEntry).where(
                        VideoSessionEntry.session_id == session_id, *_active_filter(now)
                    )
                ).scalar_one_or_none()
                return _to_session(entry) if entry is not None else None
        except SQLAlchemyError as exc:
            raise StoreError("Failed to load video session") from exc

    def list_active(self, user_id: str, *, now: datetime) -> list[VideoSession]:
        try:
            with self._database.session_scope() as session:
                entries = session.execute(
                    select(VideoSessionEntry)
                    .where(VideoSessionEntry.user_id == user_id, *_active_filter(now))
                    .order_by(VideoSessionEntry.created_at, VideoSessionEntry.id)
                ).scalars().all()
                return [_to_session(entry) for entry in entries]
        except SQLAlchemyError as exc:
            raise StoreError("Failed to list video sessions") from exc

    def touch(self, session_id: str, *, now: datetime) -> bool:
        try:
            with self._database.session_scope() as session:
                result = session.execute(
                    update(VideoSessionEntry)
                    .where(
                        VideoSessionEntry.session_id == session_id,
                        VideoSessionEntry.status == SESSION_ACTIVE,
                    )
                    .values(last_access_at=now)
                )
                return result.rowcount > 0
        except SQLAlchemyError as exc:
            raise StoreError("Failed to refresh video session") from exc

    def terminate(self, session_id: str, *, now: datetime) -> bool:
        try:
            with self._database.session_scope() as session:
                result = session.execute(
                    update(VideoSessionEntry)
                    .where(
                        VideoSessionEntry.session_id == session_id,
                        VideoSessionEntry.status == SESSION_ACTIVE,
                    )
                    .values(status=SESSION_TERMINATED, terminated_at=now)
                )
                return result.rowcount > 0
        except SQLAlchemyError as exc:
            raise StoreError("Failed to terminate video session") from exc

    def expire_stale(self, now: datetime) -> int:
        try:
            with self._database.session_scope() as session:
                result = session.execute(
                    update(VideoSessionEntry)
                    .where(
                        VideoSessionEntry.status == SESSION_ACTIVE,
                        VideoSessionEntry.expires_at <= now,
                    )
                    .values(status=SESSION_TERMINATED, terminated_at=now)
                )
                count = result.rowcount
        except SQLAlchemyError as exc:
            raise StoreError("Failed to expire video sessions") from exc
        LOGGER.info("Expired %s stale video sessions", count)
        return count
