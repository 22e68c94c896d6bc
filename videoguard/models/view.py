from sqlalchemy import Column, DateTime, Index, Integer, String

from videoguard.database import Base


class VideoViewEntry(Base):
    __tablename__ = "video_views"

    id = Column(Integer, primary_key=True)
    user_id = Column(String(128), nullable=False)
    video_id = Column(String(128), nullable=False)
    batch_id = Column(String(128), nullable=False)
    session_id = Column(String(64), nullable=False)
    viewed_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (Index("ix_video_views_user_viewed_at", "user_id", "viewed_at"),)
