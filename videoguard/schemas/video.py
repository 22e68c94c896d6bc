from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class VideoTokenRequest(CamelModel):
    video_id: str = Field(min_length=1, max_length=128)
    batch_id: str = Field(min_length=1, max_length=128)


class VideoTokenResponse(CamelModel):
    token: str
    session_id: str
    expires_in: int
    watermark_enabled: bool


class VideoAccessResponse(CamelModel):
    user_id: str
    session_id: str
    video_id: str
    batch_id: str
    watermark_data: Optional[dict] = None


class TerminateSessionRequest(CamelModel):
    session_id: str = Field(min_length=1, max_length=64)


class TerminateSessionResponse(CamelModel):
    success: bool = True
    terminated: bool


class VideoSessionSummary(CamelModel):
    session_id: str
    video_id: str
    batch_id: str
    created_at: datetime
    last_access_at: datetime
    expires_at: datetime


class ActiveSessionsResponse(CamelModel):
    sessions: list[VideoSessionSummary]
    count: int
    max_allowed: int


class ErrorResponse(BaseModel):
    code: str
    message: str
