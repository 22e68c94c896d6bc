class VideoAccessError(Exception):
    status_code = 400
    code = "VIDEO_ACCESS_ERROR"
    default_message = "Video access failed"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message}


class MissingVideoToken(VideoAccessError):
    status_code = 401
    code = "MISSING_VIDEO_TOKEN"
    default_message = "Video access token is required"


class InvalidVideoToken(VideoAccessError):
    status_code = 401
    code = "INVALID_VIDEO_TOKEN"
    default_message = "Video access token is invalid or expired"


class InvalidVideoSession(VideoAccessError):
    status_code = 401
    code = "INVALID_VIDEO_SESSION"
    default_message = "Video session is invalid or expired"


class DeviceMismatch(VideoAccessError):
    status_code = 403
    code = "DEVICE_MISMATCH"
    default_message = "Device verification failed"


class SessionNotFound(VideoAccessError):
    status_code = 404
    code = "SESSION_NOT_FOUND"
    default_message = "Video session not found"


class SessionLimitExceeded(VideoAccessError):
    status_code = 403
    code = "MAX_SESSIONS_EXCEEDED"
    default_message = "Maximum concurrent video sessions exceeded"


class DailyViewLimitExceeded(VideoAccessError):
    status_code = 403
    code = "DAILY_VIEW_LIMIT_EXCEEDED"
    default_message = "Daily video view limit exceeded"


class VideoAccessDenied(VideoAccessError):
    status_code = 403
    code = "ACCESS_DENIED"
    default_message = "You are not enrolled in this batch"


class VideoServiceError(VideoAccessError):
    status_code = 500
    code = "VIDEO_SERVICE_ERROR"
    default_message = "Video access service is unavailable"
