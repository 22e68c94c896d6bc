from fastapi import BackgroundTasks, Header, HTTPException, Query, Request, status

from videoguard.config import Settings
from videoguard.services.enrollments import EnrollmentStore
from videoguard.services.fingerprint import RequestContext
from videoguard.services.guard import VideoAccess, VideoSessionGuard
from videoguard.services.tokens import TokenError, decode_access_token

VIDEO_TOKEN_HEADER = "x-video-token"


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_guard(request: Request) -> VideoSessionGuard:
    return request.app.state.guard


def get_enrollments(request: Request) -> EnrollmentStore:
    return request.app.state.enrollments


def get_request_context(request: Request) -> RequestContext:
    return RequestContext.from_request(request)


def get_current_user_id(
    request: Request, authorization: str | None = Header(default=None)
) -> str:
    if not authorization:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing Authorization header",
        )
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid Authorization header",
        )
    try:
        return decode_access_token(token, settings=get_settings(request))
    except TokenError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(exc),
        ) from exc


def require_video_access(
    request: Request,
    background_tasks: BackgroundTasks,
    x_video_token: str | None = Header(default=None, alias=VIDEO_TOKEN_HEADER),
    token: str | None = Query(default=None),
) -> VideoAccess:
    """Gate for protected video endpoints.

    Rejections are raised as VideoAccessError and rendered by the app's
    error handler; the route body never runs.
    """
    guard = get_guard(request)
    access = guard.verify_video_token(
        get_request_context(request), x_video_token or token
    )
    background_tasks.add_task(guard.record_access, access.session_id)
    request.state.video_access = access
    return access
