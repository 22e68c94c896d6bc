import logging

from fastapi import APIRouter, Depends

from videoguard.routers.deps import (
    get_current_user_id,
    get_enrollments,
    get_guard,
    get_request_context,
    require_video_access,
)
from videoguard.schemas.video import (
    ActiveSessionsResponse,
    ErrorResponse,
    TerminateSessionRequest,
    TerminateSessionResponse,
    VideoAccessResponse,
    VideoSessionSummary,
    VideoTokenRequest,
    VideoTokenResponse,
)
from videoguard.services.audit import AuditEvent, RiskLevel
from videoguard.services.enrollments import EnrollmentStore
from videoguard.services.errors import VideoAccessDenied, VideoServiceError
from videoguard.services.fingerprint import RequestContext
from videoguard.services.guard import VideoAccess, VideoSessionGuard
from videoguard.services.sessions import StoreError

LOGGER = logging.getLogger(__name__)

ERROR_RESPONSES = {
    401: {"model": ErrorResponse},
    403: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    500: {"model": ErrorResponse},
}

router = APIRouter(prefix="/video", tags=["video"], responses=ERROR_RESPONSES)


@router.post("/token", response_model=VideoTokenResponse)
def issue_video_token(
    payload: VideoTokenRequest,
    user_id: str = Depends(get_current_user_id),
    context: RequestContext = Depends(get_request_context),
    guard: VideoSessionGuard = Depends(get_guard),
    enrollments: EnrollmentStore = Depends(get_enrollments),
) -> VideoTokenResponse:
    try:
        enrolled = enrollments.is_enrolled(user_id, payload.batch_id)
    except StoreError as exc:
        LOGGER.exception("Enrollment lookup failed user=%s", user_id)
        raise VideoServiceError() from exc
    if not enrolled:
        guard.audit.log_event(
            AuditEvent.UNAUTHORIZED_ACCESS,
            context,
            user_id=user_id,
            risk_level=RiskLevel.MEDIUM,
            success=False,
            reason="User not enrolled in batch",
            videoId=payload.video_id,
            batchId=payload.batch_id,
        )
        raise VideoAccessDenied()

    issued = guard.generate_video_token(
        context, user_id, payload.video_id, payload.batch_id
    )
    guard.audit.log_event(
        AuditEvent.VIDEO_ACCESS,
        context,
        user_id=user_id,
        videoId=payload.video_id,
        batchId=payload.batch_id,
        sessionId=issued.session_id,
    )
    return VideoTokenResponse(
        token=issued.token,
        session_id=issued.session_id,
        expires_in=issued.expires_in,
        watermark_enabled=issued.watermark_enabled,
    )


@router.get("/access/{video_id}", response_model=VideoAccessResponse)
def access_video(
    video_id: str,
    access: VideoAccess = Depends(require_video_access),
    context: RequestContext = Depends(get_request_context),
    guard: VideoSessionGuard = Depends(get_guard),
) -> VideoAccessResponse:
    if access.video_id != video_id:
        raise VideoAccessDenied("Video token was issued for a different video")
    guard.record_view(access, context)
    return VideoAccessResponse(
        user_id=access.user_id,
        session_id=access.session_id,
        video_id=access.video_id,
        batch_id=access.batch_id,
        watermark_data=access.watermark_data,
    )


@router.post("/terminate", response_model=TerminateSessionResponse)
def terminate_video_session(
    payload: TerminateSessionRequest,
    user_id: str = Depends(get_current_user_id),
    context: RequestContext = Depends(get_request_context),
    guard: VideoSessionGuard = Depends(get_guard),
) -> TerminateSessionResponse:
    terminated = guard.terminate_video_session(payload.session_id, user_id, context)
    return TerminateSessionResponse(success=True, terminated=terminated)


@router.get("/sessions", response_model=ActiveSessionsResponse)
def list_video_sessions(
    user_id: str = Depends(get_current_user_id),
    guard: VideoSessionGuard = Depends(get_guard),
) -> ActiveSessionsResponse:
    sessions = guard.get_active_video_sessions(user_id)
    return ActiveSessionsResponse(
        sessions=[
            VideoSessionSummary(
                session_id=session.session_id,
                video_id=session.video_id,
                batch_id=session.batch_id,
                created_at=session.created_at,
                last_access_at=session.last_access_at,
                expires_at=session.expires_at,
            )
            for session in sessions
        ],
        count=len(sessions),
        max_allowed=guard.max_concurrent_sessions,
    )
