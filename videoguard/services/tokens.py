from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

import jwt

from videoguard.config import Settings, settings as default_settings

RESERVED_VIDEO_CLAIMS = frozenset(
    {
        "userId",
        "videoId",
        "batchId",
        "sessionId",
        "deviceFingerprint",
        "issuedHour",
        "watermarkData",
        "iat",
        "exp",
        "iss",
        "aud",
    }
)


class TokenError(ValueError):
    pass


@dataclass(frozen=True)
class VideoTokenData:
    user_id: str
    video_id: str
    batch_id: str
    session_id: str
    device_fingerprint: str
    issued_hour: int
    expires_at: datetime
    watermark_data: dict | None = None


def create_video_token(
    claims: dict[str, Any],
    *,
    issued_at: datetime,
    expires_at: datetime,
    settings: Settings = default_settings,
) -> str:
    if not settings.drm_secret:
        raise TokenError("DRM secret is not configured")
    payload = dict(claims)
    payload.update(
        {
            "iat": int(issued_at.timestamp()),
            "exp": int(expires_at.timestamp()),
            "iss": settings.video_token_issuer,
            "aud": settings.video_token_audience,
        }
    )
    return jwt.encode(payload, settings.drm_secret, algorithm=settings.jwt_algorithm)


def decode_video_token(
    token: str, *, now: datetime, settings: Settings = default_settings
) -> VideoTokenData:
    """Verify signature, issuer and audience, then check ``exp`` against ``now``."""
    if not token:
        raise TokenError("Token is missing")
    if not settings.drm_secret:
        raise TokenError("DRM secret is not configured")
    try:
        payload = jwt.decode(
            token,
            settings.drm_secret,
            algorithms=[settings.jwt_algorithm],
            issuer=settings.video_token_issuer,
            audience=settings.video_token_audience,
            options={
                "require": ["exp", "iss", "aud"],
                "verify_exp": False,
                "verify_iat": False,
            },
        )
    except jwt.InvalidTokenError as exc:
        raise TokenError("Invalid token") from exc

    expires = payload["exp"]
    if isinstance(expires, bool) or not isinstance(expires, (int, float)):
        raise TokenError("Invalid token")
    if expires <= now.timestamp():
        raise TokenError("Token has expired")

    values = {}
    for claim in ("userId", "videoId", "batchId", "sessionId", "deviceFingerprint"):
        value = payload.get(claim)
        if not isinstance(value, str) or not value:
            raise TokenError(f"Token is missing {claim}")
        values[claim] = value
    issued_hour = payload.get("issuedHour")
    if isinstance(issued_hour, bool) or not isinstance(issued_hour, int):
        raise TokenError("Token is missing issuedHour")
    watermark_data = payload.get("watermarkData")
    return VideoTokenData(
        user_id=values["userId"],
        video_id=values["videoId"],
        batch_id=values["batchId"],
        session_id=values["sessionId"],
        device_fingerprint=values["deviceFingerprint"],
        issued_hour=issued_hour,
        expires_at=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
        watermark_data=watermark_data if isinstance(watermark_data, dict) else None,
    )


def decode_access_token(token: str, *, settings: Settings = default_settings) -> str:
    if not token:
        raise TokenError("Token is missing")
    if not settings.jwt_secret:
        raise TokenError("JWT secret is not configured")
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
        )
    except jwt.ExpiredSignatureError as exc:
        raise TokenError("Token has expired") from exc
    except jwt.InvalidTokenError as exc:
        raise TokenError("Invalid token") from exc
    if payload.get("type") != "access":
        raise TokenError("Invalid token type")
    subject = payload.get("sub")
    if not subject:
        raise TokenError("Token subject is missing")
    return str(subject)
