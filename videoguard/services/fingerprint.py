from dataclasses import dataclass, field
from datetime import datetime, timezone
import hashlib
import hmac
from typing import Mapping

from fastapi import Request

UNKNOWN = "unknown"
SECONDS_PER_HOUR = 60 * 60


@dataclass(frozen=True)
class RequestContext:
    """The request signals a fingerprint is derived from.

    Header names are matched case-insensitively.
    """

    headers: Mapping[str, str] = field(default_factory=dict)
    remote_address: str = ""
    method: str = ""
    path: str = ""

    def __post_init__(self) -> None:
        normalized = {name.lower(): value for name, value in self.headers.items()}
        object.__setattr__(self, "headers", normalized)

    def header(self, name: str) -> str | None:
        return self.headers.get(name.lower())

    @classmethod
    def from_request(cls, request: Request) -> "RequestContext":
        remote_address = request.client.host if request.client else ""
        return cls(
            headers=dict(request.headers),
            remote_address=remote_address,
            method=request.method,
            path=request.url.path,
        )


def epoch_hour(moment: datetime) -> int:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return int(moment.timestamp()) // SECONDS_PER_HOUR


def generate_device_fingerprint(context: RequestContext, issued_hour: int) -> str:
    """Return the SHA-256 hex digest of UA, language, IP and the issuing hour.

    The hour is the one stored in the token, never the current one, so a
    token stays verifiable for its whole lifetime on the same device.
    """
    user_agent = context.header("user-agent") or UNKNOWN
    accept_language = context.header("accept-language") or UNKNOWN
    ip_address = context.remote_address or UNKNOWN
    material = f"{user_agent}:{accept_language}:{ip_address}:{int(issued_hour)}"
    return hashlib.sha256(material.encode("utf-8")).hexdigest()


def fingerprints_match(expected: str, actual: str) -> bool:
    return hmac.compare_digest(expected.encode("utf-8"), actual.encode("utf-8"))
