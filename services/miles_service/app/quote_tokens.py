from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

from jose import JWTError, jwt

from .errors import QuoteTokenInvalid
from .quote_engine import QuoteRequest

QUOTE_TOKEN_VERSION = 1
QUOTE_TOKEN_AUDIENCE = "service-miles-quote"


@dataclass(frozen=True)
class QuoteTokenClaims:
    user_id: int
    service_type: str
    quoted_at: datetime
    advance_discount_max: int


def _utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _job_claims(service_type: str, job: QuoteRequest) -> dict[str, Any]:
    return {
        "service_type": service_type,
        "scheduled_start": _utc(job.scheduled_start).isoformat(),
        "travel_minutes": float(job.travel_minutes),
        "wait_minutes": float(job.wait_minutes),
        "number_of_stops": int(job.number_of_stops),
        "return_or_exchange": bool(job.return_or_exchange),
        "cash_handling": bool(job.cash_handling),
        "peak_hours": bool(job.peak_hours),
    }


class QuoteTokenCodec:
    """Signs the inputs of a quote so a later submission is priced as it was shown."""

    def __init__(self, secret: str, ttl_seconds: int = 900, algorithm: str = "HS256") -> None:
        self.secret = secret
        self.ttl_seconds = ttl_seconds
        self.algorithm = algorithm

    def sign(
        self,
        *,
        user_id: int,
        service_type: str,
        job: QuoteRequest,
        advance_discount_max: int,
        quoted_at: datetime,
    ) -> str:
        issued = _utc(quoted_at)
        claims = {
            "v": QUOTE_TOKEN_VERSION,
            "sub": str(user_id),
            "aud": QUOTE_TOKEN_AUDIENCE,
            "iat": int(issued.timestamp()),
            "exp": int((issued + timedelta(seconds=self.ttl_seconds)).timestamp()),
            "quoted_at": issued.isoformat(),
            "advance_discount_max": int(advance_discount_max),
            "job": _job_claims(service_type, job),
        }
        return jwt.encode(claims, self.secret, algorithm=self.algorithm)

    def verify(self, token: str, *, user_id: int, service_type: str, job: QuoteRequest) -> QuoteTokenClaims:
        try:
            decoded = jwt.decode(
                token,
                self.secret,
                algorithms=[self.algorithm],
                audience=QUOTE_TOKEN_AUDIENCE,
            )
        except JWTError as exc:
            raise QuoteTokenInvalid("Invalid quote token") from exc

        if decoded.get("v") != QUOTE_TOKEN_VERSION:
            raise QuoteTokenInvalid("Unsupported quote token version")
        if decoded.get("sub") != str(user_id):
            raise QuoteTokenInvalid("Quote token was issued to another user")
        if decoded.get("job") != _job_claims(service_type, job):
            raise QuoteTokenInvalid("Quote token does not match the submitted job")
        try:
            quoted_at = datetime.fromisoformat(decoded["quoted_at"])
            advance_discount_max = int(decoded["advance_discount_max"])
        except (KeyError, TypeError, ValueError) as exc:
            raise QuoteTokenInvalid("Malformed quote token") from exc
        return QuoteTokenClaims(
            user_id=user_id,
            service_type=service_type,
            quoted_at=quoted_at,
            advance_discount_max=advance_discount_max,
        )
