from __future__ import annotations

import hmac
import logging
from typing import Annotated, AsyncGenerator

from fastapi import Depends, Header, HTTPException, Request, status
from jose import JWTError, jwt
from sqlalchemy.ext.asyncio import AsyncSession

from .db.session import SessionFactory
from .quote_tokens import QuoteTokenCodec
from .services import AllocationService, CancellationService, ConsumptionService
from .settings import miles_settings

logger = logging.getLogger(__name__)

ACCEPTED_SCOPES = {"access", "miles_access"}


def get_current_user_id(request: Request) -> int:
    """Extract the caller's numeric user ID from an Identity Service bearer token."""
    settings = miles_settings()
    auth = request.headers.get("authorization")
    if not auth or not auth.lower().startswith("bearer "):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing bearer token")
    token = auth.split(" ", 1)[1].strip()
    try:
        decoded = jwt.decode(
            token,
            settings.secret_key,
            algorithms=["HS256"],
            audience=settings.jwt_audience,
            issuer=settings.jwt_issuer,
        )
    except JWTError as exc:
        logger.warning("miles.auth.jwt_decode_failed", extra={"error": str(exc)})
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token") from exc

    scope = decoded.get("scope")
    if scope not in ACCEPTED_SCOPES:
        logger.info("miles.auth.scope_rejected", extra={"scope": scope})
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token scope")

    sub = decoded.get("sub")
    if isinstance(sub, str) and sub.isdigit():
        return int(sub)

    logger.info("miles.auth.unsupported_subject_format", extra={"subject": sub})
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unsupported subject format (expected numeric)")


def verify_billing_secret(x_billing_secret: Annotated[str | None, Header()] = None) -> None:
    """Billing events come from the payment provider's webhook relay, not from customers."""
    expected = miles_settings().billing_webhook_secret
    if not x_billing_secret or not hmac.compare_digest(x_billing_secret, expected):
        logger.warning("miles.billing.secret_rejected")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid billing secret")


def get_session_factory(request: Request) -> SessionFactory:
    return request.app.state.session_factory


SessionFactoryDep = Annotated[SessionFactory, Depends(get_session_factory)]


async def get_session(session_factory: SessionFactoryDep) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


SessionDep = Annotated[AsyncSession, Depends(get_session)]


def get_quote_tokens() -> QuoteTokenCodec:
    settings = miles_settings()
    return QuoteTokenCodec(settings.quote_token_secret, ttl_seconds=settings.quote_token_ttl_seconds)


def get_allocation_service(session_factory: SessionFactoryDep) -> AllocationService:
    return AllocationService(session_factory, isolation_level=miles_settings().isolation_level)


def get_consumption_service(
    session_factory: SessionFactoryDep,
    quote_tokens: Annotated[QuoteTokenCodec, Depends(get_quote_tokens)],
) -> ConsumptionService:
    return ConsumptionService(
        session_factory,
        isolation_level=miles_settings().isolation_level,
        quote_tokens=quote_tokens,
    )


def get_cancellation_service(session_factory: SessionFactoryDep) -> CancellationService:
    return CancellationService(session_factory, isolation_level=miles_settings().isolation_level)
