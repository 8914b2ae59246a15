from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from ..quote_engine import Quote


class QuoteAddersSchema(BaseModel):
    wait_time: int = 0
    multi_stop: int = 0
    cash_handling: int = 0
    return_exchange: int = 0
    peak_hours: int = 0


class QuoteDiscountSchema(BaseModel):
    hours_in_advance: float
    percentage: Decimal
    amount: int


class QuoteSnapshotV1(BaseModel):
    """Pricing frozen onto a request at submission time.

    Stored as JSON next to the structured miles columns. Bump ``version`` and
    register a new model in ``QUOTE_SNAPSHOT_VERSIONS`` whenever the shape
    changes so older requests stay decodable.
    """

    model_config = ConfigDict(frozen=True)

    version: Literal[1] = 1
    base_miles: int
    adders: QuoteAddersSchema
    adders_total: int
    discount: QuoteDiscountSchema
    subtotal: int
    final: int
    quoted_at: datetime

    @classmethod
    def from_quote(cls, quote: Quote, quoted_at: datetime) -> "QuoteSnapshotV1":
        return cls(
            base_miles=quote.base,
            adders=QuoteAddersSchema(
                wait_time=quote.adders.wait_time,
                multi_stop=quote.adders.multi_stop,
                cash_handling=quote.adders.cash_handling,
                return_exchange=quote.adders.return_exchange,
                peak_hours=quote.adders.peak_hours,
            ),
            adders_total=quote.adders.total,
            discount=QuoteDiscountSchema(
                hours_in_advance=quote.discount.hours_in_advance,
                percentage=quote.discount.percentage,
                amount=quote.discount.amount,
            ),
            subtotal=quote.subtotal,
            final=quote.final,
            quoted_at=quoted_at,
        )


QUOTE_SNAPSHOT_VERSIONS: dict[int, type[BaseModel]] = {1: QuoteSnapshotV1}


def decode_quote_snapshot(payload: dict[str, Any] | None) -> BaseModel | None:
    if payload is None:
        return None
    version = payload.get("version", 1)
    model = QUOTE_SNAPSHOT_VERSIONS.get(version)
    if model is None:
        raise ValueError(f"Unknown quote snapshot version {version}")
    return model.model_validate(payload)


class QuotePreviewRequest(BaseModel):
    service_type: str = Field(..., min_length=1, max_length=32)
    scheduled_start: datetime
    travel_minutes: int = Field(..., ge=0)
    wait_minutes: int = Field(0, ge=0)
    number_of_stops: int = Field(0, ge=0)
    return_or_exchange: bool = False
    cash_handling: bool = False
    peak_hours: bool = False


class QuotePreviewResponse(BaseModel):
    quote: QuoteSnapshotV1
    quote_token: str
    expires_in: int
