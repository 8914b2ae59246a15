from .billing import AllocationResponse, BillingEventRequest
from .delivery_request import (
    CancellationResponse,
    DeliveryRequestCreate,
    DeliveryRequestResponse,
    SubmissionResponse,
)
from .quote import (
    QuotePreviewRequest,
    QuotePreviewResponse,
    QuoteSnapshotV1,
    decode_quote_snapshot,
)
from .wallet import LedgerEntryResponse, StatementResponse, WalletResponse

__all__ = [
    "AllocationResponse",
    "BillingEventRequest",
    "CancellationResponse",
    "DeliveryRequestCreate",
    "DeliveryRequestResponse",
    "SubmissionResponse",
    "QuotePreviewRequest",
    "QuotePreviewResponse",
    "QuoteSnapshotV1",
    "decode_quote_snapshot",
    "LedgerEntryResponse",
    "StatementResponse",
    "WalletResponse",
]
