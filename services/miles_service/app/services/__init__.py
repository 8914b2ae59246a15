"""Transactional units of work over the Service Miles ledger."""

from .allocation import AllocationResult, AllocationService, AllocationStatus, BillingEvent
from .cancellation import CancellationOutcome, CancellationService, CancellationStage
from .consumption import ConsumptionService, JobSubmission, SubmissionResult
from .ledger import Reconciliation, reconcile_wallet

__all__ = [
    "AllocationResult",
    "AllocationService",
    "AllocationStatus",
    "BillingEvent",
    "CancellationOutcome",
    "CancellationService",
    "CancellationStage",
    "ConsumptionService",
    "JobSubmission",
    "SubmissionResult",
    "Reconciliation",
    "reconcile_wallet",
]
