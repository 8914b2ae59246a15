from .wallet import Wallet
from .ledger_entry import LedgerEntry, TransactionType
from .membership import MembershipPlan, MembershipStatus, MembershipSubscription
from .delivery_request import DeliveryRequest, DeliveryRequestStatus

__all__ = [
    "Wallet",
    "LedgerEntry",
    "TransactionType",
    "MembershipPlan",
    "MembershipStatus",
    "MembershipSubscription",
    "DeliveryRequest",
    "DeliveryRequestStatus",
]
