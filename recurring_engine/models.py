"""
Records shared by the store, the matching engine and the transfer detector.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Optional

from .schedule.models import OccurrenceRef


class MatchMethod(Enum):
    """How a match record came to exist."""
    AUTO = "AUTO"
    AUTO_REVIEWED = "AUTO_REVIEWED"
    MANUAL = "MANUAL"


class TransactionMatchState(Enum):
    """Reconciliation state of a real transaction."""
    UNMATCHED = "UNMATCHED"
    PENDING_REVIEW = "PENDING_REVIEW"
    MATCHED = "MATCHED"


class TransferStatus(Enum):
    """Transfer pair lifecycle."""
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    DISMISSED = "DISMISSED"


@dataclass
class Transaction:
    """A real (bank-synced or imported) transaction."""
    id: str
    owner_id: str
    account_id: str
    date: date
    amount: float  # negative = outflow
    description: str = ""
    merchant: Optional[str] = None
    notes: Optional[str] = None
    category_id: Optional[str] = None


@dataclass
class MatchRecord:
    """Association between one transaction and one occurrence origin."""
    transaction_id: str
    occurrence_ref: OccurrenceRef
    confidence: float
    method: MatchMethod
    matched_at: datetime = field(default_factory=datetime.now)


@dataclass(frozen=True)
class DismissedMatch:
    """A (transaction, occurrence) pair the user rejected."""
    transaction_id: str
    occurrence_key: str


@dataclass
class TransferPair:
    """Two transactions recognised as a move between the owner's accounts."""
    out_transaction_id: str
    in_transaction_id: str
    confidence: float
    status: TransferStatus = TransferStatus.PENDING
    created_at: datetime = field(default_factory=datetime.now)

    @property
    def key(self) -> str:
        return f"{self.out_transaction_id}->{self.in_transaction_id}"
