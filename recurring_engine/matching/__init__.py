"""
Matching module for the Recurring Event & Matching Engine.

Provides:
- MatchingEngine: pure confidence scoring and decision
- MatchingService: store-backed match state machine
- Transfer detection between a user's own accounts
- Batch auto-matching with per-transaction error isolation
"""

from .matching_engine import (
    MatchingEngine,
    MatchStatus,
    MatchCandidate,
    MatchResult,
)
from .matching_service import MatchingService
from .transfer_detector import (
    TransferCandidate,
    TransferService,
    detect_transfers,
)
from .batch import (
    BatchAutoMatcher,
    BatchResult,
    BatchStats,
    ProcessingError,
)

__all__ = [
    "MatchingEngine",
    "MatchStatus",
    "MatchCandidate",
    "MatchResult",
    "MatchingService",
    "TransferCandidate",
    "TransferService",
    "detect_transfers",
    "BatchAutoMatcher",
    "BatchResult",
    "BatchStats",
    "ProcessingError",
]
