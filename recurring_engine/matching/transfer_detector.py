"""
Transfer Detector.

Finds pairs of transactions that look like money moving between two of the
same user's accounts: opposite signs, equal magnitude, close dates.
"""

import logging
from dataclasses import dataclass, replace
from datetime import date, timedelta
from typing import Dict, Iterable, List, Optional, Set

from ..categorisation.preprocess import has_transfer_keyword
from ..config.engine_config import TRANSFER_CONFIG, merge_config
from ..errors import ConflictError, NotFoundError
from ..models import Transaction, TransferPair, TransferStatus
from ..utils.dates import days_between, local_today

logger = logging.getLogger(__name__)


@dataclass
class TransferCandidate:
    """A proposed transfer pair."""
    out_transaction: Transaction
    in_transaction: Transaction
    confidence: float
    days_diff: int
    has_keyword: bool = False

    @property
    def key(self) -> str:
        return f"{self.out_transaction.id}->{self.in_transaction.id}"


def pair_key(out_transaction_id: str, in_transaction_id: str) -> str:
    return f"{out_transaction_id}->{in_transaction_id}"


def score_pair(out_tx: Transaction, in_tx: Transaction, cfg: Dict) -> Optional[TransferCandidate]:
    """
    Score one outflow/inflow pair, or return None when it cannot be a transfer.

    Args:
        out_tx: Negative-amount transaction
        in_tx: Positive-amount transaction
        cfg: Transfer config

    Returns:
        TransferCandidate or None
    """
    if out_tx.amount >= 0 or in_tx.amount <= 0:
        return None
    if out_tx.owner_id != in_tx.owner_id or out_tx.account_id == in_tx.account_id:
        return None

    tolerance = cfg["amount_tolerance"]
    diff = abs(abs(out_tx.amount) - in_tx.amount)
    if diff > tolerance + 1e-9:
        return None

    max_days = cfg["max_days"]
    days = days_between(out_tx.date, in_tx.date)
    if days > max_days:
        return None

    amount_score = 100.0 if tolerance <= 0 else 100.0 * (1.0 - min(diff, tolerance) / tolerance)
    floor = cfg["date_floor"]
    date_score = 100.0 if max_days <= 0 else 100.0 - (100.0 - floor) * days / max_days

    weights = cfg["weights"]
    total = weights["amount"] + weights["date"]
    confidence = (weights["amount"] * amount_score + weights["date"] * date_score) / total

    keyword = any(
        has_transfer_keyword(text, cfg["keywords"])
        for text in (out_tx.description, out_tx.merchant, in_tx.description, in_tx.merchant)
        if text
    )
    if keyword:
        confidence += cfg["keyword_bonus"]

    return TransferCandidate(
        out_transaction=out_tx,
        in_transaction=in_tx,
        confidence=round(min(cfg["max_confidence"], confidence), 2),
        days_diff=days,
        has_keyword=keyword,
    )


def detect_transfers(
    transactions: Iterable[Transaction],
    dismissed_pairs: Iterable[str] = (),
    config: Optional[Dict] = None,
) -> List[TransferCandidate]:
    """
    Propose one-to-one transfer pairs.

    Every transaction appears in at most one pair; higher confidence pairs
    are taken first (ties: closer dates, then ids).

    Args:
        transactions: Transactions to scan (any owners)
        dismissed_pairs: Pair keys ("out_id->in_id") never to propose
        config: Optional partial TRANSFER_CONFIG override

    Returns:
        Candidates sorted by confidence descending

    Example:
        >>> detect_transfers([
        ...     Transaction("t1", "u1", "checking", date(2024, 3, 1), -200.0, "TRANSFER TO SAVINGS"),
        ...     Transaction("t2", "u1", "savings", date(2024, 3, 1), 200.0, "TRANSFER FROM CHECKING"),
        ... ])[0].confidence
        100.0
    """
    cfg = merge_config(TRANSFER_CONFIG, config)
    dismissed = set(dismissed_pairs)

    items = list(transactions)
    outflows = [t for t in items if t.amount < 0]
    inflows = [t for t in items if t.amount > 0]

    scored = []
    for out_tx in outflows:
        for in_tx in inflows:
            if pair_key(out_tx.id, in_tx.id) in dismissed:
                continue
            candidate = score_pair(out_tx, in_tx, cfg)
            if candidate is not None:
                scored.append(candidate)

    scored.sort(key=lambda c: (-c.confidence, c.days_diff, c.out_transaction.id, c.in_transaction.id))

    used: Set[str] = set()
    pairs = []
    for candidate in scored:
        out_id = candidate.out_transaction.id
        in_id = candidate.in_transaction.id
        if out_id in used or in_id in used:
            continue
        used.add(out_id)
        used.add(in_id)
        pairs.append(candidate)

    logger.debug("Transfer detection: %d scored pairs, %d proposed", len(scored), len(pairs))
    return pairs


class TransferService:
    """
    Store-backed transfer detection.

    Confirmed and dismissed pairs are never proposed again. A transaction in
    a pending or confirmed pair is not paired with anything else until that
    pair is dismissed.
    """

    def __init__(self, store, config: Optional[Dict] = None):
        self.store = store
        self.config = merge_config(TRANSFER_CONFIG, config)

    def _owned_by(self, pair: TransferPair, owner_id: str) -> bool:
        transaction = self.store.get_transaction(pair.out_transaction_id)
        return transaction is not None and transaction.owner_id == owner_id

    def run_detection(self, owner_id: str, as_of: Optional[date] = None) -> List[TransferPair]:
        """
        Detect transfers in the owner's recent history and record them as pending.

        Args:
            owner_id: Owner to scan
            as_of: Last day scanned (defaults to today in the owner's timezone)

        Returns:
            The owner's pending pairs after this run, highest confidence first
        """
        if as_of is None:
            as_of = local_today(self.store.get_user_timezone(owner_id))
        start = as_of - timedelta(days=self.config["lookback_days"])

        pairs = self.store.list_transfer_pairs()
        settled = {
            p.key for p in pairs
            if p.status in (TransferStatus.CONFIRMED, TransferStatus.DISMISSED)
        }
        paired_ids = set()
        for pair in pairs:
            if pair.status in (TransferStatus.CONFIRMED, TransferStatus.PENDING):
                paired_ids.update((pair.out_transaction_id, pair.in_transaction_id))

        transactions = [
            t for t in self.store.list_transactions(owner_id, start, as_of)
            if t.id not in paired_ids
        ]
        candidates = detect_transfers(transactions, dismissed_pairs=settled, config=self.config)

        for candidate in candidates:
            self.store.upsert_transfer_pair(TransferPair(
                out_transaction_id=candidate.out_transaction.id,
                in_transaction_id=candidate.in_transaction.id,
                confidence=candidate.confidence,
            ))

        pending = [
            p for p in self.store.list_transfer_pairs(TransferStatus.PENDING)
            if self._owned_by(p, owner_id)
        ]
        logger.info(
            "Transfer detection for %s: %d new, %d pending pairs",
            owner_id, len(candidates), len(pending),
        )
        return sorted(pending, key=lambda p: (-p.confidence, p.key))

    def _get_pending(self, key: str) -> TransferPair:
        pair = self.store.get_transfer_pair(key)
        if pair is None:
            raise NotFoundError(f"Transfer pair not found: {key}")
        if pair.status != TransferStatus.PENDING:
            raise ConflictError(f"Transfer pair {key} already processed ({pair.status.value})")
        return pair

    def _set_status(self, pair: TransferPair, status: TransferStatus) -> TransferPair:
        pair = replace(pair, status=status)
        self.store.upsert_transfer_pair(pair)
        logger.info("Transfer pair %s -> %s", pair.key, status.value)
        return pair

    def confirm(self, key: str) -> TransferPair:
        """
        Confirm a pending pair.

        Raises:
            NotFoundError: unknown pair
            ConflictError: the pair is not pending, or one of its transactions
                already belongs to a confirmed pair
        """
        pair = self._get_pending(key)
        ids = {pair.out_transaction_id, pair.in_transaction_id}
        for other in self.store.list_transfer_pairs(TransferStatus.CONFIRMED):
            if ids & {other.out_transaction_id, other.in_transaction_id}:
                raise ConflictError(f"Transfer pair {key} overlaps confirmed pair {other.key}")
        return self._set_status(pair, TransferStatus.CONFIRMED)

    def dismiss(self, key: str) -> TransferPair:
        """Dismiss a pending pair; it is never proposed again."""
        return self._set_status(self._get_pending(key), TransferStatus.DISMISSED)

    def pending_pairs(self) -> List[TransferPair]:
        return sorted(
            self.store.list_transfer_pairs(TransferStatus.PENDING),
            key=lambda p: -p.confidence,
        )
