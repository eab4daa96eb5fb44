"""
Fuzzy text similarity between a transaction and an expected occurrence.
"""

from typing import Optional

from rapidfuzz import fuzz

from .preprocess import combine_description_merchant, normalize_text


def text_similarity(
    description: Optional[str],
    merchant: Optional[str],
    occurrence_name: Optional[str],
) -> float:
    """
    Score how well a transaction's text matches an occurrence name.

    Uses the token-set ratio so word order and extra bank noise
    ("CARD PAYMENT TO", reference numbers) matter less.

    Args:
        description: Transaction description
        merchant: Optional merchant name
        occurrence_name: Name of the template or planned transaction

    Returns:
        Similarity 0-100 (0 when either side is empty)

    Example:
        >>> text_similarity("NETFLIX MONTHLY 1234", None, "Netflix")
        100.0
    """
    name = normalize_text(occurrence_name)
    if not name:
        return 0.0

    desc, merchant_text, _ = combine_description_merchant(description or "", merchant)
    scores = [fuzz.token_set_ratio(candidate, name) for candidate in (desc, merchant_text) if candidate]
    if not scores:
        return 0.0

    return float(max(scores))
