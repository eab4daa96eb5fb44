"""
Preprocessing utilities for rule evaluation and text matching.
Handles text normalization and transfer keyword detection.
"""

import re
from typing import Iterable, Optional, Tuple


_WHITESPACE = re.compile(r"\s+")


def normalize_text(text: Optional[str], case_sensitive: bool = False) -> str:
    """
    Normalize text for matching.

    Args:
        text: Raw text to normalize
        case_sensitive: Keep the original case when True

    Returns:
        Trimmed text with inner whitespace collapsed, casefolded unless
        case_sensitive is set
    """
    if not text:
        return ""
    text = _WHITESPACE.sub(" ", text.strip())
    return text if case_sensitive else text.casefold()


def normalize_upper(text: Optional[str]) -> str:
    """Uppercase normalization used for keyword scans."""
    if not text:
        return ""
    return _WHITESPACE.sub(" ", text.upper().strip())


def combine_description_merchant(description: str, merchant_name: Optional[str]) -> Tuple[str, str, str]:
    """
    Combine description and merchant name for text similarity.

    Args:
        description: Transaction description
        merchant_name: Optional merchant name

    Returns:
        Tuple of (normalized_description, normalized_merchant, combined_text)
    """
    text = normalize_text(description)
    merchant_text = normalize_text(merchant_name) if merchant_name else ""
    combined_text = f"{text} {merchant_text}".strip()

    return text, merchant_text, combined_text


def has_transfer_keyword(text: str, transfer_keywords: Iterable[str]) -> bool:
    """
    Check if transaction text mentions a transfer keyword.

    Args:
        text: Raw transaction text
        transfer_keywords: Uppercase keywords to look for

    Returns:
        True if any keyword appears as a whole word
    """
    upper = normalize_upper(text)
    if not upper:
        return False
    for keyword in transfer_keywords:
        if re.search(rf"\b{re.escape(keyword)}\b", upper):
            return True
    return False
