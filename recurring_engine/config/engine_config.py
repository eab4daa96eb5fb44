"""
Engine configuration for recurring schedules, matching and transfer detection.
Contains scoring weights, decision thresholds and safety limits.
"""

import copy
from typing import Dict, Optional


# Schedule expansion
SCHEDULE_CONFIG = {
    # Hard cap on loop iterations per expansion call
    "max_iterations": 5000,

    # Upper bounds for template intervals, per period kind
    "max_interval": {
        "DAILY": 365,
        "WEEKLY": 52,
        "FORTNIGHTLY": 52,
        "MONTHLY": 12,
        "ANNUALLY": 10,
    },

    # Lookahead used by next_occurrence / future_occurrences (years)
    "lookahead_years": 5,
}

# Planned-occurrence matching
MATCHING_CONFIG = {
    # Signal weights (normalised at runtime, so they need not sum to 1)
    "weights": {
        "amount": 0.60,
        "date": 0.30,
        "text": 0.10,
    },

    # Decision thresholds (confidence 0-100)
    "auto_confirm_threshold": 85.0,
    "review_threshold": 50.0,

    # Date score at the edge of the match window
    "date_floor": 20.0,

    # Defaults for occurrences without an explicit policy
    "default_window_days": 7,

    # Extra days fetched on either side of a transaction when loading candidates
    "lookup_padding_days": 14,

    # Number of ranked candidates surfaced for review
    "max_review_candidates": 3,

    # Amounts closer than this are treated as equal
    "amount_epsilon": 0.005,
}

# Transfer detection between a user's own accounts
TRANSFER_CONFIG = {
    "amount_tolerance": 0.01,
    "max_days": 3,
    "weights": {
        "amount": 0.60,
        "date": 0.40,
    },
    "date_floor": 40.0,
    "keyword_bonus": 10.0,
    "max_confidence": 100.0,
    "keywords": ["TRANSFER", "XFER", "TFR", "MOVE", "INTERNAL", "OWN ACCOUNT"],
    # Days of history scanned by TransferService.run_detection
    "lookback_days": 30,
}

# Budget status bands (percentage of budget consumed)
BUDGET_STATUS_CONFIG = {
    "bands": [
        {"max": 50, "status": "UNDER_BUDGET"},
        {"max": 80, "status": "ON_TRACK"},
        {"max": 100, "status": "WARNING"},
    ],
    "exceeded_status": "EXCEEDED",
}


def merge_config(defaults: Dict, overrides: Optional[Dict] = None) -> Dict:
    """
    Merge an override mapping over a default config dictionary.

    Nested dictionaries are merged key by key; everything else is replaced.
    The defaults are never mutated.

    Args:
        defaults: One of the module-level config dictionaries
        overrides: Partial config supplied by the caller (may be None)

    Returns:
        New config dictionary
    """
    merged = copy.deepcopy(defaults)
    if not overrides:
        return merged

    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = merge_config(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)

    return merged
