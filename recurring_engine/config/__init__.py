"""
Configuration module for the Recurring Event & Matching Engine.

This module contains all configuration dictionaries for schedules, matching,
transfer detection and budget status, plus the rule CSV loader.
"""

from .engine_config import (
    SCHEDULE_CONFIG,
    MATCHING_CONFIG,
    TRANSFER_CONFIG,
    BUDGET_STATUS_CONFIG,
    merge_config,
)
from .rule_loader import load_rules_csv

__all__ = [
    "SCHEDULE_CONFIG",
    "MATCHING_CONFIG",
    "TRANSFER_CONFIG",
    "BUDGET_STATUS_CONFIG",
    "merge_config",
    "load_rules_csv",
]
