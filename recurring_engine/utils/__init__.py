"""
Utility helpers for the Recurring Event & Matching Engine.
"""

from .dates import (
    to_local_date,
    local_today,
    add_months,
    add_years,
    days_between,
)

__all__ = [
    "to_local_date",
    "local_today",
    "add_months",
    "add_years",
    "days_between",
]
