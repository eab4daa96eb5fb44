"""
Schedule module for the Recurring Event & Matching Engine.

Expands recurring templates into dated occurrences, overlays per-occurrence
overrides, derives budget periods and applies scoped template edits.
"""

from .models import (
    PeriodKind,
    DayOfMonthType,
    DayOfMonthRule,
    TemplateKind,
    ImplicitSpendMode,
    OverrideStatus,
    EditScope,
    MatchPolicy,
    RecurrenceTemplate,
    OccurrenceRef,
    Override,
    PlannedTransaction,
    Occurrence,
)
from .expander import (
    expand,
    validate_template,
    next_occurrence,
    future_occurrences,
    period_end_date,
)
from .materializer import OccurrenceMaterializer
from .budget_periods import (
    BudgetPeriod,
    budget_periods,
    period_for_date,
    calculate_budget_status,
)
from .template_service import TemplateService

__all__ = [
    # Models
    "PeriodKind",
    "DayOfMonthType",
    "DayOfMonthRule",
    "TemplateKind",
    "ImplicitSpendMode",
    "OverrideStatus",
    "EditScope",
    "MatchPolicy",
    "RecurrenceTemplate",
    "OccurrenceRef",
    "Override",
    "PlannedTransaction",
    "Occurrence",
    # Expansion
    "expand",
    "validate_template",
    "next_occurrence",
    "future_occurrences",
    "period_end_date",
    "OccurrenceMaterializer",
    # Budgets
    "BudgetPeriod",
    "budget_periods",
    "period_for_date",
    "calculate_budget_status",
    # Edits
    "TemplateService",
]
