"""
Data model for recurring templates, occurrences and overrides.
"""

from dataclasses import dataclass, field, replace
from datetime import date, datetime
from enum import Enum
from typing import Optional


class PeriodKind(Enum):
    """Recurrence period kinds."""
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    FORTNIGHTLY = "FORTNIGHTLY"
    MONTHLY = "MONTHLY"
    ANNUALLY = "ANNUALLY"


class DayOfMonthType(Enum):
    """How the day is resolved inside a computed month."""
    FIXED = "FIXED"
    LAST_DAY = "LAST_DAY"
    FIRST_WEEKDAY = "FIRST_WEEKDAY"
    LAST_WEEKDAY = "LAST_WEEKDAY"
    FIRST_OF_WEEK = "FIRST_OF_WEEK"
    LAST_OF_WEEK = "LAST_OF_WEEK"


class TemplateKind(Enum):
    """What a template describes."""
    PLANNED_TRANSACTION = "PLANNED_TRANSACTION"
    BUDGET = "BUDGET"


class ImplicitSpendMode(Enum):
    """Accrual policy for budget consumption within an open period."""
    DAILY = "DAILY"
    END_OF_PERIOD = "END_OF_PERIOD"
    NONE = "NONE"


class OverrideStatus(Enum):
    """Override kinds."""
    CUSTOMIZED = "CUSTOMIZED"
    SKIPPED = "SKIPPED"
    MATERIALIZED = "MATERIALIZED"


class EditScope(Enum):
    """Scope of a template edit made from a single occurrence."""
    THIS_ONLY = "THIS_ONLY"
    THIS_AND_FUTURE = "THIS_AND_FUTURE"
    ALL = "ALL"


@dataclass(frozen=True)
class DayOfMonthRule:
    """Day-of-month rule for MONTHLY / ANNUALLY templates."""
    type: DayOfMonthType
    day: Optional[int] = None       # FIXED only, 1-31
    weekday: Optional[int] = None   # FIRST_OF_WEEK / LAST_OF_WEEK, 0=Mon..6=Sun

    @classmethod
    def fixed(cls, day: int) -> "DayOfMonthRule":
        return cls(DayOfMonthType.FIXED, day=day)

    @classmethod
    def last_day(cls) -> "DayOfMonthRule":
        return cls(DayOfMonthType.LAST_DAY)

    @classmethod
    def first_weekday(cls) -> "DayOfMonthRule":
        return cls(DayOfMonthType.FIRST_WEEKDAY)

    @classmethod
    def last_weekday(cls) -> "DayOfMonthRule":
        return cls(DayOfMonthType.LAST_WEEKDAY)

    @classmethod
    def first_of_week(cls, weekday: int) -> "DayOfMonthRule":
        return cls(DayOfMonthType.FIRST_OF_WEEK, weekday=weekday)

    @classmethod
    def last_of_week(cls, weekday: int) -> "DayOfMonthRule":
        return cls(DayOfMonthType.LAST_OF_WEEK, weekday=weekday)


@dataclass(frozen=True)
class MatchPolicy:
    """Per-template matching configuration."""
    auto_match_enabled: bool = True
    amount_tolerance: Optional[float] = None  # None = amount is ignored
    match_window_days: int = 7
    skip_review: bool = False


@dataclass
class RecurrenceTemplate:
    """Recurrence definition for a budget or planned transaction."""
    id: str
    owner_id: str
    name: str
    period_kind: PeriodKind
    first_occurrence: date
    amount: float
    account_id: Optional[str] = None
    category_id: Optional[str] = None
    interval: int = 1
    end_date: Optional[date] = None  # inclusive
    day_rule: Optional[DayOfMonthRule] = None
    is_active: bool = True
    match_policy: MatchPolicy = field(default_factory=MatchPolicy)
    kind: TemplateKind = TemplateKind.PLANNED_TRANSACTION
    implicit_spend_mode: ImplicitSpendMode = ImplicitSpendMode.NONE
    description: Optional[str] = None
    notes: Optional[str] = None
    timezone: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.now)

    def with_changes(self, **changes) -> "RecurrenceTemplate":
        """Return a copy with the given fields replaced."""
        return replace(self, **changes)


@dataclass(frozen=True)
class OccurrenceRef:
    """
    Identity of an occurrence origin.

    Template occurrences are keyed by (template_id, original expected date);
    standalone planned transactions by planned_id.
    """
    template_id: Optional[str]
    expected_date: date
    planned_id: Optional[str] = None

    @property
    def key(self) -> str:
        if self.template_id is None:
            return f"planned:{self.planned_id}"
        return f"{self.template_id}@{self.expected_date.isoformat()}"


@dataclass
class Override:
    """Persisted customization of one occurrence."""
    template_id: str
    original_date: date
    status: OverrideStatus = OverrideStatus.CUSTOMIZED
    amount: Optional[float] = None
    expected_date: Optional[date] = None  # moved date
    category_id: Optional[str] = None
    account_id: Optional[str] = None
    name: Optional[str] = None
    match_policy: Optional[MatchPolicy] = None
    materialized_transaction_id: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.now)

    @property
    def is_skipped(self) -> bool:
        return self.status == OverrideStatus.SKIPPED

    @property
    def is_materialized(self) -> bool:
        return self.status == OverrideStatus.MATERIALIZED


@dataclass
class PlannedTransaction:
    """A one-off planned transaction with no template."""
    id: str
    owner_id: str
    name: str
    expected_date: date
    amount: float
    account_id: Optional[str] = None
    category_id: Optional[str] = None
    match_policy: MatchPolicy = field(default_factory=MatchPolicy)
    created_at: datetime = field(default_factory=datetime.now)


@dataclass(frozen=True)
class Occurrence:
    """One effective occurrence of a template (virtual unless overridden)."""
    ref: OccurrenceRef
    expected_date: date
    amount: float
    name: str
    account_id: Optional[str]
    category_id: Optional[str]
    match_policy: MatchPolicy
    owner_id: Optional[str] = None
    is_override: bool = False
    is_materialized: bool = False
    materialized_transaction_id: Optional[str] = None
    origin_created_at: Optional[datetime] = None

    @property
    def template_id(self) -> Optional[str]:
        return self.ref.template_id

    @property
    def is_virtual(self) -> bool:
        return not self.is_override and self.ref.planned_id is None
