"""Usage data models.

These records are the raw material the detectors read through the store:
- Usage events collected from the assistant's usage API
- Cycle-to-date spend per team member

The detection engine never modifies these records.
"""

from dataclasses import dataclass
from datetime import date, datetime


@dataclass(frozen=True)
class UsageEvent:
    """A single request made by a team member."""

    user_email: str
    timestamp: datetime
    model: str
    total_tokens: int = 0
    kind: str = "usage_based"
    cost_cents: float = 0.0


@dataclass(frozen=True)
class CycleSpend:
    """Cycle-to-date spend for one member in one billing cycle."""

    email: str
    cycle_start: date
    spend_cents: int


@dataclass(frozen=True)
class UsageTotals:
    """Per-user request and token totals over a window."""

    email: str
    requests: int
    tokens: int


@dataclass(frozen=True)
class DailyTotals:
    """Per-user totals for one 24-hour bucket.

    ``day_index`` 0 is the 24 hours ending at the query anchor, 1 the
    24 hours before that, and so on.
    """

    email: str
    day_index: int
    requests: int
    tokens: int


@dataclass(frozen=True)
class ModelUsage:
    """Per-user, per-model totals over a window."""

    email: str
    model: str
    requests: int
    tokens: int
