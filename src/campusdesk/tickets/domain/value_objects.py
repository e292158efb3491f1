"""
Ticket Value Objects
====================

Immutable value objects for the ticket lifecycle.

Value objects are defined by their attributes rather than an identity.
They are immutable and can be freely shared.
"""

import re
from dataclasses import dataclass
from datetime import date, datetime, timedelta, tzinfo
from enum import Enum
from typing import Dict, Iterable, List, Optional

from campusdesk.core import ValidationException


# ========== Status catalog ==========

@dataclass(frozen=True)
class StatusDefinition:
    """One row of the status catalog."""
    value: str
    label: str
    is_final: bool = False
    is_active: bool = True
    progress_percent: int = 0
    display_order: int = 0
    description: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, "value", self.value.strip().upper())


class StatusCatalog:
    """
    Lookup over the configured ticket statuses.

    Statuses are data: admins add and retire them at runtime. Callers only
    ever ask whether a value is final; nothing branches on the literal text.
    """

    def __init__(self, definitions: Iterable[StatusDefinition]):
        self._by_value: Dict[str, StatusDefinition] = {
            d.value: d for d in definitions
        }

    def __contains__(self, value: str) -> bool:
        return self.get(value) is not None

    def __len__(self) -> int:
        return len(self._by_value)

    def get(self, value: Optional[str]) -> Optional[StatusDefinition]:
        if not value:
            return None
        return self._by_value.get(value.strip().upper())

    def require(self, value: Optional[str]) -> StatusDefinition:
        """
        Resolve a status that a workflow wants to move a ticket into.

        Raises:
            ValidationException: unknown or retired status
        """
        definition = self.get(value)
        if definition is None:
            raise ValidationException(
                f"Unknown status '{value}'",
                details={"valid": [d.value for d in self.active()]}
            )
        if not definition.is_active:
            raise ValidationException(f"Status '{definition.value}' is not active")
        return definition

    def is_final(self, value: Optional[str]) -> bool:
        definition = self.get(value)
        return definition is not None and definition.is_final

    def final_values(self) -> List[str]:
        return [d.value for d in self._by_value.values() if d.is_final]

    def active(self) -> List[StatusDefinition]:
        return sorted(
            (d for d in self._by_value.values() if d.is_active),
            key=lambda d: (d.display_order, d.value)
        )


# ========== TAT ==========

_TAT_PATTERN = re.compile(
    r"^\s*(\d+)\s*(hours?|hrs?|h|days?|d|weeks?|w|months?)\s*$",
    re.IGNORECASE,
)

_UNIT_HOURS = {
    "h": 1,
    "d": 24,
    "w": 24 * 7,
    "m": 24 * 30,
}


def parse_tat(text: Optional[str]) -> timedelta:
    """
    Parse a turnaround-time string such as "2 days" or "48h".

    Units: hour(s)/hr(s)/h, day(s)/d, week(s)/w, month(s) (30 days).

    Raises:
        ValidationException: text is empty, malformed or zero
    """
    match = _TAT_PATTERN.match(text or "")
    if not match:
        raise ValidationException(
            f"Invalid TAT '{text}'. Use a number followed by hours, days, weeks or months"
        )
    amount = int(match.group(1))
    if amount <= 0:
        raise ValidationException("TAT must be greater than zero")
    unit = match.group(2).lower()
    return timedelta(hours=amount * _UNIT_HOURS[unit[0]])


def tat_due_at(text: str, start: datetime) -> datetime:
    """Absolute due instant for a TAT string counted from `start`."""
    return start + parse_tat(text)


@dataclass(frozen=True)
class TATExtension:
    """
    One entry of a ticket's TAT history.

    The log is append-only: setting or extending a TAT adds a record and
    never rewrites an earlier one.
    """
    new_tat: str
    new_due_at: datetime
    actor_id: str
    recorded_at: datetime
    previous_tat: Optional[str] = None
    previous_due_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "previous_tat": self.previous_tat,
            "previous_due_at": self.previous_due_at.isoformat() if self.previous_due_at else None,
            "new_tat": self.new_tat,
            "new_due_at": self.new_due_at.isoformat(),
            "actor_id": self.actor_id,
            "recorded_at": self.recorded_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "TATExtension":
        """
        Raises:
            KeyError, TypeError, ValueError: malformed entry
        """
        previous_due_at = data.get("previous_due_at")
        return cls(
            previous_tat=data.get("previous_tat"),
            previous_due_at=datetime.fromisoformat(previous_due_at) if previous_due_at else None,
            new_tat=str(data["new_tat"]),
            new_due_at=datetime.fromisoformat(data["new_due_at"]),
            actor_id=str(data["actor_id"]),
            recorded_at=datetime.fromisoformat(data["recorded_at"]),
        )


# ========== Due classification ==========

class DueBucket(str, Enum):
    """Where a due date falls relative to today's local calendar date."""
    OVERDUE = "overdue"
    TODAY = "today"
    UPCOMING = "upcoming"
    NONE = "none"


def local_date(moment: datetime, tz: tzinfo) -> date:
    return moment.astimezone(tz).date()


def classify_due(
    due_at: Optional[datetime],
    today: date,
    tz: tzinfo,
    is_final: bool = False,
) -> DueBucket:
    """
    Classify a due instant by calendar date in the local timezone.

    A ticket due at 00:01 today is TODAY even though that instant has
    already passed; one due at 23:59 yesterday is OVERDUE.
    """
    if is_final or due_at is None:
        return DueBucket.NONE
    due_date = local_date(due_at, tz)
    if due_date < today:
        return DueBucket.OVERDUE
    if due_date == today:
        return DueBucket.TODAY
    return DueBucket.UPCOMING


def local_day_bounds(today: date, tz: tzinfo) -> tuple[datetime, datetime]:
    """[local midnight today, local midnight tomorrow) as aware datetimes."""
    start = datetime.combine(today, datetime.min.time(), tzinfo=tz)
    end = datetime.combine(today + timedelta(days=1), datetime.min.time(), tzinfo=tz)
    return start, end


# ========== SLA ==========

class SLACalculator:
    """
    Pure functions for due-date calculations.
    """

    @staticmethod
    def acknowledgement_due(created_at: datetime, acknowledgement_hours: int) -> datetime:
        return created_at + timedelta(hours=acknowledgement_hours)

    @staticmethod
    def resolution_due(
        created_at: datetime,
        sla_hours: Optional[int],
        default_sla_hours: int,
    ) -> datetime:
        """
        Resolution deadline from the category SLA.

        Args:
            created_at: When the ticket was created
            sla_hours: Category SLA in hours (None or <= 0 falls back)
            default_sla_hours: Fallback SLA

        Returns:
            The resolution deadline
        """
        hours = sla_hours if sla_hours and sla_hours > 0 else default_sla_hours
        return created_at + timedelta(hours=hours)
