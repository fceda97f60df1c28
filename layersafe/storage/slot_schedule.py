"""
Slot schedule for the retention safe.

A schedule is derived from three counts (days, months, years) and describes
the ordered ladder of storage slots every tracked file is given: day slots
first (youngest), then month slots, then year slots.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Iterator, Tuple

from layersafe.storage.safe_errors import ConfigurationError

DAYS_PER_MONTH = 30
DAYS_PER_YEAR = 365
MONTHS_LIMIT = 12
DAYS_LIMIT_MONTHS = 30
DAYS_LIMIT_YEARS = 360


class SlotKind(Enum):
    """Granularity of a storage slot."""
    DAY = "D"
    MONTH = "M"
    YEAR = "Y"


@dataclass(frozen=True)
class Slot:
    """A single position in the slot ladder."""
    index: int
    label: str
    kind: SlotKind
    max_age: int


class SlotSchedule:
    """
    Immutable description of the slot ladder.

    Each slot has a maximum age in days: day slot i holds copies up to i+1
    days old, month slot i up to (i+1)*30 days and year slot i up to
    (i+1)*365 days. Labels ("D-1", "M-1", "Y-1", ...) are unique and serve
    as persistence keys.
    """

    def __init__(self, days: int, months: int, years: int):
        self._validate(days, months, years)
        self._days = days
        self._months = months
        self._years = years

        slots = []
        for kind, count, unit in (
            (SlotKind.DAY, days, 1),
            (SlotKind.MONTH, months, DAYS_PER_MONTH),
            (SlotKind.YEAR, years, DAYS_PER_YEAR),
        ):
            for i in range(count):
                slots.append(Slot(
                    index=len(slots),
                    label=f"{kind.value}-{i + 1}",
                    kind=kind,
                    max_age=(i + 1) * unit,
                ))
        self._slots: Tuple[Slot, ...] = tuple(slots)
        self._index = {slot.label: slot.index for slot in slots}

    @classmethod
    def default(cls) -> "SlotSchedule":
        """Schedule with 6 day, 5 month and 3 year slots."""
        return cls(6, 5, 3)

    @staticmethod
    def _validate(days: int, months: int, years: int):
        for name, value in (("days", days), ("months", months), ("years", years)):
            if not isinstance(value, int) or isinstance(value, bool):
                raise ConfigurationError(f"{name} must be an integer, got {value!r}")
            if value < 0:
                raise ConfigurationError(f"illegal {name} value: {value}")

        months_limit = MONTHS_LIMIT if years > 0 else 0
        if months > 0:
            days_limit = DAYS_LIMIT_MONTHS
        elif years > 0:
            days_limit = DAYS_LIMIT_YEARS
        else:
            days_limit = 0

        if days_limit and days >= days_limit:
            raise ConfigurationError(
                f"illegal days value: {days} (must be below {days_limit})")
        if months_limit and months >= months_limit:
            raise ConfigurationError(
                f"illegal months value: {months} (must be below {months_limit})")

    @property
    def days(self) -> int:
        return self._days

    @property
    def months(self) -> int:
        return self._months

    @property
    def years(self) -> int:
        return self._years

    @property
    def slot_count(self) -> int:
        return len(self._slots)

    @property
    def slots(self) -> Tuple[Slot, ...]:
        return self._slots

    @property
    def labels(self) -> Tuple[str, ...]:
        return tuple(slot.label for slot in self._slots)

    @property
    def max_ages(self) -> Tuple[int, ...]:
        return tuple(slot.max_age for slot in self._slots)

    def label(self, index: int) -> str:
        return self._slots[index].label

    def max_age(self, index: int) -> int:
        return self._slots[index].max_age

    def index_of(self, label: str) -> int:
        """Slot index for a label; raises KeyError for unknown labels."""
        return self._index[label]

    def __contains__(self, label: object) -> bool:
        return label in self._index

    def __iter__(self) -> Iterator[Slot]:
        return iter(self._slots)

    def __len__(self) -> int:
        return len(self._slots)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SlotSchedule):
            return NotImplemented
        return (self._days, self._months, self._years) == (other._days, other._months, other._years)

    def __hash__(self) -> int:
        return hash((self._days, self._months, self._years))

    def __repr__(self) -> str:
        return f"SlotSchedule(days={self._days}, months={self._months}, years={self._years})"
