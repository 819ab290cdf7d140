"""Summary counter vector with dense arithmetic and non-negativity clamping."""

from __future__ import annotations

from dataclasses import dataclass, fields, replace
from typing import Final

COUNTER_FIELDS: Final[tuple[str, ...]] = (
    "total_cases",
    "completed_cases",
    "doctor_pending_cases",
    "pharmacist_pending_cases",
    "incomplete_cases",
    "today_cases",
    "today_completed",
    "today_incomplete",
)


@dataclass(frozen=True)
class CounterVector:
    """Aggregate case counters rendered on the summary cards."""

    total_cases: int = 0
    completed_cases: int = 0
    doctor_pending_cases: int = 0
    pharmacist_pending_cases: int = 0
    incomplete_cases: int = 0
    today_cases: int = 0
    today_completed: int = 0
    today_incomplete: int = 0

    @property
    def pending_cases(self) -> int:
        """Derived pending total; never stored on its own."""

        return self.doctor_pending_cases + self.pharmacist_pending_cases

    @classmethod
    def zero(cls) -> CounterVector:
        return cls()

    def __add__(self, other: CounterVector) -> CounterVector:
        return CounterVector(
            **{name: getattr(self, name) + getattr(other, name) for name in COUNTER_FIELDS}
        )

    def __sub__(self, other: CounterVector) -> CounterVector:
        return CounterVector(
            **{name: getattr(self, name) - getattr(other, name) for name in COUNTER_FIELDS}
        )

    def is_zero(self) -> bool:
        return all(getattr(self, name) == 0 for name in COUNTER_FIELDS)

    def negative_fields(self) -> tuple[str, ...]:
        return tuple(name for name in COUNTER_FIELDS if getattr(self, name) < 0)

    def clamped(self) -> CounterVector:
        """Return a copy with every negative counter raised to zero."""

        negatives = self.negative_fields()
        if not negatives:
            return self
        return replace(self, **dict.fromkeys(negatives, 0))

    def as_dict(self) -> dict[str, int]:
        """Return all counters, including the derived `pending_cases`."""

        values = {field.name: getattr(self, field.name) for field in fields(self)}
        values["pending_cases"] = self.pending_cases
        return values
