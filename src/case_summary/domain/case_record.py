"""Case record model and status categorisation used by summary counters."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum
from typing import Final

INCOMPLETE_STATUS_MARKERS: Final[frozenset[str]] = frozenset(
    {"doctor_incomplete", "pharmacist_incomplete"}
)


class CaseCategory(StrEnum):
    """Mutually exclusive summary bucket of one case record."""

    INCOMPLETE = "incomplete"
    COMPLETED = "completed"
    DOCTOR_PENDING = "doctor_pending"
    PHARMACIST_PENDING = "pharmacist_pending"


@dataclass(frozen=True)
class CaseRecord:
    """Aggregation-relevant fields of one case document."""

    case_id: str
    created_at: datetime
    doctor_completed: bool = False
    pharmacist_completed: bool = False
    is_incomplete: bool = False
    status: str | None = None
    emr_numbers: tuple[str, ...] = ()
    completed_at: datetime | None = None
    incomplete_at: datetime | None = None
    clinic_id: str | None = None
    assigned_doctor_id: str | None = None
    pharmacist_id: str | None = None
    created_by: str | None = None

    @property
    def sub_unit_count(self) -> int:
        """Number of countable units bundled in this record."""

        return len(self.emr_numbers) if self.emr_numbers else 1

    @property
    def is_marked_incomplete(self) -> bool:
        return self.is_incomplete or self.status in INCOMPLETE_STATUS_MARKERS

    @property
    def category(self) -> CaseCategory:
        """Return the single bucket this record counts toward, by priority."""

        if self.is_marked_incomplete:
            return CaseCategory.INCOMPLETE
        if self.doctor_completed and self.pharmacist_completed:
            return CaseCategory.COMPLETED
        if not self.doctor_completed:
            return CaseCategory.DOCTOR_PENDING
        return CaseCategory.PHARMACIST_PENDING

    @property
    def terminal_at(self) -> datetime | None:
        """Timestamp at which the record reached its terminal category, if any."""

        category = self.category
        if category is CaseCategory.INCOMPLETE:
            return self.incomplete_at or self.completed_at
        if category is CaseCategory.COMPLETED:
            return self.completed_at
        return None
