"""Pydantic models decoding raw case documents at the store boundary."""

from __future__ import annotations

from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from case_summary.domain.case_record import CaseRecord


class InvalidCaseDocumentError(ValueError):
    """Raised when a raw case document cannot be decoded."""


class DocumentModel(BaseModel):
    """Base model accepting camelCase document keys and ignoring unknown fields."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True, frozen=True)


class AssignedDoctors(DocumentModel):
    """Doctor assignment block embedded in a case document."""

    primary: str | None = None
    primary_name: str | None = Field(default=None, alias="primaryName")


class CaseDocument(DocumentModel):
    """Case document shape as stored by the console."""

    id: str = Field(min_length=1)
    created_at: datetime = Field(alias="createdAt")
    doctor_completed: bool = Field(default=False, alias="doctorCompleted")
    pharmacist_completed: bool = Field(default=False, alias="pharmacistCompleted")
    is_incomplete: bool = Field(default=False, alias="isIncomplete")
    status: str | None = None
    emr_numbers: list[str] = Field(default_factory=list, alias="emrNumbers")
    completed_at: datetime | None = Field(default=None, alias="completedAt")
    pharmacist_completed_at: datetime | None = Field(default=None, alias="pharmacistCompletedAt")
    incomplete_at: datetime | None = Field(default=None, alias="incompleteAt")
    clinic_id: str | None = Field(default=None, alias="clinicId")
    assigned_doctors: AssignedDoctors | None = Field(default=None, alias="assignedDoctors")
    pharmacist_id: str | None = Field(default=None, alias="pharmacistId")
    created_by: str | None = Field(default=None, alias="createdBy")

    @field_validator(
        "created_at",
        "completed_at",
        "pharmacist_completed_at",
        "incomplete_at",
        mode="before",
    )
    @classmethod
    def _decode_timestamp(cls, value: Any) -> Any:
        # Document stores serialise timestamps as {"seconds": ..., "nanoseconds": ...}.
        if isinstance(value, Mapping) and "seconds" in value:
            seconds = float(value["seconds"]) + float(value.get("nanoseconds", 0)) / 1e9
            return datetime.fromtimestamp(seconds, tz=UTC)
        return value

    @field_validator(
        "created_at",
        "completed_at",
        "pharmacist_completed_at",
        "incomplete_at",
    )
    @classmethod
    def _normalize_utc(cls, value: datetime | None) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)

    @field_validator("emr_numbers", mode="before")
    @classmethod
    def _stringify_emr_numbers(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, list | tuple):
            return [str(item) for item in value if item is not None and str(item).strip()]
        return value

    def to_record(self) -> CaseRecord:
        """Convert the validated document into the aggregation record."""

        return CaseRecord(
            case_id=self.id,
            created_at=self.created_at,
            doctor_completed=self.doctor_completed,
            pharmacist_completed=self.pharmacist_completed,
            is_incomplete=self.is_incomplete,
            status=self.status,
            emr_numbers=tuple(self.emr_numbers),
            completed_at=self.completed_at or self.pharmacist_completed_at,
            incomplete_at=self.incomplete_at,
            clinic_id=self.clinic_id,
            assigned_doctor_id=self.assigned_doctors.primary if self.assigned_doctors else None,
            pharmacist_id=self.pharmacist_id,
            created_by=self.created_by,
        )


def parse_case_document(raw: Mapping[str, Any]) -> CaseRecord:
    """Validate one raw document and return its `CaseRecord`."""

    try:
        return CaseDocument.model_validate(dict(raw)).to_record()
    except ValidationError as error:
        raise InvalidCaseDocumentError(
            f"Invalid case document id={raw.get('id')!r}: {error.error_count()} error(s)"
        ) from error
