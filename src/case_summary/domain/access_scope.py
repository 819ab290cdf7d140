"""Role-based access scope used to narrow queries and filter counted records."""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from types import MappingProxyType
from typing import Final

from case_summary.domain.case_record import CaseRecord


class CallerRole(StrEnum):
    """Console roles recognised by the summary counters."""

    SUPER_ADMIN = "superAdmin"
    ZONAL_HEAD = "zonalHead"
    TEAM_LEADER = "teamLeader"
    DR_MANAGER = "drManager"
    RO = "ro"
    DOCTOR = "doctor"
    PHARMACIST = "pharmacist"
    CLINIC = "clinic"
    NURSE = "nurse"


class OwnerField(StrEnum):
    """Queryable ownership fields of a case record."""

    ASSIGNED_DOCTOR = "assigned_doctor_id"
    PHARMACIST = "pharmacist_id"
    CREATED_BY = "created_by"


_UNRESTRICTED_ROLES: Final[frozenset[CallerRole]] = frozenset(
    {CallerRole.SUPER_ADMIN, CallerRole.ZONAL_HEAD}
)
_HIERARCHY_ROLES: Final[frozenset[CallerRole]] = frozenset(
    {CallerRole.TEAM_LEADER, CallerRole.DR_MANAGER, CallerRole.RO}
)


@dataclass(frozen=True)
class ClinicInfo:
    """Partner affiliation of one clinic account."""

    clinic_id: str
    partner_name: str | None
    clinic_code: str | None = None
    name: str | None = None


class ClinicMapping(Mapping[str, ClinicInfo]):
    """Read-only clinic id -> clinic info lookup shared across scopes."""

    def __init__(self, clinics: Iterable[ClinicInfo] = ()) -> None:
        self._by_id: Mapping[str, ClinicInfo] = MappingProxyType(
            {clinic.clinic_id: clinic for clinic in clinics}
        )

    def __getitem__(self, clinic_id: str) -> ClinicInfo:
        return self._by_id[clinic_id]

    def __iter__(self) -> Iterator[str]:
        return iter(self._by_id)

    def __len__(self) -> int:
        return len(self._by_id)

    def partner_of(self, clinic_id: str | None) -> str | None:
        if clinic_id is None:
            return None
        clinic = self._by_id.get(clinic_id)
        return clinic.partner_name if clinic is not None else None

    def partner_names(self) -> list[str]:
        """Return sorted unique partner names known to the mapping."""

        return sorted({c.partner_name for c in self._by_id.values() if c.partner_name})


@dataclass(frozen=True)
class Caller:
    """Identity and filters of the user whose counters are being tracked."""

    user_id: str
    role: CallerRole
    partner_name: str | None = None
    supervised_user_ids: frozenset[str] = field(default_factory=frozenset)


@dataclass(frozen=True)
class OwnerFilter:
    """Server-side narrowing: `owner_field` must equal one of `values`."""

    owner_field: OwnerField
    values: frozenset[str]

    def matches(self, record: CaseRecord) -> bool:
        return getattr(record, self.owner_field.value) in self.values


@dataclass(frozen=True)
class AccessScope:
    """Server predicate plus client-side partner predicate for one counting session."""

    owner_filter: OwnerFilter | None
    partner_name: str | None = None
    clinic_mapping: ClinicMapping = field(default_factory=ClinicMapping, compare=False)

    def includes(self, record: CaseRecord) -> bool:
        if self.owner_filter is not None and not self.owner_filter.matches(record):
            return False
        if self.partner_name is None:
            return True
        return self.clinic_mapping.partner_of(record.clinic_id) == self.partner_name

    def excludes(self, record: CaseRecord) -> bool:
        return not self.includes(record)


def resolve_scope(caller: Caller, clinic_mapping: ClinicMapping) -> AccessScope:
    """Build the access scope a caller's counters are computed under."""

    return AccessScope(
        owner_filter=_owner_filter_for(caller),
        partner_name=caller.partner_name or None,
        clinic_mapping=clinic_mapping,
    )


def _owner_filter_for(caller: Caller) -> OwnerFilter | None:
    role = caller.role
    if role in _UNRESTRICTED_ROLES:
        return None
    if role is CallerRole.DOCTOR:
        return OwnerFilter(
            owner_field=OwnerField.ASSIGNED_DOCTOR,
            values=frozenset({caller.user_id}),
        )
    if role is CallerRole.PHARMACIST:
        return OwnerFilter(owner_field=OwnerField.PHARMACIST, values=frozenset({caller.user_id}))
    if role in _HIERARCHY_ROLES:
        return OwnerFilter(
            owner_field=OwnerField.CREATED_BY,
            values=frozenset({caller.user_id, *caller.supervised_user_ids}),
        )
    return OwnerFilter(owner_field=OwnerField.CREATED_BY, values=frozenset({caller.user_id}))
