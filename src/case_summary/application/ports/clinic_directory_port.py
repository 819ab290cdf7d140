"""Port for the clinic directory used to resolve partner affiliation."""

from __future__ import annotations

from typing import Protocol

from case_summary.domain.access_scope import ClinicInfo, ClinicMapping


class ClinicDirectoryPort(Protocol):
    """Async read contract over clinic accounts."""

    async def list_clinics(self) -> list[ClinicInfo]:
        """Return every known clinic with its partner name."""


async def load_clinic_mapping(directory: ClinicDirectoryPort) -> ClinicMapping:
    """Load the read-only clinic mapping once for the process."""

    return ClinicMapping(await directory.list_clinics())
