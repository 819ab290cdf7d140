"""Signed per-record contribution to the summary counters."""

from __future__ import annotations

from case_summary.domain.access_scope import AccessScope
from case_summary.domain.case_record import CaseCategory, CaseRecord
from case_summary.domain.counters import CounterVector
from case_summary.domain.today_window import TodayWindow


def compute_contribution(
    record: CaseRecord,
    *,
    today: TodayWindow,
    scope: AccessScope,
) -> CounterVector:
    """Return the dense counter vector one record adds to the summary.

    `today_cases` counts only records completed inside `today`, so it always
    equals `today_completed`. Records created today that are still pending or
    incomplete do not count toward it, which differs from a "cases created
    today" reading and makes a completed/today ratio constant.
    """

    if scope.excludes(record):
        return CounterVector.zero()

    n = record.sub_unit_count
    is_today = today.contains(record.terminal_at)
    category = record.category

    if category is CaseCategory.INCOMPLETE:
        return CounterVector(
            total_cases=n,
            incomplete_cases=n,
            today_incomplete=n if is_today else 0,
        )
    if category is CaseCategory.COMPLETED:
        return CounterVector(
            total_cases=n,
            completed_cases=n,
            today_cases=n if is_today else 0,
            today_completed=n if is_today else 0,
        )
    if category is CaseCategory.DOCTOR_PENDING:
        return CounterVector(total_cases=n, doctor_pending_cases=n)
    return CounterVector(total_cases=n, pharmacist_pending_cases=n)
