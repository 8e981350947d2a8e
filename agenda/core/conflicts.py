"""Overlap rules shared by the slot listing and the booking write path."""

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Iterable

from .clock import parse_hhmm

CANCELLED = "cancelled"


@dataclass(frozen=True)
class BookedInterval:
    id: int
    professional_id: int
    start: datetime
    duration_min: int
    status: str

    @property
    def end(self) -> datetime:
        return self.start + timedelta(minutes=self.duration_min)

    @property
    def is_active(self) -> bool:
        return self.status != CANCELLED


@dataclass(frozen=True)
class SlotDiagnostic:
    time: str
    available: bool
    is_past: bool
    conflicts: tuple[int, ...]
    lunch_break: bool = False

    def as_dict(self) -> dict:
        return {
            "time": self.time,
            "available": self.available,
            "is_past": self.is_past,
            "conflicts": list(self.conflicts),
            "lunch_break": self.lunch_break,
        }


def overlaps(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    # Half-open intervals: touching endpoints are compatible.
    return a_start < b_end and b_start < a_end


def find_conflicts(
    start: datetime,
    duration_min: int,
    professional_id: int,
    existing: Iterable[BookedInterval],
) -> list[int]:
    end = start + timedelta(minutes=duration_min)
    return sorted(
        a.id
        for a in existing
        if a.professional_id == professional_id
        and a.is_active
        and overlaps(start, end, a.start, a.end)
    )


def filter_available(
    candidate_slots: Iterable[str],
    professional_id: int,
    day: date,
    service_duration: int,
    existing_appointments: Iterable[BookedInterval],
    now: datetime,
    breaks: Iterable[str] = (),
) -> tuple[list[str], list[SlotDiagnostic]]:
    """Drop past, lunch-break and overlapping slots.

    ``now`` is the tenant-local wall clock of the request. Only slots of
    today can be past; listings of other dates are never trimmed by time.
    """
    existing = list(existing_appointments)
    blocked = set(breaks)
    is_today = day == now.date()
    available: list[str] = []
    diagnostics: list[SlotDiagnostic] = []
    for label in candidate_slots:
        slot_start = datetime.combine(day, parse_hhmm(label))
        is_past = is_today and slot_start < now
        conflicts = find_conflicts(slot_start, service_duration, professional_id, existing)
        lunch_break = label in blocked
        ok = not is_past and not lunch_break and not conflicts
        diagnostics.append(
            SlotDiagnostic(
                time=label,
                available=ok,
                is_past=is_past,
                conflicts=tuple(conflicts),
                lunch_break=lunch_break,
            )
        )
        if ok:
            available.append(label)
    return available, diagnostics
