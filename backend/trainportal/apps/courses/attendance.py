from __future__ import annotations

import math
import os
from dataclasses import asdict, dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional

from .models import AttendanceStatus

try:
    DEFAULT_MIN_PERCENTAGE: int = int(os.getenv("ATTENDANCE_MIN_PERCENTAGE", "80"))
except ValueError:
    DEFAULT_MIN_PERCENTAGE = 80

_ATTENDED = {AttendanceStatus.PRESENT, AttendanceStatus.JUSTIFIED}


@dataclass(frozen=True)
class AttendanceStats:
    employee_id: str
    employee_name: str
    total_lessons: int
    present: int
    absent: int
    justified: int
    percentage: int
    total_hours: float
    attended_hours: float
    below_minimum: bool

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _status(value: Any) -> AttendanceStatus:
    return value if isinstance(value, AttendanceStatus) else AttendanceStatus(value)


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def effective_minimum(course: Any = None) -> int:
    """Course-level override first, then the portal-wide threshold."""
    override = getattr(course, "min_attendance_percentage", None) if course is not None else None
    return DEFAULT_MIN_PERCENTAGE if override is None else int(override)


def compute_stats(
    lessons: Iterable[Any],
    records: Iterable[Any],
    minimum_percentage: Optional[int] = None,
    *,
    employees: Optional[Mapping[str, str]] = None,
) -> List[AttendanceStats]:
    """
    Aggregate raw attendance into per-employee statistics.

    `lessons` need `id` and `duration_hours`; `records` need `lesson_id`,
    `employee_id` and `status`. With `employees` (id -> display name) the
    result follows that order and includes employees with no records at all;
    otherwise employees are taken from the records in first-seen order.
    A lesson with no record for an employee counts as an absence.
    """
    minimum = DEFAULT_MIN_PERCENTAGE if minimum_percentage is None else minimum_percentage
    lesson_hours: Dict[str, float] = {}
    for lesson in lessons:
        lesson_hours[lesson.id] = float(lesson.duration_hours or 0)
    total_lessons = len(lesson_hours)
    total_hours = sum(lesson_hours.values())

    by_employee: Dict[str, Dict[str, AttendanceStatus]] = {}
    for record in records:
        if record.lesson_id not in lesson_hours:
            continue
        by_employee.setdefault(record.employee_id, {})[record.lesson_id] = _status(record.status)

    if employees is not None:
        roster = dict(employees)
    else:
        roster = {employee_id: employee_id for employee_id in by_employee}

    results: List[AttendanceStats] = []
    for employee_id, employee_name in roster.items():
        marks = by_employee.get(employee_id, {})
        present = sum(1 for status in marks.values() if status == AttendanceStatus.PRESENT)
        justified = sum(1 for status in marks.values() if status == AttendanceStatus.JUSTIFIED)
        attended_hours = sum(
            lesson_hours[lesson_id] for lesson_id, status in marks.items() if status in _ATTENDED
        )
        if total_lessons:
            percentage = _round_half_up((present + justified) / total_lessons * 100)
        else:
            percentage = 0
        results.append(
            AttendanceStats(
                employee_id=employee_id,
                employee_name=employee_name,
                total_lessons=total_lessons,
                present=present,
                absent=total_lessons - present - justified,
                justified=justified,
                percentage=percentage,
                total_hours=total_hours,
                attended_hours=attended_hours,
                below_minimum=bool(total_lessons) and percentage < minimum,
            )
        )
    return results
