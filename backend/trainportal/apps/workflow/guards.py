from __future__ import annotations

from typing import Any, Dict, List

GuardResult = List[Dict[str, str]]


def _get_value(obj: Any, key: str) -> Any:
    if obj is None:
        return None
    if isinstance(obj, dict):
        return obj.get(key)
    return getattr(obj, key, None)


def guard_edition_dates(
    *,
    before_obj: Any,
    after_obj: Any,
    from_state: str,
    to_state: str,
) -> GuardResult:
    start = _get_value(after_obj, "start_date")
    end = _get_value(after_obj, "end_date")
    deadline = _get_value(after_obj, "registration_deadline")

    failures = []
    if start is not None and end is not None and end <= start:
        failures.append({"field": "end_date", "reason": "end date must be after start date"})
    if start is not None and deadline is not None and deadline >= start:
        failures.append(
            {"field": "registration_deadline", "reason": "registration deadline must be before start date"}
        )
    return failures


def guard_edition_publish(
    *,
    before_obj: Any,
    after_obj: Any,
    from_state: str,
    to_state: str,
) -> GuardResult:
    missing = []
    if _get_value(after_obj, "start_date") is None:
        missing.append({"field": "start_date", "reason": "start date required to publish"})
    if _get_value(after_obj, "end_date") is None:
        missing.append({"field": "end_date", "reason": "end date required to publish"})
    if _get_value(after_obj, "registration_deadline") is None:
        missing.append({"field": "registration_deadline", "reason": "registration deadline required to publish"})
    return missing
