from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Tuple

from trainportal.apps.courses.models import EditionStatus
from trainportal.utils.dates import normalize_instant

from .registry import WORKFLOWS

logger = logging.getLogger(__name__)

EDITION_WORKFLOW = "course_edition"
DATE_FIELDS = ("start_date", "end_date", "registration_deadline")
PATCHABLE_FIELDS = ("status", "client_id", "notes") + DATE_FIELDS


@dataclass
class TransitionError(Exception):
    code: str
    detail: List[Dict[str, str]]

    def __str__(self) -> str:
        return f"{self.code}: {self.detail}"


@dataclass(frozen=True)
class EditionState:
    """Plain snapshot of the lifecycle-relevant fields of an edition."""

    status: EditionStatus
    edition_id: Optional[str] = None
    client_id: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    registration_deadline: Optional[datetime] = None
    notes: Optional[str] = None
    revision: int = 0

    def __post_init__(self) -> None:
        object.__setattr__(self, "status", EditionStatus(self.status))
        for name in DATE_FIELDS:
            object.__setattr__(self, name, normalize_instant(getattr(self, name)))

    @classmethod
    def from_model(cls, edition: Any) -> "EditionState":
        return cls(
            status=EditionStatus(edition.status),
            edition_id=edition.id,
            client_id=edition.client_id,
            start_date=edition.start_date,
            end_date=edition.end_date,
            registration_deadline=edition.registration_deadline,
            notes=edition.notes,
            revision=edition.revision or 0,
        )

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def dates(self) -> Tuple[Optional[datetime], Optional[datetime], Optional[datetime]]:
        return self.start_date, self.end_date, self.registration_deadline


@dataclass(frozen=True)
class TransitionDescriptor:
    edition_id: Optional[str]
    status_before: EditionStatus
    status_after: EditionStatus
    dates_changed: bool
    client_changed: bool
    revision: int
    before: EditionState = field(repr=False)
    after: EditionState = field(repr=False)

    @property
    def status_changed(self) -> bool:
        return self.status_before != self.status_after


def _coerce_patch(patch: Mapping[str, Any]) -> Dict[str, Any]:
    # Absent and null fields keep their current value.
    updates: Dict[str, Any] = {}
    for key in PATCHABLE_FIELDS:
        if key not in patch or patch[key] is None:
            continue
        value = patch[key]
        if key == "status":
            try:
                value = EditionStatus(value)
            except ValueError as exc:
                raise TransitionError(
                    "invalid_transition",
                    [{"field": "status", "reason": f"Unknown status {value!r}"}],
                ) from exc
        elif key in DATE_FIELDS:
            try:
                value = normalize_instant(value)
            except (TypeError, ValueError) as exc:
                raise TransitionError(
                    "invalid_dates",
                    [{"field": key, "reason": "not a valid date"}],
                ) from exc
        updates[key] = value
    return updates


def _run_guards(guards, *, before: EditionState, after: EditionState) -> List[Dict[str, str]]:
    failures: List[Dict[str, str]] = []
    for guard in guards:
        failures.extend(
            guard(
                before_obj=before,
                after_obj=after,
                from_state=before.status.value,
                to_state=after.status.value,
            )
        )
    return failures


def apply_update(
    current: EditionState,
    patch: Mapping[str, Any],
) -> Tuple[EditionState, TransitionDescriptor]:
    """
    Validate a partial update against the edition lifecycle and return the
    merged state plus a descriptor of what changed.

    Pure: touches neither the database nor the notification layer. Raises
    TransitionError with one of ``edition_archived``, ``invalid_transition``,
    ``invalid_dates`` or ``missing_requirements``.
    """
    workflow = WORKFLOWS[EDITION_WORKFLOW]
    from_state = current.status.value

    if from_state in workflow["terminal"]:
        raise TransitionError(
            "edition_archived",
            [{"field": "status", "reason": "Archived editions cannot be modified"}],
        )

    merged = replace(current, **_coerce_patch(patch))
    to_state = merged.status.value

    transition_guards: list = []
    if to_state != from_state:
        allowed = workflow["transitions"].get(from_state, {})
        if to_state not in allowed:
            raise TransitionError(
                "invalid_transition",
                [{"field": "status", "reason": f"Cannot move from {from_state} to {to_state}"}],
            )
        transition_guards = allowed[to_state]

    date_failures = _run_guards(workflow["invariants"], before=current, after=merged)
    if date_failures:
        raise TransitionError("invalid_dates", date_failures)

    missing = _run_guards(transition_guards, before=current, after=merged)
    if missing:
        raise TransitionError("missing_requirements", missing)

    merged = replace(merged, revision=current.revision + 1)
    descriptor = TransitionDescriptor(
        edition_id=current.edition_id,
        status_before=current.status,
        status_after=merged.status,
        dates_changed=current.dates() != merged.dates(),
        client_changed=current.client_id != merged.client_id,
        revision=merged.revision,
        before=current,
        after=merged,
    )
    logger.debug(
        "Edition update validated",
        extra={
            "edition_id": current.edition_id,
            "from_state": from_state,
            "to_state": to_state,
            "revision": merged.revision,
        },
    )
    return merged, descriptor


def validate_new_edition(state: EditionState) -> None:
    """Date invariants for a freshly created (DRAFT) edition."""
    workflow = WORKFLOWS[EDITION_WORKFLOW]
    failures = _run_guards(workflow["invariants"], before=state, after=state)
    if failures:
        raise TransitionError("invalid_dates", failures)
