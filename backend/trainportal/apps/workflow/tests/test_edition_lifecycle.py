from __future__ import annotations

from datetime import date, datetime, timezone

import pytest

from trainportal.apps.courses.models import EditionStatus
from trainportal.apps.workflow import EditionState, TransitionError, apply_update, validate_new_edition


def _state(status=EditionStatus.DRAFT, **fields):
    values = {
        "edition_id": "ed-1",
        "client_id": "client-a",
        "start_date": datetime(2025, 1, 10, 9, 0, tzinfo=timezone.utc),
        "end_date": datetime(2025, 1, 20, 17, 0, tzinfo=timezone.utc),
        "registration_deadline": datetime(2025, 1, 5, tzinfo=timezone.utc),
        "revision": 3,
    }
    values.update(fields)
    return EditionState(status=status, **values)


def test_publish_from_draft_bumps_revision():
    new_state, descriptor = apply_update(_state(), {"status": "PUBLISHED"})

    assert new_state.status == EditionStatus.PUBLISHED
    assert new_state.revision == 4
    assert descriptor.status_before == EditionStatus.DRAFT
    assert descriptor.status_after == EditionStatus.PUBLISHED
    assert descriptor.status_changed
    assert not descriptor.dates_changed
    assert not descriptor.client_changed


def test_publish_requires_all_dates():
    state = _state(start_date=None, end_date=None, registration_deadline=None)

    with pytest.raises(TransitionError) as excinfo:
        apply_update(state, {"status": "PUBLISHED"})

    assert excinfo.value.code == "missing_requirements"
    fields = {item["field"] for item in excinfo.value.detail}
    assert fields == {"start_date", "end_date", "registration_deadline"}


def test_draft_without_dates_can_still_be_edited():
    state = _state(start_date=None, end_date=None, registration_deadline=None)
    new_state, descriptor = apply_update(state, {"notes": "Room B"})
    assert new_state.notes == "Room B"
    assert new_state.status == EditionStatus.DRAFT
    assert descriptor.revision == 4


def test_archived_edition_rejects_any_patch():
    with pytest.raises(TransitionError) as excinfo:
        apply_update(_state(EditionStatus.ARCHIVED), {"notes": "late fix"})
    assert excinfo.value.code == "edition_archived"


def test_archived_edition_rejects_empty_patch():
    with pytest.raises(TransitionError) as excinfo:
        apply_update(_state(EditionStatus.ARCHIVED), {})
    assert excinfo.value.code == "edition_archived"


@pytest.mark.parametrize(
    "from_state,to_state",
    [
        (EditionStatus.DRAFT, EditionStatus.CLOSED),
        (EditionStatus.CLOSED, EditionStatus.DRAFT),
    ],
)
def test_disallowed_edges(from_state, to_state):
    with pytest.raises(TransitionError) as excinfo:
        apply_update(_state(from_state), {"status": to_state.value})
    assert excinfo.value.code == "invalid_transition"


def test_unknown_status_is_invalid_transition():
    with pytest.raises(TransitionError) as excinfo:
        apply_update(_state(), {"status": "CANCELLED"})
    assert excinfo.value.code == "invalid_transition"


@pytest.mark.parametrize(
    "from_state,to_state",
    [
        (EditionStatus.DRAFT, EditionStatus.ARCHIVED),
        (EditionStatus.PUBLISHED, EditionStatus.DRAFT),
        (EditionStatus.PUBLISHED, EditionStatus.CLOSED),
        (EditionStatus.PUBLISHED, EditionStatus.ARCHIVED),
        (EditionStatus.CLOSED, EditionStatus.PUBLISHED),
        (EditionStatus.CLOSED, EditionStatus.ARCHIVED),
    ],
)
def test_allowed_edges(from_state, to_state):
    new_state, descriptor = apply_update(_state(from_state), {"status": to_state.value})
    assert new_state.status == to_state
    assert descriptor.status_before == from_state


def test_end_before_start_is_invalid_dates():
    with pytest.raises(TransitionError) as excinfo:
        apply_update(
            _state(),
            {"end_date": datetime(2025, 1, 9, tzinfo=timezone.utc)},
        )
    assert excinfo.value.code == "invalid_dates"
    assert excinfo.value.detail[0]["field"] == "end_date"


def test_deadline_on_start_is_invalid_dates():
    with pytest.raises(TransitionError) as excinfo:
        apply_update(
            _state(),
            {"registration_deadline": datetime(2025, 1, 10, 9, 0, tzinfo=timezone.utc)},
        )
    assert excinfo.value.code == "invalid_dates"
    assert excinfo.value.detail[0]["field"] == "registration_deadline"


def test_date_errors_win_over_missing_requirements():
    state = _state(registration_deadline=None)
    with pytest.raises(TransitionError) as excinfo:
        apply_update(
            state,
            {"status": "PUBLISHED", "end_date": datetime(2025, 1, 1, tzinfo=timezone.utc)},
        )
    assert excinfo.value.code == "invalid_dates"


def test_unparseable_date_is_invalid_dates():
    with pytest.raises(TransitionError) as excinfo:
        apply_update(_state(), {"start_date": "next tuesday"})
    assert excinfo.value.code == "invalid_dates"


def test_null_fields_keep_stored_values():
    current = _state(EditionStatus.PUBLISHED)
    new_state, descriptor = apply_update(current, {"start_date": None, "status": None, "notes": None})
    assert new_state.dates() == current.dates()
    assert new_state.status == EditionStatus.PUBLISHED
    assert not descriptor.dates_changed


def test_same_instant_in_other_timezone_is_not_a_date_change():
    current = _state(EditionStatus.PUBLISHED)
    _, descriptor = apply_update(current, {"start_date": "2025-01-10T10:00:00+01:00"})
    assert not descriptor.dates_changed


def test_date_change_and_client_change_are_reported():
    current = _state(EditionStatus.PUBLISHED)
    new_state, descriptor = apply_update(
        current,
        {"start_date": "2025-01-11T09:00:00Z", "client_id": "client-b"},
    )
    assert descriptor.dates_changed
    assert descriptor.client_changed
    assert not descriptor.status_changed
    assert descriptor.before.client_id == "client-a"
    assert descriptor.after.client_id == "client-b"
    assert new_state.start_date == datetime(2025, 1, 11, 9, 0, tzinfo=timezone.utc)


def test_naive_and_date_values_are_normalised_to_utc():
    state = _state(
        start_date=date(2025, 3, 1),
        end_date=datetime(2025, 3, 2, 12, 0),
        registration_deadline=None,
    )
    assert state.start_date == datetime(2025, 3, 1, tzinfo=timezone.utc)
    assert state.end_date.tzinfo is not None


def test_validate_new_edition_checks_dates_only():
    validate_new_edition(_state(start_date=None, end_date=None, registration_deadline=None))

    with pytest.raises(TransitionError) as excinfo:
        validate_new_edition(
            _state(end_date=datetime(2025, 1, 10, 9, 0, tzinfo=timezone.utc))
        )
    assert excinfo.value.code == "invalid_dates"


def test_apply_update_does_not_mutate_input():
    current = _state()
    apply_update(current, {"status": "PUBLISHED", "notes": "x"})
    assert current.status == EditionStatus.DRAFT
    assert current.notes is None
    assert current.revision == 3
