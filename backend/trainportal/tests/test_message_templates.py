from datetime import date, datetime, timedelta, timezone

import pytest

from trainportal.apps.notifications import templates
from trainportal.utils.dates import format_day, normalize_instant, same_instant


def test_normalize_instant_variants():
    assert normalize_instant(None) is None
    assert normalize_instant("") is None
    assert normalize_instant("2025-01-10T09:00:00Z") == datetime(2025, 1, 10, 9, tzinfo=timezone.utc)
    assert normalize_instant(date(2025, 1, 10)) == datetime(2025, 1, 10, tzinfo=timezone.utc)
    rome = timezone(timedelta(hours=1))
    assert normalize_instant(datetime(2025, 1, 10, 10, tzinfo=rome)) == datetime(2025, 1, 10, 9, tzinfo=timezone.utc)
    with pytest.raises(TypeError):
        normalize_instant(42)


def test_same_instant_ignores_representation():
    assert same_instant("2025-01-10T10:00:00+01:00", datetime(2025, 1, 10, 9))
    assert not same_instant("2025-01-10T10:00:00Z", datetime(2025, 1, 10, 9))


def test_format_day():
    assert format_day("2025-03-07T23:30:00Z") == "07/03/2025"
    assert format_day(None) == "-"


def test_dates_changed_lists_only_changed_dates():
    before = (datetime(2025, 1, 10), datetime(2025, 1, 20), datetime(2025, 1, 5))
    after = (datetime(2025, 1, 12), datetime(2025, 1, 20), datetime(2025, 1, 5))

    rendered = templates.dates_changed(
        course_title="Fire Safety",
        edition_number=2,
        before=before,
        after=after,
        recipient_name="Mario Rossi",
    )

    assert "Start date: 10/01/2025 -> 12/01/2025" in rendered.body_text
    assert "End date" not in rendered.body_text
    assert rendered.subject == "Dates updated - Fire Safety (Ed. #2)"
    assert rendered.body_text.startswith("Dear Mario Rossi,")


def test_html_body_escapes_user_text():
    rendered = templates.edition_cancelled(
        course_title="<b>Forklift</b>",
        edition_number=None,
        reason="Trainer & room unavailable",
    )
    assert "<b>Forklift</b>" not in rendered.body_html
    assert "&lt;b&gt;Forklift&lt;/b&gt;" in rendered.body_html
    assert "Trainer &amp; room unavailable" in rendered.body_html
    assert rendered.body_text.startswith("Hello,")


@pytest.mark.parametrize("days,urgent", [(7, False), (2, True)])
def test_deadline_reminder_urgency(days, urgent):
    rendered = templates.deadline_reminder(
        course_title="Fire Safety",
        edition_number=1,
        registration_deadline=date(2025, 1, 5),
        days_remaining=days,
        registered_count=3,
    )
    assert rendered.subject.startswith("URGENT - ") is urgent
    assert "Employees registered: 3" in rendered.body_text
