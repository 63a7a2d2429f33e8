"""
Titles, in-portal messages and email bodies for each notification type.

Every builder returns a `Rendered` with both the short in-portal text and
the plain-text / HTML email parts.
"""

from __future__ import annotations

import html
import os
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from trainportal.utils.dates import DateLike, format_day

PORTAL_URL = os.getenv("PORTAL_URL", "https://portal.example.com").rstrip("/")


@dataclass(frozen=True)
class Rendered:
    title: str
    message: str
    subject: str
    body_text: str
    body_html: str


def _edition_label(course_title: str, edition_number: Optional[int]) -> str:
    if edition_number is None:
        return course_title
    return f"{course_title} (Ed. #{edition_number})"


def _greeting(recipient_name: Optional[str]) -> str:
    name = (recipient_name or "").strip()
    return f"Dear {name}," if name else "Hello,"


def _compose(
    *,
    title: str,
    message: str,
    subject: str,
    recipient_name: Optional[str],
    intro: str,
    facts: Sequence[Tuple[str, str]],
    outro: str,
    cta_text: str,
    cta_path: str,
) -> Rendered:
    cta_url = f"{PORTAL_URL}{cta_path}"
    greeting = _greeting(recipient_name)

    text_lines: List[str] = [greeting, "", intro, ""]
    text_lines.extend(f"{label}: {value}" for label, value in facts)
    text_lines.extend(["", outro, "", f"{cta_text}: {cta_url}"])

    facts_html = "".join(
        f"<p><strong>{html.escape(label)}:</strong> {html.escape(value)}</p>" for label, value in facts
    )
    body_html = (
        f"<h1>{html.escape(title)}</h1>"
        f"<p>{html.escape(greeting)}</p>"
        f"<p>{html.escape(intro)}</p>"
        f"<div>{facts_html}</div>"
        f"<p>{html.escape(outro)}</p>"
        f'<p><a href="{html.escape(cta_url)}">{html.escape(cta_text)}</a></p>'
    )
    return Rendered(
        title=title,
        message=message,
        subject=subject,
        body_text="\n".join(text_lines),
        body_html=body_html,
    )


def new_edition(
    *,
    course_title: str,
    edition_number: Optional[int],
    start_date: DateLike,
    end_date: DateLike,
    registration_deadline: DateLike,
    recipient_name: Optional[str] = None,
) -> Rendered:
    label = _edition_label(course_title, edition_number)
    return _compose(
        title="New edition available",
        message=f"{label}: employee registrations are open until {format_day(registration_deadline)}.",
        subject=f"New edition available - {label}",
        recipient_name=recipient_name,
        intro="A new course edition has been scheduled for your company:",
        facts=[
            ("Course", label),
            ("Period", f"{format_day(start_date)} - {format_day(end_date)}"),
            ("Registration deadline", format_day(registration_deadline)),
        ],
        outro="Please register the participating employees before the deadline.",
        cta_text="Manage registrations",
        cta_path="/courses",
    )


def dates_changed(
    *,
    course_title: str,
    edition_number: Optional[int],
    before: Tuple[DateLike, DateLike, DateLike],
    after: Tuple[DateLike, DateLike, DateLike],
    recipient_name: Optional[str] = None,
) -> Rendered:
    label = _edition_label(course_title, edition_number)
    names = ("Start date", "End date", "Registration deadline")
    facts = [("Course", label)]
    for name, old, new in zip(names, before, after):
        old_day, new_day = format_day(old), format_day(new)
        if old_day != new_day:
            facts.append((name, f"{old_day} -> {new_day}"))
    return _compose(
        title="Edition dates changed",
        message=f"The dates of {label} have been updated.",
        subject=f"Dates updated - {label}",
        recipient_name=recipient_name,
        intro="The dates of the following edition have been updated:",
        facts=facts,
        outro="Please take note of the new schedule.",
        cta_text="View details",
        cta_path="/courses",
    )


def edition_cancelled(
    *,
    course_title: str,
    edition_number: Optional[int],
    reason: Optional[str] = None,
    recipient_name: Optional[str] = None,
) -> Rendered:
    label = _edition_label(course_title, edition_number)
    facts = [("Course", label)]
    if reason:
        facts.append(("Reason", reason))
    return _compose(
        title="Edition cancelled",
        message=f"{label} has been cancelled.",
        subject=f"Edition cancelled - {label}",
        recipient_name=recipient_name,
        intro="The following edition has been cancelled:",
        facts=facts,
        outro="Contact your account manager for further information.",
        cta_text="Go to the portal",
        cta_path="/courses",
    )


def certificates_available(
    *,
    course_title: str,
    edition_number: Optional[int],
    certificate_count: int,
    recipient_name: Optional[str] = None,
) -> Rendered:
    label = _edition_label(course_title, edition_number)
    return _compose(
        title="Certificates available",
        message=f"{certificate_count} certificate(s) uploaded for {label}.",
        subject=f"Certificates available - {label}",
        recipient_name=recipient_name,
        intro="Certificates have been uploaded for the following course:",
        facts=[("Course", label), ("Certificates uploaded", str(certificate_count))],
        outro="Sign in to the portal to download them.",
        cta_text="Download certificates",
        cta_path="/certificates",
    )


def deadline_reminder(
    *,
    course_title: str,
    edition_number: Optional[int],
    registration_deadline: DateLike,
    days_remaining: int,
    registered_count: int,
    recipient_name: Optional[str] = None,
) -> Rendered:
    label = _edition_label(course_title, edition_number)
    deadline = format_day(registration_deadline)
    prefix = "URGENT - " if days_remaining <= 2 else ""
    return _compose(
        title=f"Registration deadline in {days_remaining} days",
        message=f"Registrations for {label} close on {deadline}.",
        subject=f"{prefix}Registration reminder: {label} - deadline {deadline}",
        recipient_name=recipient_name,
        intro=f"The registration deadline is in {days_remaining} days ({deadline}).",
        facts=[
            ("Course", label),
            ("Deadline", deadline),
            ("Employees registered", str(registered_count)),
        ],
        outro="Sign in to the portal to complete or review the registrations.",
        cta_text="Go to registrations",
        cta_path="/courses",
    )


def certificate_expiring(
    *,
    employee_name: str,
    course_title: str,
    expires_at: DateLike,
    days_remaining: int,
    recipient_name: Optional[str] = None,
) -> Rendered:
    expiry = format_day(expires_at)
    prefix = "ATTENTION - " if days_remaining <= 30 else ""
    return _compose(
        title=f"Certificate expiring in {days_remaining} days",
        message=f"The {course_title} certificate of {employee_name} expires on {expiry}.",
        subject=f"{prefix}Certificate expiring - {employee_name} ({course_title}) - {expiry}",
        recipient_name=recipient_name,
        intro=f"An employee certificate expires in {days_remaining} days:",
        facts=[("Employee", employee_name), ("Course", course_title), ("Expires", expiry)],
        outro="Plan the renewal in good time.",
        cta_text="Go to certificates",
        cta_path="/certificates",
    )


def admin_deadline_expired(
    *,
    client_name: str,
    course_title: str,
    edition_number: Optional[int],
    registration_deadline: DateLike,
    registered_count: int,
    recipient_name: Optional[str] = None,
) -> Rendered:
    label = _edition_label(course_title, edition_number)
    deadline = format_day(registration_deadline)
    return _compose(
        title="Registration deadline expired",
        message=f"Registrations for {label} ({client_name}) closed on {deadline}.",
        subject=f"Deadline expired - {client_name} - {label}",
        recipient_name=recipient_name,
        intro="The registration window of the following edition has closed:",
        facts=[
            ("Client", client_name),
            ("Course", label),
            ("Deadline", deadline),
            ("Employees registered", str(registered_count)),
        ],
        outro="Review the registrations and follow up with the client if needed.",
        cta_text="Review registrations",
        cta_path="/admin/courses",
    )
