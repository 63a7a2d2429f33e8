from __future__ import annotations

from .guards import guard_edition_dates, guard_edition_publish

# "invariants" run on every update; "transitions" maps from_state -> to_state
# -> guards. A same-state update is always allowed unless the state is terminal.
WORKFLOWS = {
    "course_edition": {
        "terminal": {"ARCHIVED"},
        "invariants": [guard_edition_dates],
        "transitions": {
            "DRAFT": {
                "PUBLISHED": [guard_edition_publish],
                "ARCHIVED": [],
            },
            "PUBLISHED": {
                "DRAFT": [],
                "CLOSED": [],
                "ARCHIVED": [],
            },
            "CLOSED": {
                "PUBLISHED": [guard_edition_publish],
                "ARCHIVED": [],
            },
            "ARCHIVED": {},
        },
    },
}
