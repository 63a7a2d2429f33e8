"""Daily reminder job.

Intended for cron (once a day, early morning) to:
 - remind clients 7 and 2 days before an edition's registration deadline
 - tell administrators about deadlines that expired yesterday
 - warn clients about certificates expiring in 60 and 30 days
"""

from __future__ import annotations

import logging
import os
from datetime import date
from typing import Optional

from trainportal.apps.notifications.dispatcher import NotificationDispatcher
from trainportal.apps.notifications.outbox import EmailOutbox
from trainportal.apps.notifications.preferences import PreferenceGate
from trainportal.apps.notifications.reminders import run_reminders
from trainportal.database import WriteSessionLocal

logger = logging.getLogger(__name__)


def run(today: Optional[date] = None, *, session_factory=WriteSessionLocal) -> dict:
    outbox = EmailOutbox(session_factory)
    dispatcher = NotificationDispatcher(PreferenceGate(), outbox)
    db = session_factory()
    try:
        result = run_reminders(db, dispatcher, today)
        db.commit()
    except Exception:
        db.rollback()
        logger.exception("Reminder run failed")
        raise
    finally:
        db.close()

    outbox.start()
    scheduled = dispatcher.schedule_emails(result.emails)
    outbox.join()
    outbox.stop()
    return {
        "notifications": len(result.notifications),
        "emails": scheduled,
        "suppressed": len(result.suppressed),
    }


if __name__ == "__main__":
    logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO").upper())
    summary = run()
    print(
        "Reminder runner created {notifications} notifications, "
        "sent {emails} emails, suppressed {suppressed}".format(**summary)
    )
