from __future__ import annotations

import logging
import os
import queue
import threading
from typing import Callable, List, Optional

from sqlalchemy.orm import Session

from . import providers, service

logger = logging.getLogger(__name__)

try:
    OUTBOX_MAXSIZE: int = int(os.getenv("EMAIL_OUTBOX_MAXSIZE", "500"))
except ValueError:
    OUTBOX_MAXSIZE = 500

try:
    OUTBOX_WORKERS: int = int(os.getenv("EMAIL_OUTBOX_WORKERS", "2"))
except ValueError:
    OUTBOX_WORKERS = 2

_STOP = object()


class EmailOutbox:
    """
    Bounded in-memory queue of outbound emails drained by daemon threads.

    Each job opens its own session from `session_factory`, so a send never
    shares a transaction with the request that scheduled it. Best-effort:
    a full queue drops the job, and queued jobs are lost on process exit.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        *,
        provider_factory: Callable[[], Optional[providers.EmailProvider]] = lambda: None,
        maxsize: int = OUTBOX_MAXSIZE,
        workers: int = OUTBOX_WORKERS,
    ) -> None:
        self._session_factory = session_factory
        self._provider_factory = provider_factory
        self._queue: "queue.Queue[object]" = queue.Queue(maxsize=maxsize)
        self._workers = max(1, workers)
        self._threads: List[threading.Thread] = []
        self._lock = threading.Lock()

    @property
    def running(self) -> bool:
        with self._lock:
            return any(thread.is_alive() for thread in self._threads)

    def start(self) -> None:
        with self._lock:
            if any(thread.is_alive() for thread in self._threads):
                return
            self._threads = [
                threading.Thread(target=self._worker, name=f"email-outbox-{index}", daemon=True)
                for index in range(self._workers)
            ]
            for thread in self._threads:
                thread.start()

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        with self._lock:
            threads = list(self._threads)
            self._threads = []
        for _ in threads:
            try:
                self._queue.put(_STOP, timeout=timeout)
            except queue.Full:
                logger.warning("Email outbox full while stopping; workers will exit on daemon teardown")
                break
        for thread in threads:
            thread.join(timeout)

    def submit(self, message: providers.OutboundEmail) -> bool:
        try:
            self._queue.put_nowait(message)
        except queue.Full:
            logger.warning(
                "Email outbox full; dropping email",
                extra={
                    "notification_type": message.notification_type,
                    "edition_id": message.edition_id,
                    "recipient_email": message.recipient_email,
                },
            )
            return False
        return True

    def join(self) -> None:
        """Block until every queued job has been processed."""
        self._queue.join()

    def _worker(self) -> None:
        while True:
            job = self._queue.get()
            try:
                if job is _STOP:
                    return
                self._deliver(job)
            finally:
                self._queue.task_done()

    def _deliver(self, message: providers.OutboundEmail) -> None:
        db = self._session_factory()
        try:
            service.send_email(message, provider=self._provider_factory(), db=db)
            db.commit()
        except Exception:
            db.rollback()
            logger.exception(
                "Email outbox job failed",
                extra={"notification_type": message.notification_type, "edition_id": message.edition_id},
            )
        finally:
            db.close()
