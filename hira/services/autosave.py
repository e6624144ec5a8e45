"""
HIRA — Worksheet auto-save

Fire-and-forget background persistence of worksheet edits. ``schedule()``
returns immediately; the save runs on a worker thread inside its own app
context.

Behaviour:
  - Snapshots are coalesced per assessment: while a save is running, newer
    snapshots replace older queued ones, so only the latest is written.
  - Transient failures are retried up to AUTOSAVE_MAX_RETRIES times with a
    linear backoff of AUTOSAVE_RETRY_DELAY seconds.
  - Business errors (forbidden, wrong status, bad input) are not retried.
  - A save that still fails is dropped with a warning. Nothing is raised to
    the caller and the in-memory worksheet stays authoritative.

Usage:
    saver = current_app.extensions["hira_autosave"]
    saver.schedule(company_id, assessment_id, actor_id, rows)
"""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor

from hira.core.exceptions import HiraError, NotFoundError
from hira.services import hira_lifecycle, hira_store

logger = logging.getLogger(__name__)


class AutoSaver:
    """Coalescing, retrying background worksheet saver."""

    def __init__(self, app, *, executor=None, max_retries: int | None = None,
                 retry_delay: float | None = None):
        self.app = app
        self.max_retries = (app.config.get("AUTOSAVE_MAX_RETRIES", 3)
                            if max_retries is None else max_retries)
        self.retry_delay = (app.config.get("AUTOSAVE_RETRY_DELAY", 1.0)
                            if retry_delay is None else retry_delay)
        self._executor = executor or ThreadPoolExecutor(
            max_workers=app.config.get("AUTOSAVE_WORKERS", 2),
            thread_name_prefix="hira-autosave",
        )
        self._lock = threading.Lock()
        self._pending: dict[tuple, tuple] = {}
        self._inflight: set[tuple] = set()
        self.stats = {"saved": 0, "retried": 0, "dropped": 0}

    def schedule(self, company_id: int, assessment_id: int, actor_id: int, rows: list) -> None:
        """Queue the latest worksheet snapshot for saving. Never blocks, never raises."""
        key = (company_id, assessment_id)
        with self._lock:
            self._pending[key] = (actor_id, list(rows))
            if key in self._inflight:
                return
            self._inflight.add(key)
        try:
            self._executor.submit(self._drain, key)
        except RuntimeError:
            # Executor already shut down
            with self._lock:
                self._inflight.discard(key)
                self._pending.pop(key, None)
            self._count("dropped")
            logger.warning("Auto-save dropped: executor is shut down",
                           extra={"company_id": company_id, "assessment_id": assessment_id})

    def shutdown(self, wait: bool = True) -> None:
        shutdown = getattr(self._executor, "shutdown", None)
        if shutdown:
            shutdown(wait=wait)

    # ── Internal ──────────────────────────────────────────────────────────

    def _count(self, outcome: str) -> None:
        # Worker threads report concurrently
        with self._lock:
            self.stats[outcome] += 1

    def _drain(self, key: tuple) -> None:
        while True:
            with self._lock:
                snapshot = self._pending.pop(key, None)
                if snapshot is None:
                    self._inflight.discard(key)
                    return
            actor_id, rows = snapshot
            self._save_with_retry(key, actor_id, rows)

    def _save_with_retry(self, key: tuple, actor_id: int, rows: list) -> None:
        company_id, assessment_id = key
        log_extra = {"company_id": company_id, "assessment_id": assessment_id,
                     "actor_id": actor_id}

        for attempt in range(1, self.max_retries + 2):
            try:
                self._save(company_id, assessment_id, actor_id, rows)
                self._count("saved")
                return
            except (HiraError, NotFoundError) as exc:
                self._count("dropped")
                logger.warning("Auto-save rejected, not retrying: %s", exc, extra=log_extra)
                return
            except Exception:
                if attempt > self.max_retries:
                    break
                self._count("retried")
                logger.warning("Auto-save attempt %d failed, retrying", attempt,
                               exc_info=True, extra={**log_extra, "attempt": attempt})
                if self.retry_delay:
                    time.sleep(self.retry_delay * attempt)

        self._count("dropped")
        logger.warning("Auto-save dropped after %d attempts", self.max_retries + 1,
                       extra=log_extra)

    def _save(self, company_id: int, assessment_id: int, actor_id: int, rows: list) -> None:
        with self.app.app_context():
            actor = hira_store.fetch_user(company_id, actor_id)
            hira_lifecycle.save_worksheet(company_id, assessment_id, actor, rows)


def init_autosave(app, **kwargs) -> AutoSaver:
    saver = AutoSaver(app, **kwargs)
    app.extensions["hira_autosave"] = saver
    return saver
