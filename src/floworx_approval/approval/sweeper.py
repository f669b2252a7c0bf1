"""Periodic timeout sweep for approval requests.

:class:`TimeoutSweeper` scans active requests for expired deadlines and
times them out through the request manager, the same compare-and-swap path
human decisions take.  Whichever transition commits first wins; the loser
is a no-op.  Overlapping sweeps are therefore safe.

Example
-------
>>> sweeper = TimeoutSweeper(manager, repository, interval_seconds=60)
>>> sweeper.sweep_once()          # one pass, e.g. from cron
[]
>>> sweeper.start()               # or keep sweeping on a daemon thread
>>> sweeper.stop()
"""
from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from floworx_approval.approval.repository import ApprovalRepository

if TYPE_CHECKING:
    from floworx_approval.approval.manager import ApprovalRequestManager

logger = logging.getLogger(__name__)


class TimeoutSweeper:
    """Forces a terminal transition on requests past their deadline.

    Parameters
    ----------
    manager:
        Applies the timeout transitions.
    repository:
        Source of active requests.
    interval_seconds:
        Delay between passes when running in the background.  Independent
        of any request's own timeout.
    """

    def __init__(
        self,
        manager: ApprovalRequestManager,
        repository: ApprovalRepository,
        interval_seconds: float = 60.0,
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive.")
        self._manager = manager
        self._repository = repository
        self._interval = interval_seconds
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def sweep_once(self, now: datetime | None = None) -> list[str]:
        """Time out every active request whose deadline is at or before ``now``.

        Parameters
        ----------
        now:
            Override the current UTC time (for testing).

        Returns
        -------
        list[str]
            IDs of the requests this pass transitioned.  Requests another
            sweep or a human decision got to first are not included.
        """
        effective_now = now or datetime.now(tz=timezone.utc)
        timed_out: list[str] = []

        for request in self._repository.list_active():
            if effective_now < request.deadline:
                continue
            try:
                result = self._manager.force_timeout(request.request_id, now=effective_now)
            except Exception:
                logger.exception("Timeout sweep failed for request %s.", request.request_id)
                continue
            if result.applied:
                timed_out.append(request.request_id)

        if timed_out:
            logger.info("Timeout sweep transitioned %d request(s).", len(timed_out))
        return timed_out

    def start(self) -> None:
        """Start sweeping on a daemon thread.  No-op if already running."""
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._run, name="approval-timeout-sweeper", daemon=True
        )
        self._thread.start()
        logger.info("Timeout sweeper started (interval=%.1fs).", self._interval)

    def stop(self, timeout: float | None = 5.0) -> None:
        """Signal the background thread to stop and wait for it."""
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        logger.info("Timeout sweeper stopped.")

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def interval_seconds(self) -> float:
        """The configured delay between passes."""
        return self._interval

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _run(self) -> None:
        while not self._stop.wait(self._interval):
            try:
                self.sweep_once()
            except Exception:
                logger.exception("Timeout sweep pass failed; retrying next interval.")
