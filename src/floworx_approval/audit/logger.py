"""Append-only JSONL audit trail of approval lifecycle events.

Every creation, auto-approval, step dispatch, decision and timeout is written
as one JSON record carrying a UTC ISO-8601 timestamp, a session identifier,
the event name and the event fields.  Requests keep their own decision log;
this file is the cross-request trail operators grep through.

Example
-------
>>> from pathlib import Path
>>> audit = AuditLogger(Path("/tmp/approvals.jsonl"))
>>> audit.log("decision_applied", request_id="abc", outcome="approved", actor_id="mgr1")
>>> audit.query({"event": "decision_applied"})[0]["actor_id"]
'mgr1'
"""
from __future__ import annotations

import json
import logging
import threading
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator

logger = logging.getLogger(__name__)


class AuditLogger:
    """Append-only JSONL audit logger.

    Parameters
    ----------
    log_path:
        Path to the ``.jsonl`` audit file.  Parent directories are created
        automatically on first write.
    session_id:
        Optional session identifier stamped on every record.  A random UUID
        is generated if not supplied.
    """

    def __init__(
        self,
        log_path: Path,
        session_id: str | None = None,
    ) -> None:
        self._log_path = log_path
        self._session_id: str = session_id or str(uuid.uuid4())
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Write API
    # ------------------------------------------------------------------

    def log(self, event: str, **fields: object) -> None:
        """Append an event record.

        ``timestamp``, ``session_id`` and ``event`` are set by the logger and
        cannot be overridden by ``fields``.  Write failures are logged, never
        raised: the audit trail must not break a state transition.
        """
        record: dict[str, object] = {
            **fields,
            "timestamp": datetime.now(tz=timezone.utc).isoformat(),
            "session_id": self._session_id,
            "event": event,
        }
        try:
            self._write(record)
        except OSError:
            logger.exception("Failed to write audit record %s to %s.", event, self._log_path)

    # ------------------------------------------------------------------
    # Read API
    # ------------------------------------------------------------------

    def read_all(self) -> list[dict[str, object]]:
        """Return all audit records in chronological order.

        Returns an empty list when the log file does not exist.
        """
        return list(self._iter_records())

    def last_n(self, n: int) -> list[dict[str, object]]:
        """Return the ``n`` most recent audit records; none when ``n <= 0``."""
        if n <= 0:
            return []
        return list(self._iter_records())[-n:]

    def query(self, filters: dict[str, object]) -> list[dict[str, object]]:
        """Return records where every ``filters`` key equals its value."""
        return [
            record
            for record in self._iter_records()
            if all(record.get(k) == v for k, v in filters.items())
        ]

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _write(self, record: dict[str, object]) -> None:
        with self._lock:
            self._log_path.parent.mkdir(parents=True, exist_ok=True)
            with self._log_path.open("a", encoding="utf-8") as fh:
                fh.write(json.dumps(record, default=str) + "\n")

    def _iter_records(self) -> Iterator[dict[str, object]]:
        if not self._log_path.exists():
            return
        with self._lock:
            with self._log_path.open("r", encoding="utf-8") as fh:
                lines = fh.readlines()
        for line in lines:
            line = line.strip()
            if line:
                try:
                    yield json.loads(line)
                except json.JSONDecodeError:
                    logger.warning("Skipping malformed audit line in %s", self._log_path)

    @property
    def log_path(self) -> Path:
        """The filesystem path of the audit log file."""
        return self._log_path

    @property
    def session_id(self) -> str:
        """The session identifier stamped on every record."""
        return self._session_id
