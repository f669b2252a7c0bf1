"""Approval request repositories.

Every repository offers atomic compare-and-swap by request id: a write is
accepted only when the stored ``version`` still equals the version the
caller read.  That comparison decides who wins a race between a human
decision and a timeout sweep.

Two implementations are provided:

- :class:`InMemoryApprovalRepository` for tests and single-process use.
- :class:`SqliteApprovalRepository` which persists requests in an SQLite
  database.  Its compare-and-swap is a single conditional ``UPDATE``, so it
  holds across processes sharing the same database file.

Records are copied on the way in and out so callers never share mutable
state with the store.
"""
from __future__ import annotations

import json
import logging
import sqlite3
import threading
from abc import ABC, abstractmethod
from pathlib import Path

from floworx_approval.approval.models import ACTIVE_STATUSES, ApprovalRequest
from floworx_approval.errors import ConflictError, NotFoundError

logger = logging.getLogger(__name__)


class ApprovalRepository(ABC):
    """Durable keyed store of approval requests."""

    @abstractmethod
    def add(self, request: ApprovalRequest) -> None:
        """Insert a new request.

        Raises
        ------
        ConflictError
            If a request with the same id already exists.
        """

    @abstractmethod
    def get(self, request_id: str) -> ApprovalRequest:
        """Return a copy of the stored request.

        Raises
        ------
        NotFoundError
            If no request with ``request_id`` exists.
        """

    @abstractmethod
    def compare_and_swap(self, request: ApprovalRequest, expected_version: int) -> bool:
        """Replace the stored record if its version equals ``expected_version``.

        On success the stored (and passed) record's ``version`` becomes
        ``expected_version + 1``.

        Returns
        -------
        bool
            ``False`` when another writer got there first.
        """

    @abstractmethod
    def all_requests(self) -> list[ApprovalRequest]:
        """Return copies of every stored request, oldest first."""

    def list_active(self) -> list[ApprovalRequest]:
        """Return requests in ``pending`` or ``awaiting_decision``, oldest first."""
        return [r for r in self.all_requests() if r.status in ACTIVE_STATUSES]

    def list_pending(self, scope: str | None = None) -> list[ApprovalRequest]:
        """Return active requests, optionally restricted to one scope."""
        return [r for r in self.list_active() if scope is None or r.scope == scope]


class InMemoryApprovalRepository(ApprovalRepository):
    """Thread-safe dictionary-backed repository."""

    def __init__(self) -> None:
        self._requests: dict[str, ApprovalRequest] = {}
        self._lock = threading.Lock()

    def add(self, request: ApprovalRequest) -> None:
        with self._lock:
            if request.request_id in self._requests:
                raise ConflictError(f"Approval request {request.request_id!r} already exists.")
            self._requests[request.request_id] = request.copy()

    def get(self, request_id: str) -> ApprovalRequest:
        with self._lock:
            stored = self._requests.get(request_id)
            if stored is None:
                raise NotFoundError("approval request", request_id)
            return stored.copy()

    def compare_and_swap(self, request: ApprovalRequest, expected_version: int) -> bool:
        with self._lock:
            stored = self._requests.get(request.request_id)
            if stored is None:
                raise NotFoundError("approval request", request.request_id)
            if stored.version != expected_version:
                return False
            request.version = expected_version + 1
            self._requests[request.request_id] = request.copy()
            return True

    def all_requests(self) -> list[ApprovalRequest]:
        with self._lock:
            requests = [r.copy() for r in self._requests.values()]
        return sorted(requests, key=lambda r: r.created_at)


_SCHEMA = """
CREATE TABLE IF NOT EXISTS approval_requests (
    request_id TEXT PRIMARY KEY,
    workflow_id TEXT NOT NULL,
    scope TEXT,
    status TEXT NOT NULL,
    created_at TEXT NOT NULL,
    version INTEGER NOT NULL DEFAULT 0,
    record TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_approval_status
    ON approval_requests(status);
CREATE INDEX IF NOT EXISTS idx_approval_created
    ON approval_requests(created_at);
"""


class SqliteApprovalRepository(ApprovalRepository):
    """Repository persisted in an SQLite database.

    Each request is one row.  The full record is stored as JSON in the
    ``record`` column; ``status``, ``scope`` and ``version`` are mirrored
    into their own columns so they can be filtered and compared in SQL.

    Compare-and-swap is ``UPDATE ... WHERE request_id = ? AND version = ?``.
    SQLite serialises writers on the database file, so exactly one of two
    competing updates matches the row, whichever process issued it.

    Parameters
    ----------
    path:
        Location of the database file.  Parent directories and the schema
        are created on construction.
    timeout:
        Seconds a connection waits for another writer's lock.
    """

    def __init__(self, path: Path, timeout: float = 10.0) -> None:
        self._path = path
        self._timeout = timeout
        self._path.parent.mkdir(parents=True, exist_ok=True)
        conn = self._connect()
        try:
            conn.executescript(_SCHEMA)
            conn.commit()
        finally:
            conn.close()

    def add(self, request: ApprovalRequest) -> None:
        conn = self._connect()
        try:
            with conn:
                conn.execute(
                    "INSERT INTO approval_requests "
                    "(request_id, workflow_id, scope, status, created_at, version, record) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?)",
                    (
                        request.request_id,
                        request.workflow_id,
                        request.scope,
                        request.status.value,
                        request.created_at.isoformat(),
                        request.version,
                        self._encode(request),
                    ),
                )
        except sqlite3.IntegrityError as exc:
            raise ConflictError(
                f"Approval request {request.request_id!r} already exists."
            ) from exc
        finally:
            conn.close()

    def get(self, request_id: str) -> ApprovalRequest:
        conn = self._connect()
        try:
            row = conn.execute(
                "SELECT record, version FROM approval_requests WHERE request_id = ?",
                (request_id,),
            ).fetchone()
        finally:
            conn.close()
        if row is None:
            raise NotFoundError("approval request", request_id)
        return self._decode(row)

    def compare_and_swap(self, request: ApprovalRequest, expected_version: int) -> bool:
        new_version = expected_version + 1
        candidate = request.copy()
        candidate.version = new_version
        conn = self._connect()
        try:
            with conn:
                cursor = conn.execute(
                    "UPDATE approval_requests "
                    "SET status = ?, scope = ?, version = ?, record = ? "
                    "WHERE request_id = ? AND version = ?",
                    (
                        candidate.status.value,
                        candidate.scope,
                        new_version,
                        self._encode(candidate),
                        candidate.request_id,
                        expected_version,
                    ),
                )
                if cursor.rowcount == 1:
                    request.version = new_version
                    return True
                exists = conn.execute(
                    "SELECT 1 FROM approval_requests WHERE request_id = ?",
                    (candidate.request_id,),
                ).fetchone()
        finally:
            conn.close()
        if exists is None:
            raise NotFoundError("approval request", request.request_id)
        logger.debug(
            "Compare-and-swap lost for %s at version %d", request.request_id, expected_version
        )
        return False

    def all_requests(self) -> list[ApprovalRequest]:
        conn = self._connect()
        try:
            rows = conn.execute(
                "SELECT record, version FROM approval_requests ORDER BY created_at, rowid"
            ).fetchall()
        finally:
            conn.close()
        return [self._decode(row) for row in rows]

    def list_active(self) -> list[ApprovalRequest]:
        statuses = sorted(status.value for status in ACTIVE_STATUSES)
        placeholders = ", ".join("?" for _ in statuses)
        conn = self._connect()
        try:
            rows = conn.execute(
                "SELECT record, version FROM approval_requests "
                f"WHERE status IN ({placeholders}) ORDER BY created_at, rowid",
                statuses,
            ).fetchall()
        finally:
            conn.close()
        return [self._decode(row) for row in rows]

    @property
    def path(self) -> Path:
        """The filesystem path of the database."""
        return self._path

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._path, timeout=self._timeout)
        conn.execute("PRAGMA journal_mode=WAL")
        conn.row_factory = sqlite3.Row
        return conn

    @staticmethod
    def _encode(request: ApprovalRequest) -> str:
        return json.dumps(request.to_dict(), default=str)

    @staticmethod
    def _decode(row: sqlite3.Row) -> ApprovalRequest:
        request = ApprovalRequest.from_dict(json.loads(row["record"]))
        request.version = int(row["version"])
        return request
