"""Append-only, hash-chained rollout history backed by SQLite.

The history is the durable audit log of finished rollouts and the read-only
feed for dashboards and alerts.

Design:
- Append-only: only ``append()`` writes; there is no update or delete.
- Only terminal records are accepted.
- Hash-chained per service: each record includes the SHA-256 of the
  previous record appended for the same service.
- WAL journal mode for concurrent readers.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from collections.abc import Iterator
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from rollwright.core.hasher import compute_record_hash
from rollwright.models.artifacts import ArtifactRef
from rollwright.models.rollout import RolloutOutcome, RolloutRecord

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# DDL
# ---------------------------------------------------------------------------

_CREATE_HISTORY = """
CREATE TABLE IF NOT EXISTS rollout_history (
    seq                   INTEGER PRIMARY KEY AUTOINCREMENT,
    record_id             TEXT NOT NULL UNIQUE,
    service_id            TEXT NOT NULL,
    target_json           TEXT NOT NULL,
    previous_artifact_json TEXT,
    started_at_utc        TEXT NOT NULL,
    finished_at_utc       TEXT NOT NULL,
    outcome               TEXT NOT NULL,
    attempts              INTEGER NOT NULL,
    detail                TEXT NOT NULL DEFAULT '',
    previous_record_hash  TEXT NOT NULL DEFAULT '',
    record_hash           TEXT NOT NULL UNIQUE
);
"""

_CREATE_IDX_SERVICE_FINISHED = """
CREATE INDEX IF NOT EXISTS idx_service_finished
    ON rollout_history(service_id, finished_at_utc, seq);
"""

_COLUMNS = (
    "seq, record_id, service_id, target_json, previous_artifact_json, "
    "started_at_utc, finished_at_utc, outcome, attempts, detail, "
    "previous_record_hash, record_hash"
)


class DuplicateRecordError(RuntimeError):
    """Raised when a record id is appended twice.  Indicates a programming error."""


class RecordNotFoundError(LookupError):
    """Raised when a record id is not in the history."""


class HistoryIntegrityError(RuntimeError):
    """Raised when a service's hash chain is broken."""


def _utc_text(value: datetime) -> str:
    # Fixed-width text so lexical order equals chronological order.
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


class ServiceHistory:
    """Lazy, restartable view of one service's records, newest first.

    Each iteration re-reads SQLite page by page, so records appended after
    the view was created show up on the next pass.
    """

    def __init__(self, history: RolloutHistory, service_id: str, page_size: int = 50) -> None:
        self._history = history
        self.service_id = service_id
        self._page_size = page_size

    def __iter__(self) -> Iterator[RolloutRecord]:
        cursor: tuple[str, int] | None = None
        while True:
            rows = self._history._fetch_page(self.service_id, cursor, self._page_size)
            for row in rows:
                yield RolloutHistory._row_to_record(row)
            if len(rows) < self._page_size:
                return
            last = rows[-1]
            cursor = (last[6], last[0])


class RolloutHistory:
    """Append-only, hash-chained rollout history.

    Parameters
    ----------
    db_path:
        Path to the SQLite database file.  Created if it does not exist.
    """

    def __init__(self, db_path: Path) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._write_lock = threading.Lock()
        self._init_schema()

    @property
    def path(self) -> Path:
        return self._db_path

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), check_same_thread=False)
        conn.execute("PRAGMA journal_mode=WAL")
        return conn

    def _init_schema(self) -> None:
        with self._connect() as conn:
            conn.execute(_CREATE_HISTORY)
            conn.execute(_CREATE_IDX_SERVICE_FINISHED)
            conn.commit()

    # ------------------------------------------------------------------
    # Core: append-only write
    # ------------------------------------------------------------------

    def append(self, record: RolloutRecord) -> RolloutRecord:
        """Append a finalized record, sealing it into its service's chain.

        Returns the record with ``previous_record_hash`` and ``record_hash``
        set.  This is the ONLY write method.

        Raises
        ------
        ValueError
            If the record is still pending.
        DuplicateRecordError
            If a record with the same id was already appended.
        """
        if not record.is_terminal:
            raise ValueError(
                f"record {record.id} is {record.outcome.value}; only terminal "
                "records can be appended"
            )

        with self._write_lock:
            previous_hash = self._get_latest_hash(record.service_id)
            unsealed = record.model_copy(
                update={
                    "started_at": record.started_at.astimezone(timezone.utc),
                    "finished_at": record.finished_at.astimezone(timezone.utc),
                    "previous_record_hash": previous_hash,
                    "record_hash": "",
                }
            )
            sealed = unsealed.model_copy(
                update={"record_hash": compute_record_hash(unsealed.model_dump(mode="json"))}
            )
            try:
                self._insert(sealed)
            except sqlite3.IntegrityError as exc:
                raise DuplicateRecordError(
                    f"rollout record {record.id} is already in the history"
                ) from exc

        logger.debug("Appended %s (%s) for %s", sealed.id, sealed.outcome.value, sealed.service_id)
        return sealed

    def _insert(self, record: RolloutRecord) -> None:
        assert record.finished_at is not None
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO rollout_history
                    (record_id, service_id, target_json, previous_artifact_json,
                     started_at_utc, finished_at_utc, outcome, attempts, detail,
                     previous_record_hash, record_hash)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    record.id,
                    record.service_id,
                    record.target.model_dump_json(),
                    record.previous_artifact.model_dump_json()
                    if record.previous_artifact is not None
                    else None,
                    _utc_text(record.started_at),
                    _utc_text(record.finished_at),
                    record.outcome.value,
                    record.attempts,
                    record.detail,
                    record.previous_record_hash,
                    record.record_hash,
                ),
            )
            conn.commit()

    def _get_latest_hash(self, service_id: str) -> str:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT record_hash FROM rollout_history WHERE service_id = ? "
                "ORDER BY seq DESC LIMIT 1",
                (service_id,),
            ).fetchone()
        return row[0] if row else ""

    # ------------------------------------------------------------------
    # Query methods (read-only)
    # ------------------------------------------------------------------

    def get(self, record_id: str) -> RolloutRecord:
        """Return the record with *record_id*.  Raises ``RecordNotFoundError``."""
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT {_COLUMNS} FROM rollout_history WHERE record_id = ?",
                (record_id,),
            ).fetchone()
        if row is None:
            raise RecordNotFoundError(f"no rollout record with id {record_id!r}")
        return self._row_to_record(row)

    def list_by_service(self, service_id: str, *, page_size: int = 50) -> ServiceHistory:
        """Return a lazy, restartable iterable of records, newest ``finished_at`` first."""
        return ServiceHistory(self, service_id, page_size=page_size)

    def latest(self, service_id: str) -> RolloutRecord | None:
        """Most recently finished record for a service, or None."""
        return next(iter(self.list_by_service(service_id, page_size=1)), None)

    def service_ids(self) -> list[str]:
        """All services with at least one record, most recently active first."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT service_id FROM rollout_history GROUP BY service_id "
                "ORDER BY MAX(seq) DESC"
            ).fetchall()
        return [row[0] for row in rows]

    def _fetch_page(
        self, service_id: str, cursor: tuple[str, int] | None, limit: int
    ) -> list[tuple[Any, ...]]:
        with self._connect() as conn:
            if cursor is None:
                return conn.execute(
                    f"SELECT {_COLUMNS} FROM rollout_history WHERE service_id = ? "
                    "ORDER BY finished_at_utc DESC, seq DESC LIMIT ?",
                    (service_id, limit),
                ).fetchall()
            finished, seq = cursor
            return conn.execute(
                f"SELECT {_COLUMNS} FROM rollout_history WHERE service_id = ? "
                "AND (finished_at_utc < ? OR (finished_at_utc = ? AND seq < ?)) "
                "ORDER BY finished_at_utc DESC, seq DESC LIMIT ?",
                (service_id, finished, finished, seq, limit),
            ).fetchall()

    # ------------------------------------------------------------------
    # Chain verification
    # ------------------------------------------------------------------

    def verify_chain(self, service_id: str) -> bool:
        """Verify the hash chain of a service's records in append order.

        Returns True if the chain is valid, raises ``HistoryIntegrityError``
        otherwise.
        """
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT {_COLUMNS} FROM rollout_history WHERE service_id = ? "
                "ORDER BY seq ASC",
                (service_id,),
            ).fetchall()

        prev_hash = ""
        for row in rows:
            record = self._row_to_record(row)
            if record.previous_record_hash != prev_hash:
                raise HistoryIntegrityError(
                    f"Chain broken at record {record.id}: "
                    f"expected previous_hash={prev_hash!r}, "
                    f"got {record.previous_record_hash!r}"
                )
            expected = compute_record_hash(record.model_dump(mode="json"))
            if record.record_hash != expected:
                raise HistoryIntegrityError(
                    f"Tampered record {record.id}: "
                    f"expected hash={expected!r}, got {record.record_hash!r}"
                )
            prev_hash = record.record_hash
        return True

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_record(row: tuple[Any, ...]) -> RolloutRecord:
        (
            _seq,
            record_id,
            service_id,
            target_json,
            previous_artifact_json,
            started_at_utc,
            finished_at_utc,
            outcome,
            attempts,
            detail,
            previous_record_hash,
            record_hash,
        ) = row
        return RolloutRecord(
            id=record_id,
            service_id=service_id,
            target=ArtifactRef.model_validate_json(target_json),
            previous_artifact=ArtifactRef.model_validate_json(previous_artifact_json)
            if previous_artifact_json
            else None,
            started_at=started_at_utc,
            finished_at=finished_at_utc,
            outcome=RolloutOutcome(outcome),
            attempts=attempts,
            detail=detail,
            previous_record_hash=previous_record_hash,
            record_hash=record_hash,
        )
