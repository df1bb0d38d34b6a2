from __future__ import annotations

import json
import logging
import sqlite3
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

_LOG = logging.getLogger(__name__)


@dataclass
class RunState:
    """Progress for one renewal date.

    ``processed_ids`` accumulates across invocations; the counters describe
    the latest invocation only.
    """

    run_date: str
    processed_ids: set[str] = field(default_factory=set)
    is_complete: bool = False
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    created_at: str | None = None
    updated_at: str | None = None

    def mark_processed(self, entity_id: str) -> None:
        self.processed_ids.add(str(entity_id))

    def was_processed(self, entity_id: str) -> bool:
        return str(entity_id) in self.processed_ids

    def reset_counters(self) -> None:
        self.succeeded = self.failed = self.skipped = 0


def _utc_now() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat()


class RunStateStore:
    """One sqlite row per run date."""

    def __init__(self, db_path: Path) -> None:
        self.db_path = Path(db_path)

    def _connect(self) -> sqlite3.Connection:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def init(self) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS run_state (
                    run_date TEXT PRIMARY KEY,
                    processed_ids TEXT NOT NULL DEFAULT '[]',
                    is_complete INTEGER NOT NULL DEFAULT 0,
                    succeeded INTEGER NOT NULL DEFAULT 0,
                    failed INTEGER NOT NULL DEFAULT 0,
                    skipped INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )
            conn.commit()

    def load(self, run_date: str) -> RunState:
        self.init()
        with self._connect() as conn:
            row = conn.execute(
                """
                SELECT run_date, processed_ids, is_complete, succeeded, failed, skipped, created_at, updated_at
                FROM run_state
                WHERE run_date = ?
                """,
                (run_date,),
            ).fetchone()

        if row is None:
            return RunState(run_date=run_date)

        try:
            ids = json.loads(row["processed_ids"] or "[]")
        except json.JSONDecodeError:
            _LOG.warning("Run state for %s has an unreadable id list; starting empty", run_date)
            ids = []
        return RunState(
            run_date=row["run_date"],
            processed_ids={str(item) for item in ids if str(item).strip()},
            is_complete=bool(row["is_complete"]),
            succeeded=int(row["succeeded"] or 0),
            failed=int(row["failed"] or 0),
            skipped=int(row["skipped"] or 0),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def save(self, state: RunState) -> None:
        self.init()
        now = _utc_now()
        state.created_at = state.created_at or now
        state.updated_at = now
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO run_state (
                    run_date, processed_ids, is_complete, succeeded, failed, skipped, created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(run_date) DO UPDATE SET
                    processed_ids = excluded.processed_ids,
                    is_complete = excluded.is_complete,
                    succeeded = excluded.succeeded,
                    failed = excluded.failed,
                    skipped = excluded.skipped,
                    updated_at = excluded.updated_at
                """,
                (
                    state.run_date,
                    json.dumps(sorted(state.processed_ids)),
                    1 if state.is_complete else 0,
                    state.succeeded,
                    state.failed,
                    state.skipped,
                    state.created_at,
                    state.updated_at,
                ),
            )
            conn.commit()
        _LOG.debug("Saved run state for %s (%d processed)", state.run_date, len(state.processed_ids))

    def clear(self, run_date: str) -> bool:
        self.init()
        with self._connect() as conn:
            deleted = conn.execute("DELETE FROM run_state WHERE run_date = ?", (run_date,)).rowcount
            conn.commit()
        if deleted:
            _LOG.info("Cleared run state for %s", run_date)
        return bool(deleted)
