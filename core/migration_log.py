"""
core/migration_log.py
---------------------
Append-only migration log: the durable record of every phase, table,
batch and rollback operation, and the source of resume checkpoints.

Design Decisions:
    * One JSON object per line (``LogEntry.model_dump_json``). Appending a
      line never rewrites earlier history, so a crash mid-write can lose at
      most the line being written.
    * Without a path the log is memory-only (tests, dry runs).
    * A rollback entry resets the checkpoint of everything it covers; an
      entry with an empty phase covers the whole migration.
"""
from __future__ import annotations

import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable

from pydantic import ValidationError

from logger import get_logger
from models.plan import Checkpoint, LogEntry, LogStatus

log = get_logger(__name__)

OP_PHASE = "phase"
OP_TABLE = "table"
OP_BATCH = "batch"
OP_ROLLBACK = "rollback"


class MigrationLog:
    """
    Thread-safe append-only log keyed by (migration_id, phase, table).

    Args:
        path: JSON-lines file; replayed on construction when it exists.
    """

    def __init__(self, path: Path | str | None = None) -> None:
        self._path = Path(path) if path is not None else None
        self._entries: list[LogEntry] = []
        self._lock = threading.Lock()
        if self._path is not None and self._path.exists():
            self._replay()

    @property
    def path(self) -> Path | None:
        return self._path

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _replay(self) -> None:
        skipped = 0
        with self._path.open(encoding="utf-8") as fh:
            for line_num, line in enumerate(fh, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    self._entries.append(LogEntry.model_validate_json(line))
                except ValidationError as exc:
                    skipped += 1
                    log.warning("Skipping unreadable log line %d in '%s': %s",
                                line_num, self._path, exc.errors()[0].get("msg", exc))
        log.info("Replayed %d log entr%s from '%s'%s.",
                 len(self._entries), "y" if len(self._entries) == 1 else "ies", self._path,
                 f" ({skipped} skipped)" if skipped else "")

    def append(self, entry: LogEntry) -> LogEntry:
        with self._lock:
            self._entries.append(entry)
            if self._path is not None:
                self._path.parent.mkdir(parents=True, exist_ok=True)
                with self._path.open("a", encoding="utf-8") as fh:
                    fh.write(entry.model_dump_json() + "\n")
        return entry

    def record(
        self,
        migration_id: str,
        phase: str,
        operation: str,
        status: LogStatus,
        table_name: str = "",
        *,
        batch_number: int | None = None,
        last_key: Any = None,
        rows_processed: int = 0,
        started_at: datetime | None = None,
        error_message: str | None = None,
        **metadata: Any,
    ) -> LogEntry:
        """Build and append an entry; ``ended_at`` is stamped now."""
        now = datetime.now(timezone.utc)
        if isinstance(last_key, tuple):
            last_key = list(last_key)
        return self.append(LogEntry(
            migration_id=migration_id,
            phase=phase,
            table_name=table_name,
            operation=operation,
            status=status,
            batch_number=batch_number,
            last_key=last_key,
            rows_processed=rows_processed,
            started_at=started_at or now,
            ended_at=now,
            error_message=error_message,
            metadata=metadata,
        ))

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def entries(
        self,
        migration_id: str | None = None,
        phase: str | None = None,
        table_name: str | None = None,
        operation: str | None = None,
    ) -> list[LogEntry]:
        with self._lock:
            snapshot = list(self._entries)
        return [
            e for e in snapshot
            if (migration_id is None or e.migration_id == migration_id)
            and (phase is None or e.phase == phase)
            and (table_name is None or e.table_name == table_name)
            and (operation is None or e.operation == operation)
        ]

    @staticmethod
    def _resets(entry: LogEntry, phase: str, table_name: str) -> bool:
        return (
            entry.operation == OP_ROLLBACK
            and entry.phase in ("", phase)
            and entry.table_name in ("", table_name)
        )

    def latest_checkpoint(self, migration_id: str, phase: str, table_name: str) -> Checkpoint | None:
        """Last committed batch since the most recent covering rollback."""
        checkpoint: Checkpoint | None = None
        for e in self.entries(migration_id=migration_id):
            if self._resets(e, phase, table_name):
                checkpoint = None
            elif (
                e.operation == OP_BATCH and e.status is LogStatus.COMPLETED
                and e.phase == phase and e.table_name == table_name
            ):
                checkpoint = Checkpoint(
                    migration_id=migration_id,
                    phase=phase,
                    table_name=table_name,
                    batch_number=e.batch_number or 0,
                    last_key=e.last_key,
                    rows_processed=e.rows_processed,
                )
        return checkpoint

    def rows_migrated(self, migration_id: str, table_name: str) -> int:
        """Rows committed for *table_name* in whichever phase loaded it (0 if none)."""
        phases = {
            e.phase for e in self.entries(migration_id=migration_id, table_name=table_name, operation=OP_BATCH)
        }
        checkpoints = [self.latest_checkpoint(migration_id, p, table_name) for p in sorted(phases)]
        return max((c.rows_processed for c in checkpoints if c is not None), default=0)

    def _last_status(self, migration_id: str, phase: str, table_name: str, operation: str) -> LogStatus | None:
        status: LogStatus | None = None
        for e in self.entries(migration_id=migration_id):
            if self._resets(e, phase, table_name):
                status = LogStatus.ROLLED_BACK
            elif e.operation == operation and e.phase == phase and e.table_name == table_name:
                status = e.status
        return status

    def phase_status(self, migration_id: str, phase: str) -> LogStatus | None:
        return self._last_status(migration_id, phase, "", OP_PHASE)

    def table_status(self, migration_id: str, phase: str, table_name: str) -> LogStatus | None:
        return self._last_status(migration_id, phase, table_name, OP_TABLE)

    def completed_phases(self, migration_id: str, phases: Iterable[str]) -> set[str]:
        return {p for p in phases if self.phase_status(migration_id, p) is LogStatus.COMPLETED}

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
