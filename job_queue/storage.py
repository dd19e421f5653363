"""
QueueStorage: on-disk queue logs and the saved-queue snapshot.

Data layout:
  {queue_dir}/
    queue1.log, queue2.log, ...   finished items, one JSON array per flush
    saved.queue                   never-started items, consumed on load

Writes go through a temp file and a rename. Log files are never
overwritten: each flush takes the first unused number starting at 1.
"""
from __future__ import annotations

import json
import structlog
from pathlib import Path
from typing import Any, Optional

from models.schemas import QueueLogEntry, SavedQueueEntry

logger = structlog.get_logger()

SAVED_QUEUE_FILE = "saved.queue"


class QueueStorage:
    def __init__(self, queue_dir: str | Path = "queue"):
        self._queue_dir = Path(queue_dir)

    @property
    def queue_dir(self) -> Path:
        return self._queue_dir

    @property
    def saved_queue_path(self) -> Path:
        return self._queue_dir / SAVED_QUEUE_FILE

    def _write_json(self, path: Path, data: Any) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_suffix(path.suffix + ".tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, default=str, ensure_ascii=False)
        tmp_path.replace(path)

    # ── Queue logs ────────────────────────────────────────

    def next_log_path(self) -> Path:
        seq = 1
        while True:
            path = self._queue_dir / f"queue{seq}.log"
            if not path.exists():
                return path
            seq += 1

    def write_logs(self, entries: list[QueueLogEntry]) -> Optional[Path]:
        """Write entries to a fresh log file. Nothing is written for an empty list."""
        if not entries:
            return None
        path = self.next_log_path()
        self._write_json(path, [e.to_report() for e in entries])
        logger.info("queue_logs_saved", path=str(path), count=len(entries))
        return path

    def log_files(self) -> list[Path]:
        if not self._queue_dir.exists():
            return []
        files = [p for p in self._queue_dir.glob("queue*.log") if p.stem[5:].isdigit()]
        return sorted(files, key=lambda p: int(p.stem[5:]))

    # ── Saved queue ───────────────────────────────────────

    def write_saved_queue(self, entries: list[SavedQueueEntry]) -> Optional[Path]:
        path = self.saved_queue_path
        if not entries:
            return None
        self._write_json(path, [e.model_dump() for e in entries])
        logger.info("queue_snapshot_saved", path=str(path), count=len(entries))
        return path

    def read_saved_queue(self) -> list[SavedQueueEntry]:
        """Decode the snapshot. Undecodable entries are logged and skipped."""
        path = self.saved_queue_path
        if not path.exists():
            return []
        with open(path, "r", encoding="utf-8") as f:
            raw = json.load(f)
        entries: list[SavedQueueEntry] = []
        for data in raw if isinstance(raw, list) else []:
            try:
                entries.append(SavedQueueEntry.model_validate(data))
            except Exception as e:
                logger.warning("queue_snapshot_entry_invalid", entry=data, error=str(e))
        return entries

    def remove_saved_queue(self) -> None:
        self.saved_queue_path.unlink(missing_ok=True)
