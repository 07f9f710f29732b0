"""
JSONL utilities for the telemetry event log.

Provides JSONL reading with date filtering, appends guarded by file
locking, and a batched writer that is safe to share between threads.
"""

import json
import sys
import threading
import time
from pathlib import Path
from typing import List, Callable, Optional
from datetime import datetime, timezone, timedelta
import fcntl


def parse_timestamp(timestamp_str: str) -> Optional[datetime]:
    """Parse an ISO timestamp, treating naive values as UTC."""
    try:
        timestamp = datetime.fromisoformat(timestamp_str.replace('Z', '+00:00'))
    except (ValueError, AttributeError):
        return None
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=timezone.utc)
    return timestamp


class JSONLReader:
    """Read and filter JSONL logs with error handling."""

    @staticmethod
    def read_log(
        path: Path,
        days: Optional[int] = None,
        filter_fn: Optional[Callable[[dict], bool]] = None
    ) -> List[dict]:
        """
        Read JSONL with optional filtering.

        Args:
            path: Path to JSONL file
            days: Only return entries from last N days
            filter_fn: Optional filter function (entry) -> bool

        Returns:
            List of dict entries
        """
        path = Path(path)
        if not path.exists():
            return []

        cutoff = None
        if days:
            cutoff = datetime.now(timezone.utc) - timedelta(days=days)

        entries = []
        with open(path, 'r') as f:
            for line_num, line in enumerate(f, 1):
                if not line.strip():
                    continue
                try:
                    entry = json.loads(line)
                except json.JSONDecodeError as e:
                    print(f"Warning: Malformed JSON at {path}:{line_num}: {e}",
                          file=sys.stderr)
                    continue

                if cutoff:
                    timestamp = parse_timestamp(entry.get("timestamp", ""))
                    if timestamp is None or timestamp < cutoff:
                        continue

                if filter_fn and not filter_fn(entry):
                    continue

                entries.append(entry)

        return entries


class JSONLWriter:
    """JSONL appender using an exclusive file lock per write."""

    def __init__(self, path: Path):
        """
        Initialize writer.

        Args:
            path: Path to JSONL file
        """
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)

    def append(self, data: dict):
        """Append a single entry."""
        self.append_batch([data])

    def append_batch(self, data_list: List[dict]):
        """
        Atomically append multiple entries.

        Args:
            data_list: List of dictionaries to append
        """
        if not data_list:
            return

        with open(self.path, 'a') as f:
            try:
                fcntl.flock(f.fileno(), fcntl.LOCK_EX)
                for data in data_list:
                    f.write(json.dumps(data, ensure_ascii=False, default=str) + '\n')
                f.flush()
            finally:
                fcntl.flock(f.fileno(), fcntl.LOCK_UN)


class BatchedJSONLWriter:
    """
    Buffered JSONL writer with automatic batching.

    Accumulates entries in memory and flushes when:
    - Buffer reaches batch_size
    - Time since last flush exceeds flush_interval
    - flush() is called explicitly

    Appends may come from the tracker's flush thread and from callers at the
    same time, so the buffer is swapped out under a lock.
    """

    def __init__(
        self,
        path: Path,
        batch_size: int = 10,
        flush_interval: float = 5.0
    ):
        """
        Initialize batched writer.

        Args:
            path: Path to JSONL file
            batch_size: Flush when buffer reaches this size
            flush_interval: Flush after this many seconds (0 = disable)
        """
        self.path = Path(path)
        self.batch_size = batch_size
        self.flush_interval = flush_interval
        self.buffer = []
        self.last_flush = time.monotonic()
        self.writer = JSONLWriter(path)
        self._lock = threading.Lock()

    @property
    def pending(self) -> int:
        """Number of entries not yet written."""
        with self._lock:
            return len(self.buffer)

    def append(self, data: dict):
        """
        Add entry to buffer (may trigger flush).

        Args:
            data: Dictionary to append
        """
        with self._lock:
            self.buffer.append(data)
            should_flush = (
                len(self.buffer) >= self.batch_size or
                (self.flush_interval > 0 and
                 (time.monotonic() - self.last_flush) > self.flush_interval)
            )

        if should_flush:
            self.flush()

    def flush(self):
        """Force flush buffered entries to disk."""
        with self._lock:
            if not self.buffer:
                return
            batch, self.buffer = self.buffer, []
            self.last_flush = time.monotonic()

        try:
            self.writer.append_batch(batch)
        except Exception as e:
            print(f"Warning: Failed to flush {len(batch)} events to {self.path}: {e}",
                  file=sys.stderr)

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit - flush remaining buffer."""
        self.flush()
