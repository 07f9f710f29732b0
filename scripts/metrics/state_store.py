"""
Key-value stores for state that must survive across sessions.

Holds the telemetry client id, the user-group assignment and the telemetry
notice acknowledgement. Both stores expose the same two calls:

    store.get(key, default)
    store.set(key, value)     # value None removes the key
"""

import json
import os
import sys
import threading
from pathlib import Path
from typing import Any, Dict
import fcntl


class MemoryStateStore:
    """Process-local store, used for tests and ephemeral sessions."""

    def __init__(self, initial: Dict[str, Any] = None):
        self._data = dict(initial or {})
        self._lock = threading.Lock()

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            return self._data.get(key, default)

    def set(self, key: str, value: Any):
        with self._lock:
            if value is None:
                self._data.pop(key, None)
            else:
                self._data[key] = value

    def keys(self):
        with self._lock:
            return list(self._data)


class JSONStateStore:
    """
    Store backed by a single JSON object on disk.

    Reads take a shared lock, writes an exclusive one on a sidecar lock
    file, and replace the data file atomically so a crash mid-write never
    leaves a truncated document behind.
    """

    def __init__(self, path: Path):
        """
        Initialize store.

        Args:
            path: Path to JSON file (created on first write)
        """
        self.path = Path(path).expanduser()
        self.lock_path = self.path.with_name(self.path.name + ".lock")
        self.path.parent.mkdir(parents=True, exist_ok=True)

    def _read(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, 'r') as f:
                data = json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            print(f"Warning: Ignoring unreadable state file {self.path}: {e}",
                  file=sys.stderr)
            return {}
        return data if isinstance(data, dict) else {}

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get a stored value.

        Args:
            key: Key to look up
            default: Value returned when the key is absent

        Returns:
            Stored value or default
        """
        with open(self.lock_path, 'a') as lock:
            try:
                fcntl.flock(lock.fileno(), fcntl.LOCK_SH)
                return self._read().get(key, default)
            finally:
                fcntl.flock(lock.fileno(), fcntl.LOCK_UN)

    def set(self, key: str, value: Any):
        """
        Store a value, or remove the key when value is None.

        Args:
            key: Key to write
            value: JSON-serializable value
        """
        with open(self.lock_path, 'a') as lock:
            try:
                fcntl.flock(lock.fileno(), fcntl.LOCK_EX)
                data = self._read()
                if value is None:
                    data.pop(key, None)
                else:
                    data[key] = value

                tmp_path = self.path.with_name(self.path.name + ".tmp")
                with open(tmp_path, 'w') as f:
                    json.dump(data, f, indent=2, default=str)
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(tmp_path, self.path)
            finally:
                fcntl.flock(lock.fileno(), fcntl.LOCK_UN)

    def keys(self):
        return list(self.get_all())

    def get_all(self) -> Dict[str, Any]:
        with open(self.lock_path, 'a') as lock:
            try:
                fcntl.flock(lock.fileno(), fcntl.LOCK_SH)
                return self._read()
            finally:
                fcntl.flock(lock.fileno(), fcntl.LOCK_UN)
