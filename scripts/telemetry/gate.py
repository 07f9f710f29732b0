"""
Telemetry gate.

Owns the global "telemetry enabled" flag and the act of recording an
event. Every emitter checks the gate; the flag may be flipped from another
thread at any time and is read without locking.
"""

import sys
import threading
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from metrics.config import config
from metrics.jsonl_utils import BatchedJSONLWriter


class TelemetryGate:
    """
    Enabled flag plus event sink.

    Events are written as JSON lines through a BatchedJSONLWriter. The
    writer is created on the first emit so a gate that never records
    anything never touches the filesystem.
    """

    def __init__(
        self,
        enabled: Optional[bool] = None,
        writer=None,
        log_path: Optional[Path] = None
    ):
        """
        Initialize gate.

        Args:
            enabled: Initial flag (defaults to telemetry.enabled)
            writer: Sink with append()/flush() (defaults to a BatchedJSONLWriter)
            log_path: Event log used when no writer is given
        """
        if enabled is None:
            enabled = config.get('telemetry.enabled', True)
        self._enabled = bool(enabled)
        self._writer = writer
        self._log_path = Path(log_path) if log_path else config.get_path('telemetry.log_path')
        self._writer_lock = threading.Lock()

    @property
    def writer(self):
        with self._writer_lock:
            if self._writer is None:
                self._writer = BatchedJSONLWriter(
                    self._log_path,
                    batch_size=config.get('telemetry.batch_size', 10),
                    flush_interval=config.get('telemetry.batch_flush_interval_sec', 5.0)
                )
            return self._writer

    def is_enabled(self) -> bool:
        return self._enabled

    def set_enabled(self, enabled: bool):
        """
        Turn telemetry on or off.

        Turning it off writes out whatever is already buffered, so events
        recorded up to that point are kept.
        """
        self._enabled = bool(enabled)
        if not self._enabled:
            self.flush()

    def emit(self, event_name: str, fields: Dict[str, Any]) -> bool:
        """
        Record a named event.

        Args:
            event_name: Event type
            fields: Event fields

        Returns:
            True if the event was handed to the sink, False if telemetry is off
            or the sink failed
        """
        if not self._enabled:
            return False

        event = {
            "event_id": str(uuid.uuid4()),
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "event_type": event_name,
            **fields
        }

        try:
            self.writer.append(event)
        except Exception as e:
            print(f"Warning: Failed to record telemetry event {event_name}: {e}", file=sys.stderr)
            return False

        return True

    def flush(self):
        """Force buffered events to disk."""
        if self._writer is None:
            return
        try:
            self._writer.flush()
        except Exception as e:
            print(f"Warning: Failed to flush telemetry: {e}", file=sys.stderr)


_gate = None
_gate_lock = threading.Lock()


def get_gate() -> TelemetryGate:
    """
    Get the process-wide telemetry gate.

    Returns:
        TelemetryGate configured from settings
    """
    global _gate
    with _gate_lock:
        if _gate is None:
            _gate = TelemetryGate()
        return _gate


def reset_gate():
    """Flush and drop the process-wide gate; the next get_gate() builds a new one."""
    global _gate
    with _gate_lock:
        gate, _gate = _gate, None
    if gate is not None:
        gate.flush()
