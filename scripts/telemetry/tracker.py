"""
Suggestion acceptance tracker.

Buffers accepted suggestions and, once each one is old enough for the user's
edits to settle, measures how much of it was changed and records a single
user-modification event.

Lifecycle:
    stopped  --enqueue()/start()-->  running  --shutdown()-->  stopped

The buffer is shared between the thread accepting suggestions and the
thread flushing them. A single lock covers appends and the partition step
of a flush; file reads, auth lookups and emission run on the snapshot of
mature entries after the lock is released.
"""

import sys
import threading
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional

from metrics.calculator import MetricsCalculator
from metrics.config import config
from metrics.state_store import JSONStateStore

from .context import get_credential_start_url, read_location_text, setup_telemetry_id
from .gate import TelemetryGate, get_gate
from .schema import AcceptedSuggestionEntry, LocationRef, USER_MODIFICATION_EVENT, UserModificationEvent
from .user_group import UserGroupClassifier


STOPPED = "stopped"
RUNNING = "running"

UNKNOWN_USER_GROUP = "Unknown"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SuggestionTracker:
    """
    Age-gated queue of accepted suggestions.

    Usage:
        tracker = get_tracker()
        tracker.enqueue(entry)      # on accept
        tracker.flush()             # periodically, or from the built-in timer
    """

    def __init__(
        self,
        gate: Optional[TelemetryGate] = None,
        classifier: Optional[UserGroupClassifier] = None,
        file_resolver: Optional[Callable[[LocationRef], Optional[str]]] = None,
        auth_resolver: Optional[Callable[[], Optional[str]]] = None,
        clock: Optional[Callable[[], datetime]] = None,
        maturity: Optional[timedelta] = None,
        check_interval: Optional[float] = None,
        auto_start_timer: Optional[bool] = None
    ):
        """
        Initialize tracker.

        Args:
            gate: Telemetry gate (defaults to the process-wide gate)
            classifier: User group classifier (built from the state store on
                first use when omitted)
            file_resolver: Reads current text at a location, None if missing
            auth_resolver: Returns the current start URL, None if signed out
            clock: Returns the current aware datetime
            maturity: Minimum age before an entry is evaluated
            check_interval: Seconds between timer-driven flushes
            auto_start_timer: Start the flush timer on the first enqueue
        """
        self.gate = gate or get_gate()
        self.classifier = classifier
        self.file_resolver = file_resolver or read_location_text
        self.auth_resolver = auth_resolver or get_credential_start_url
        self.clock = clock or _utcnow

        if maturity is None:
            maturity = timedelta(minutes=config.get('tracker.maturity_minutes', 5))
        self.maturity = maturity

        if check_interval is None:
            check_interval = config.get('tracker.check_interval_sec', 60)
        self.check_interval = float(check_interval)

        if auto_start_timer is None:
            auto_start_timer = config.get('tracker.auto_start_timer', True)
        self.auto_start_timer = bool(auto_start_timer)

        self._buffer: List[AcceptedSuggestionEntry] = []
        self._lock = threading.Lock()
        self._lifecycle_lock = threading.Lock()
        self._classifier_lock = threading.Lock()
        self._state = STOPPED
        self._timer: Optional[threading.Thread] = None
        self._stop_event: Optional[threading.Event] = None

    @property
    def state(self) -> str:
        return self._state

    @property
    def pending(self) -> int:
        """Number of buffered entries."""
        with self._lock:
            return len(self._buffer)

    def snapshot(self) -> List[AcceptedSuggestionEntry]:
        """Copy of the buffer in queue order."""
        with self._lock:
            return list(self._buffer)

    def enqueue(self, entry: AcceptedSuggestionEntry):
        """
        Buffer an accepted suggestion.

        Suggestions accepted while telemetry is off are dropped for good,
        even if telemetry is turned back on later.
        """
        if not self.gate.is_enabled():
            return

        # Lands either before a shutdown's reset or after a clean restart
        with self._lifecycle_lock:
            with self._lock:
                self._buffer.append(entry)
            if self._state == STOPPED:
                self._start_locked()

    def flush(self) -> int:
        """
        Emit telemetry for every entry past the maturity window.

        Younger entries stay buffered in their original order. Does nothing,
        not even reading the clock, while telemetry is off.

        Returns:
            Number of entries emitted
        """
        if not self.gate.is_enabled():
            return 0

        now = self.clock()
        mature = []
        with self._lock:
            immature = []
            for entry in self._buffer:
                if now - entry.accepted_at >= self.maturity:
                    mature.append(entry)
                else:
                    immature.append(entry)
            self._buffer = immature

        for entry in mature:
            self.emit_telemetry_on_suggestion(entry)

        return len(mature)

    def emit_telemetry_on_suggestion(self, entry: AcceptedSuggestionEntry):
        """
        Measure the user's edits to one suggestion and record the event.

        Missing context never blocks the event: unreadable content counts as
        empty (fully modified), a missing endpoint as "", an unknown group as
        "Unknown".
        """
        try:
            current_text = self._resolve_current_text(entry)
            event = UserModificationEvent.from_entry(
                entry,
                modification_percentage=self.check_diff(entry.original_text, current_text),
                credential_start_url=self._resolve_start_url(),
                user_group=self._resolve_user_group()
            )
            self.gate.emit(USER_MODIFICATION_EVENT, event.to_dict())
        except Exception as e:
            print(f"Warning: Failed to emit modification telemetry for {entry.request_id}: {e}",
                  file=sys.stderr)

    def check_diff(self, text1: str, text2: str) -> float:
        return MetricsCalculator.edit_diff(text1, text2)

    def _resolve_current_text(self, entry: AcceptedSuggestionEntry) -> str:
        try:
            text = self.file_resolver(entry.location)
        except Exception as e:
            print(f"Warning: Could not read {entry.location.file_path}: {e}", file=sys.stderr)
            return ""
        return text or ""

    def _resolve_start_url(self) -> str:
        try:
            return self.auth_resolver() or ""
        except Exception as e:
            print(f"Warning: Could not resolve start URL: {e}", file=sys.stderr)
            return ""

    def _resolve_user_group(self) -> str:
        try:
            with self._classifier_lock:
                if self.classifier is None:
                    store = JSONStateStore(config.get_path('state.path'))
                    self.classifier = UserGroupClassifier(store, setup_telemetry_id(store))
                classifier = self.classifier
            return classifier.current_group().value
        except Exception as e:
            print(f"Warning: Could not resolve user group: {e}", file=sys.stderr)
            return UNKNOWN_USER_GROUP

    def start(self):
        """Mark the tracker running and start the flush timer if enabled."""
        with self._lifecycle_lock:
            self._start_locked()

    def _start_locked(self):
        # Caller holds _lifecycle_lock
        if self._state == RUNNING:
            return
        self._state = RUNNING
        if not self.auto_start_timer or self.check_interval <= 0:
            return

        self._stop_event = threading.Event()
        self._timer = threading.Thread(
            target=self._run_timer,
            args=(self._stop_event,),
            name="suggestion-tracker-flush",
            daemon=True  # Don't block program exit
        )
        self._timer.start()

    def _run_timer(self, stop_event: threading.Event):
        while not stop_event.wait(self.check_interval):
            try:
                self.flush()
            except Exception as e:
                print(f"Warning: Scheduled tracker flush failed: {e}", file=sys.stderr)

    def shutdown(self):
        """Stop the timer and drop all buffered entries. Safe to call repeatedly."""
        with self._lifecycle_lock:
            timer, stop_event = self._timer, self._stop_event
            self._timer = None
            self._stop_event = None
            self._state = STOPPED
            with self._lock:
                self._buffer = []

        if stop_event is not None:
            stop_event.set()
        if timer is not None and timer is not threading.current_thread():
            timer.join(timeout=5.0)


_tracker = None
_tracker_lock = threading.Lock()


def get_tracker() -> SuggestionTracker:
    """
    Get the process-wide tracker, creating it on first use.

    Returns:
        Shared SuggestionTracker instance
    """
    global _tracker
    with _tracker_lock:
        if _tracker is None:
            _tracker = SuggestionTracker()
        return _tracker


def install_tracker(tracker: SuggestionTracker) -> SuggestionTracker:
    """Make tracker the shared instance, shutting down the one it replaces."""
    global _tracker
    with _tracker_lock:
        previous, _tracker = _tracker, tracker
    if previous is not None and previous is not tracker:
        previous.shutdown()
    return tracker


def reset_tracker() -> Optional[SuggestionTracker]:
    """Shut down and drop the shared tracker, returning it."""
    global _tracker
    with _tracker_lock:
        previous, _tracker = _tracker, None
    if previous is not None:
        previous.shutdown()
    return previous
