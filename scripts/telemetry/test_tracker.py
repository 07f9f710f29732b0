#!/usr/bin/env python3
"""
Tests for the suggestion tracker.

Tests queueing, age-gated flushing, telemetry gating, emission of the
user-modification event, concurrent use and the singleton lifecycle.

Run with: python3 -m pytest scripts/telemetry/test_tracker.py -v
"""

import tempfile
import threading
import time
import unittest
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import Mock, patch

from metrics.state_store import MemoryStateStore
from telemetry.gate import TelemetryGate
from telemetry.schema import (
    USER_MODIFICATION_EVENT,
    AcceptedSuggestionEntry,
    CompletionType,
    LocationRef,
    TriggerType,
)
from telemetry.tracker import (
    RUNNING,
    STOPPED,
    SuggestionTracker,
    get_tracker,
    install_tracker,
    reset_tracker,
)
from telemetry.user_group import USER_GROUP_KEY, UserGroup, UserGroupClassifier


NOW = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


class RecordingWriter:
    """Sink that keeps events in memory."""

    def __init__(self):
        self.events = []
        self._lock = threading.Lock()

    def append(self, data):
        with self._lock:
            self.events.append(data)

    def flush(self):
        pass


def create_entry(accepted_at=None, request_id="test", location=None, original_text="public int x = 0;"):
    return AcceptedSuggestionEntry(
        accepted_at=accepted_at or NOW,
        request_id=request_id,
        session_id="test",
        trigger_type=TriggerType.ON_DEMAND,
        suggestion_index=1,
        completion_type=CompletionType.LINE,
        language="java",
        original_text=original_text,
        location=location or LocationRef("/nonexistent/Test.java", 0, 17)
    )


class TrackerTestCase(unittest.TestCase):
    """Tracker wired to in-memory collaborators and a controllable clock."""

    def setUp(self):
        self.now = NOW
        self.writer = RecordingWriter()
        self.gate = TelemetryGate(enabled=True, writer=self.writer)
        self.store = MemoryStateStore()
        self.classifier = UserGroupClassifier(self.store, client_id="client", version="1.0.0")
        self.file_resolver = Mock(return_value=None)
        self.auth_resolver = Mock(return_value="")
        self.tracker = SuggestionTracker(
            gate=self.gate,
            classifier=self.classifier,
            file_resolver=self.file_resolver,
            auth_resolver=self.auth_resolver,
            clock=lambda: self.now,
            auto_start_timer=False
        )

    def tearDown(self):
        self.tracker.shutdown()

    def emitted(self):
        return [e for e in self.writer.events if e["event_type"] == USER_MODIFICATION_EVENT]


class TestEnqueue(TrackerTestCase):
    """Test buffering of accepted suggestions."""

    def test_puts_suggestion_in_queue(self):
        suggestion = create_entry()
        self.tracker.enqueue(suggestion)

        self.assertEqual(self.tracker.snapshot(), [suggestion])
        self.assertEqual(self.tracker.state, RUNNING)

    def test_not_enqueued_when_telemetry_disabled(self):
        self.gate.set_enabled(False)
        suggestion = create_entry(accepted_at=NOW - timedelta(minutes=10))
        self.tracker.enqueue(suggestion)

        self.assertEqual(self.tracker.pending, 0)
        self.assertEqual(self.tracker.state, STOPPED)

        # Re-enabling later does not bring it back
        self.gate.set_enabled(True)
        self.assertEqual(self.tracker.flush(), 0)
        self.assertEqual(self.emitted(), [])

    def test_preserves_order(self):
        entries = [create_entry(request_id=str(i)) for i in range(5)]
        for entry in entries:
            self.tracker.enqueue(entry)

        self.assertEqual(self.tracker.snapshot(), entries)


class TestFlush(TrackerTestCase):
    """Test age-gated flushing."""

    def test_emits_mature_and_keeps_young(self):
        suggestion1 = create_entry(accepted_at=NOW, request_id="young")
        suggestion2 = create_entry(accepted_at=NOW - timedelta(minutes=6), request_id="old")
        self.tracker.enqueue(suggestion1)
        self.tracker.enqueue(suggestion2)

        with patch.object(self.tracker, "emit_telemetry_on_suggestion") as emit_spy:
            self.assertEqual(self.tracker.flush(), 1)

        emit_spy.assert_called_once_with(suggestion2)
        self.assertEqual(self.tracker.snapshot(), [suggestion1])

    def test_young_entry_emitted_on_later_pass(self):
        self.tracker.enqueue(create_entry(accepted_at=NOW, request_id="young"))
        self.tracker.enqueue(create_entry(accepted_at=NOW - timedelta(minutes=6), request_id="old"))

        self.tracker.flush()
        self.assertEqual([e["request_id"] for e in self.emitted()], ["old"])

        self.now = NOW + timedelta(minutes=5)
        self.assertEqual(self.tracker.flush(), 1)
        self.assertEqual([e["request_id"] for e in self.emitted()], ["old", "young"])
        self.assertEqual(self.tracker.pending, 0)

    def test_exactly_at_threshold_is_mature(self):
        self.tracker.enqueue(create_entry(accepted_at=NOW - timedelta(minutes=5)))
        self.assertEqual(self.tracker.flush(), 1)

    def test_retained_entries_keep_order(self):
        young = [create_entry(accepted_at=NOW - timedelta(minutes=1), request_id=f"y{i}") for i in range(3)]
        old = create_entry(accepted_at=NOW - timedelta(minutes=9), request_id="old")
        self.tracker.enqueue(young[0])
        self.tracker.enqueue(old)
        self.tracker.enqueue(young[1])
        self.tracker.enqueue(young[2])

        self.tracker.flush()
        self.assertEqual(self.tracker.snapshot(), young)

    def test_skips_when_telemetry_disabled(self):
        self.tracker.enqueue(create_entry(accepted_at=NOW - timedelta(minutes=30)))
        self.gate.set_enabled(False)
        clock = Mock(return_value=NOW)
        self.tracker.clock = clock

        self.assertEqual(self.tracker.flush(), 0)

        clock.assert_not_called()
        self.assertEqual(self.emitted(), [])
        self.assertEqual(self.tracker.pending, 1)

    def test_entries_emitted_once(self):
        self.tracker.enqueue(create_entry(accepted_at=NOW - timedelta(minutes=6)))
        self.tracker.flush()
        self.tracker.flush()
        self.assertEqual(len(self.emitted()), 1)

    def test_custom_maturity(self):
        self.tracker.maturity = timedelta(seconds=30)
        self.tracker.enqueue(create_entry(accepted_at=NOW - timedelta(seconds=31)))
        self.assertEqual(self.tracker.flush(), 1)


class TestEmitTelemetryOnSuggestion(TrackerTestCase):
    """Test the user-modification event."""

    def setUp(self):
        super().setUp()
        self.classifier.reset()

    def tearDown(self):
        self.classifier.reset()
        super().tearDown()

    def test_records_user_modification_event(self):
        self.store.set(USER_GROUP_KEY, {"group": UserGroup.CROSS_FILE.value, "version": "1.0.0"})
        self.auth_resolver.return_value = "testStartUrl"

        self.tracker.emit_telemetry_on_suggestion(create_entry())

        events = self.emitted()
        self.assertEqual(len(events), 1)
        event = events[0]
        expected = {
            "request_id": "test",
            "session_id": "test",
            "trigger_type": "OnDemand",
            "suggestion_index": 1,
            "modification_percentage": 1.0,
            "completion_type": "Line",
            "language": "java",
            "credential_start_url": "testStartUrl",
            "user_group": "CrossFile",
        }
        for key, value in expected.items():
            self.assertEqual(event[key], value, key)
        self.assertIn("event_id", event)
        self.assertIn("timestamp", event)

    def test_measures_edits_against_current_text(self):
        self.file_resolver.return_value = "abccd"

        self.tracker.emit_telemetry_on_suggestion(create_entry(original_text="aabcd"))

        self.assertEqual(self.emitted()[0]["modification_percentage"], 0.4)
        self.file_resolver.assert_called_once_with(LocationRef("/nonexistent/Test.java", 0, 17))

    def test_unchanged_suggestion(self):
        self.file_resolver.return_value = "public int x = 0;"
        self.tracker.emit_telemetry_on_suggestion(create_entry())
        self.assertEqual(self.emitted()[0]["modification_percentage"], 0.0)

    def test_reads_file_content(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            source = Path(tmpdir) / "Test.java"
            source.write_text("class A {\n    public int y = 0;\n}\n")
            tracker = SuggestionTracker(
                gate=self.gate,
                classifier=self.classifier,
                auth_resolver=self.auth_resolver,
                clock=lambda: self.now,
                auto_start_timer=False
            )
            entry = create_entry(location=LocationRef(source, 14, 31))

            tracker.emit_telemetry_on_suggestion(entry)

        self.assertAlmostEqual(self.emitted()[0]["modification_percentage"], 1 / 17)

    def test_collaborator_failures_use_defaults(self):
        self.file_resolver.side_effect = OSError("file deleted")
        self.auth_resolver.side_effect = RuntimeError("not connected")
        broken_classifier = Mock()
        broken_classifier.current_group.side_effect = KeyError("group")
        self.tracker.classifier = broken_classifier

        self.tracker.emit_telemetry_on_suggestion(create_entry())

        event = self.emitted()[0]
        self.assertEqual(event["modification_percentage"], 1.0)
        self.assertEqual(event["credential_start_url"], "")
        self.assertEqual(event["user_group"], "Unknown")

    def test_never_raises_when_gate_fails(self):
        self.tracker.gate = Mock()
        self.tracker.gate.emit.side_effect = RuntimeError("sink exploded")

        self.tracker.emit_telemetry_on_suggestion(create_entry())

    def test_no_event_while_disabled(self):
        self.gate.set_enabled(False)
        self.tracker.emit_telemetry_on_suggestion(create_entry())
        self.assertEqual(self.emitted(), [])

    def test_check_diff(self):
        self.assertEqual(self.tracker.check_diff("", "aabcd"), 1.0)
        self.assertEqual(self.tracker.check_diff("abbbacd", ""), 1.0)
        self.assertEqual(self.tracker.check_diff("abccd", "aabcd"), 0.4)


class TestConcurrency(TrackerTestCase):
    """Test concurrent producers and flushers."""

    def test_no_entry_lost_or_duplicated(self):
        old = NOW - timedelta(minutes=10)
        producers_done = threading.Event()

        def produce(prefix):
            for i in range(200):
                self.tracker.enqueue(create_entry(accepted_at=old, request_id=f"{prefix}-{i}"))

        def consume():
            while not producers_done.is_set():
                self.tracker.flush()

        producers = [threading.Thread(target=produce, args=(p,)) for p in "abcd"]
        consumers = [threading.Thread(target=consume) for _ in range(2)]
        for t in consumers + producers:
            t.start()
        for t in producers:
            t.join()
        producers_done.set()
        for t in consumers:
            t.join()
        self.tracker.flush()

        request_ids = [e["request_id"] for e in self.emitted()]
        self.assertEqual(len(request_ids), 800)
        self.assertEqual(len(set(request_ids)), 800)
        self.assertEqual(self.tracker.pending, 0)

    def test_toggle_during_flush(self):
        old = NOW - timedelta(minutes=10)
        for i in range(50):
            self.tracker.enqueue(create_entry(accepted_at=old, request_id=str(i)))

        toggler = threading.Thread(
            target=lambda: [self.gate.set_enabled(i % 2 == 0) for i in range(200)]
        )
        toggler.start()
        for _ in range(20):
            self.tracker.flush()
        toggler.join()

        self.gate.set_enabled(True)
        self.tracker.flush()
        request_ids = [e["request_id"] for e in self.emitted()]
        # Entries popped while disabled mid-pass are dropped by the gate, never duplicated
        self.assertEqual(len(request_ids), len(set(request_ids)))
        self.assertEqual(self.tracker.pending, 0)


class TestLifecycle(TrackerTestCase):
    """Test start, shutdown and the shared instance."""

    def setUp(self):
        super().setUp()
        reset_tracker()

    def tearDown(self):
        reset_tracker()
        super().tearDown()

    def test_shutdown_clears_buffer(self):
        self.tracker.enqueue(create_entry())
        self.tracker.shutdown()

        self.assertEqual(self.tracker.pending, 0)
        self.assertEqual(self.tracker.state, STOPPED)

    def test_shutdown_is_idempotent(self):
        self.tracker.shutdown()
        self.tracker.shutdown()
        self.assertEqual(self.tracker.state, STOPPED)

    def test_get_tracker_returns_single_instance(self):
        with patch("telemetry.tracker.get_gate", return_value=self.gate):
            self.assertIs(get_tracker(), get_tracker())

    def test_shutdown_then_get_tracker_is_empty(self):
        install_tracker(self.tracker)
        get_tracker().enqueue(create_entry())
        get_tracker().shutdown()

        tracker = get_tracker()
        self.assertEqual(tracker.pending, 0)
        self.assertEqual(tracker.state, STOPPED)
        self.assertEqual(tracker.flush(), 0)

    def test_install_replaces_and_shuts_down_previous(self):
        install_tracker(self.tracker)
        self.tracker.enqueue(create_entry())

        replacement = SuggestionTracker(gate=self.gate, auto_start_timer=False)
        install_tracker(replacement)

        self.assertIs(get_tracker(), replacement)
        self.assertEqual(self.tracker.pending, 0)
        self.assertEqual(self.tracker.state, STOPPED)

    def test_timer_flushes_and_stops(self):
        tracker = SuggestionTracker(
            gate=self.gate,
            classifier=self.classifier,
            file_resolver=self.file_resolver,
            auth_resolver=self.auth_resolver,
            clock=lambda: NOW + timedelta(hours=1),
            check_interval=0.02,
            auto_start_timer=True
        )
        tracker.enqueue(create_entry())
        timer = tracker._timer
        self.assertIsNotNone(timer)

        deadline = time.monotonic() + 5
        while not self.emitted() and time.monotonic() < deadline:
            time.sleep(0.01)
        self.assertEqual(len(self.emitted()), 1)

        tracker.shutdown()
        self.assertFalse(timer.is_alive())
        self.assertEqual(tracker.state, STOPPED)

    def test_repeated_cycles_do_not_leak_timers(self):
        tracker = SuggestionTracker(gate=self.gate, check_interval=60, auto_start_timer=True)
        timers = []
        for _ in range(5):
            tracker.enqueue(create_entry())
            timers.append(tracker._timer)
            tracker.shutdown()

        self.assertEqual(len(set(map(id, timers))), 5)
        self.assertTrue(all(not t.is_alive() for t in timers))
        self.assertEqual(tracker.pending, 0)

    def test_enqueue_during_shutdown_is_kept_by_a_fresh_timer(self):
        tracker = SuggestionTracker(gate=self.gate, check_interval=60, auto_start_timer=True)
        tracker.enqueue(create_entry(request_id="dropped"))
        old_timer = tracker._timer
        stop_event = tracker._stop_event
        original_set = stop_event.set

        def set_after_enqueue():
            # Accept lands after the buffer reset but before the old timer stops
            tracker.enqueue(create_entry(request_id="raced"))
            original_set()

        stop_event.set = set_after_enqueue
        tracker.shutdown()

        self.assertFalse(old_timer.is_alive())
        self.assertEqual([e.request_id for e in tracker.snapshot()], ["raced"])
        self.assertEqual(tracker.state, RUNNING)
        self.assertIsNot(tracker._timer, old_timer)
        self.assertTrue(tracker._timer.is_alive())

        new_timer = tracker._timer
        tracker.shutdown()
        self.assertFalse(new_timer.is_alive())
        self.assertEqual(tracker.pending, 0)
        self.assertEqual(tracker.state, STOPPED)
        self.assertIsNone(tracker._timer)

    def test_concurrent_enqueue_and_shutdown_leave_consistent_state(self):
        tracker = SuggestionTracker(gate=self.gate, check_interval=60, auto_start_timer=True)
        timers = []

        def produce():
            for i in range(100):
                tracker.enqueue(create_entry(request_id=str(i)))
                timers.append(tracker._timer)

        producer = threading.Thread(target=produce)
        producer.start()
        for _ in range(100):
            tracker.shutdown()
        producer.join()

        if tracker.pending:
            self.assertEqual(tracker.state, RUNNING)
            self.assertTrue(tracker._timer.is_alive())
        tracker.shutdown()
        self.assertTrue(all(not t.is_alive() for t in timers if t is not None))
        self.assertEqual(tracker.pending, 0)


class TestUserGroupResolution(TrackerTestCase):
    """Test lazy construction of the classifier."""

    def test_classifier_built_once_under_concurrent_flushes(self):
        self.tracker.classifier = None
        built = []

        def build_classifier(store, client_id):
            time.sleep(0.02)
            classifier = Mock()
            classifier.current_group.return_value = UserGroup.CONTROL
            built.append(classifier)
            return classifier

        barrier = threading.Barrier(8)
        groups = []

        def resolve():
            barrier.wait()
            groups.append(self.tracker._resolve_user_group())

        with patch("telemetry.tracker.JSONStateStore", return_value=self.store), \
                patch("telemetry.tracker.setup_telemetry_id", return_value="client"), \
                patch("telemetry.tracker.UserGroupClassifier", side_effect=build_classifier):
            threads = [threading.Thread(target=resolve) for _ in range(8)]
            for t in threads:
                t.start()
            for t in threads:
                t.join()

        self.assertEqual(len(built), 1)
        self.assertIs(self.tracker.classifier, built[0])
        self.assertEqual(groups, [UserGroup.CONTROL.value] * 8)

    def test_classifier_failure_resolves_unknown(self):
        self.tracker.classifier = None
        with patch("telemetry.tracker.JSONStateStore", side_effect=OSError("no state dir")):
            self.assertEqual(self.tracker._resolve_user_group(), "Unknown")


if __name__ == "__main__":
    unittest.main()
