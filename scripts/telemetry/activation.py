"""
Telemetry activation.

Wires the gate, the user-group classifier and the suggestion tracker to the
host's collaborators, reacts to the telemetry setting being toggled, and
tracks whether the user has acknowledged the current telemetry notice.
"""

import sys
import threading
from typing import Callable, Optional, Sequence

from metrics.config import config

from .context import setup_telemetry_id
from .gate import TelemetryGate, get_gate
from .tracker import SuggestionTracker, install_tracker, reset_tracker
from .user_group import UserGroupClassifier


TELEMETRY_NOTICE_VERSION_ACKNOWLEDGED = "telemetryNoticeVersionAck"

# Version 1 let users enable/disable/defer telemetry.
# Version 2 states that metrics are gathered and can be adjusted in settings.
CURRENT_TELEMETRY_NOTICE_VERSION = 2

NOTICE_RESPONSE_VIEW_SETTINGS = "Settings"
NOTICE_RESPONSE_OK = "OK"

MODIFY_SETTING_EVENT = "telemetry_modify_setting"
TELEMETRY_SETTING_ID = "telemetry"

# (message, options) -> chosen option, or None if dismissed
NoticePrompt = Callable[[str, Sequence[str]], Optional[str]]


def has_user_seen_telemetry_notice(store) -> bool:
    return store.get(TELEMETRY_NOTICE_VERSION_ACKNOWLEDGED, 0) >= CURRENT_TELEMETRY_NOTICE_VERSION


def set_has_user_seen_telemetry_notice(store):
    store.set(TELEMETRY_NOTICE_VERSION_ACKNOWLEDGED, CURRENT_TELEMETRY_NOTICE_VERSION)


def telemetry_notice_text() -> str:
    product = config.get('product_name', 'Suggestion Tracker')
    return f"{product} collects anonymous usage metrics to improve the product. You can opt-out in settings."


def handle_telemetry_notice_response(
    response: Optional[str],
    store,
    open_settings: Optional[Callable[[str], None]] = None
):
    """
    Record the user's answer to the telemetry notice.

    A dismissed notice (None) is not an acknowledgement and will be shown
    again next time.

    Args:
        response: Option chosen by the user
        store: Key-value store holding the acknowledgement
        open_settings: Opens the host's settings at a setting id
    """
    try:
        if not response:
            return

        set_has_user_seen_telemetry_notice(store)

        if response == NOTICE_RESPONSE_VIEW_SETTINGS and open_settings is not None:
            open_settings(TELEMETRY_SETTING_ID)
    except Exception as e:
        print(f"Warning: Error while handling telemetry notice response: {e}", file=sys.stderr)


_notice_thread: Optional[threading.Thread] = None


def show_telemetry_notice(
    show_notice: NoticePrompt,
    store,
    open_settings: Optional[Callable[[str], None]] = None
) -> threading.Thread:
    """
    Show the telemetry notice without waiting for the user's answer.

    The prompt runs on a daemon thread and its response is recorded when
    it arrives, so a prompt that blocks never holds up activation.

    Returns:
        The thread running the prompt
    """
    global _notice_thread

    def _prompt():
        try:
            response = show_notice(
                telemetry_notice_text(),
                (NOTICE_RESPONSE_VIEW_SETTINGS, NOTICE_RESPONSE_OK)
            )
        except Exception as e:
            print(f"Warning: Failed to show telemetry notice: {e}", file=sys.stderr)
            return
        handle_telemetry_notice_response(response, store, open_settings)

    thread = threading.Thread(target=_prompt, name="telemetry-notice", daemon=True)
    _notice_thread = thread
    thread.start()
    return thread


def wait_for_telemetry_notice(timeout: Optional[float] = None) -> bool:
    """
    Wait for the most recent notice prompt to be answered.

    Returns:
        True if no prompt is outstanding afterwards
    """
    thread = _notice_thread
    if thread is None:
        return True
    thread.join(timeout)
    return not thread.is_alive()


def handle_telemetry_setting_change(
    gate: TelemetryGate,
    enabled: bool,
    setting_id: str = TELEMETRY_SETTING_ID
):
    """
    Apply a change of the telemetry setting.

    The 'disabled' event is recorded right before telemetry is turned off and
    the 'enabled' event right after it is turned on, so both get through.
    """
    if not enabled:
        gate.emit(MODIFY_SETTING_EVENT, {
            "setting_id": setting_id,
            "setting_state": "false",
            "result": "Succeeded"
        })

    gate.set_enabled(enabled)

    if enabled:
        gate.emit(MODIFY_SETTING_EVENT, {
            "setting_id": setting_id,
            "setting_state": "true",
            "result": "Succeeded"
        })


def activate(
    store,
    *,
    settings_enabled: Optional[bool] = None,
    show_notice: Optional[NoticePrompt] = None,
    open_settings: Optional[Callable[[str], None]] = None,
    file_resolver=None,
    auth_resolver=None,
    gate: Optional[TelemetryGate] = None
) -> Optional[SuggestionTracker]:
    """
    Set up telemetry and install the shared suggestion tracker.

    Telemetry must never keep the host from starting: failures are reported
    and swallowed unless telemetry.raise_on_activation_error is set.

    Args:
        store: Key-value store for client id, user group and notice state
        settings_enabled: Current telemetry setting (defaults to config)
        show_notice: Shows the telemetry notice and returns the chosen option;
            called on a background thread and never waited for
        open_settings: Opens the host's settings at a setting id
        file_resolver: Reads current text at a suggestion location
        auth_resolver: Returns the current start URL
        gate: Telemetry gate (defaults to the process-wide gate)

    Returns:
        The installed tracker, or None if activation failed
    """
    try:
        gate = gate or get_gate()
        if settings_enabled is None:
            settings_enabled = config.is_enabled('telemetry')
        gate.set_enabled(settings_enabled)

        if show_notice is not None and not has_user_seen_telemetry_notice(store):
            show_telemetry_notice(show_notice, store, open_settings)

        client_id = setup_telemetry_id(store)
        tracker = SuggestionTracker(
            gate=gate,
            classifier=UserGroupClassifier(store, client_id),
            file_resolver=file_resolver,
            auth_resolver=auth_resolver
        )
        install_tracker(tracker)
        tracker.start()
        return tracker
    except Exception as e:
        if config.get('telemetry.raise_on_activation_error', False):
            raise
        print(f"Warning: telemetry: failed to activate: {e}", file=sys.stderr)
        return None


def deactivate():
    """Shut down the shared tracker and write out its pending events."""
    tracker = reset_tracker()
    gate = tracker.gate if tracker is not None else get_gate()
    gate.flush()
