"""
Telemetry package for accepted code suggestions.

Tracks accepted suggestions, waits for the user's edits to settle, and
records how much of each suggestion was modified.
"""

from .schema import (
    USER_MODIFICATION_EVENT,
    TriggerType,
    CompletionType,
    LocationRef,
    AcceptedSuggestionEntry,
    UserModificationEvent
)

from .gate import TelemetryGate, get_gate, reset_gate
from .user_group import USER_GROUP_KEY, UserGroup, UserGroupClassifier
from .tracker import SuggestionTracker, get_tracker, install_tracker, reset_tracker
from .context import (
    read_location_text,
    get_credential_start_url,
    setup_telemetry_id
)
from .activation import (
    activate,
    deactivate,
    handle_telemetry_setting_change,
    handle_telemetry_notice_response,
    has_user_seen_telemetry_notice,
    set_has_user_seen_telemetry_notice
)

__all__ = [
    # Schemas
    'USER_MODIFICATION_EVENT',
    'TriggerType',
    'CompletionType',
    'LocationRef',
    'AcceptedSuggestionEntry',
    'UserModificationEvent',
    # Gate
    'TelemetryGate',
    'get_gate',
    'reset_gate',
    # User groups
    'USER_GROUP_KEY',
    'UserGroup',
    'UserGroupClassifier',
    # Tracker
    'SuggestionTracker',
    'get_tracker',
    'install_tracker',
    'reset_tracker',
    # Context
    'read_location_text',
    'get_credential_start_url',
    'setup_telemetry_id',
    # Activation
    'activate',
    'deactivate',
    'handle_telemetry_setting_change',
    'handle_telemetry_notice_response',
    'has_user_seen_telemetry_notice',
    'set_has_user_seen_telemetry_notice',
]

__version__ = '1.0.0'
