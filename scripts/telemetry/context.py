"""
Context utilities for telemetry.

Resolves the pieces of context the tracker reads at flush time: current
file content at a suggestion's location, the signed-in endpoint, and the
persistent telemetry client id.
"""

import os
import uuid
from pathlib import Path
from typing import Optional

from .schema import LocationRef


TELEMETRY_CLIENT_ID_KEY = "telemetryClientId"
START_URL_ENV = "SUGGESTION_TRACKER_START_URL"


def read_location_text(location: LocationRef) -> Optional[str]:
    """
    Read the text currently stored at a location.

    Args:
        location: File path plus character offsets

    Returns:
        Text in the offset range, or None if the file is gone or the
        range no longer fits inside it
    """
    path = Path(location.file_path)
    if not path.is_file():
        return None

    text = path.read_text(encoding='utf-8', errors='replace')
    if location.start < 0 or location.start > location.end or location.end > len(text):
        return None

    return text[location.start:location.end]


def get_credential_start_url() -> Optional[str]:
    """
    Get the start URL of the current connection.

    Returns:
        Start URL from environment, or None when not signed in
    """
    return os.environ.get(START_URL_ENV) or None


def setup_telemetry_id(store) -> str:
    """
    Get the telemetry client id, creating and persisting one if needed.

    Args:
        store: Key-value store with get/set

    Returns:
        Client id (UUID string)
    """
    client_id = store.get(TELEMETRY_CLIENT_ID_KEY)
    if not client_id:
        client_id = str(uuid.uuid4())
        store.set(TELEMETRY_CLIENT_ID_KEY, client_id)
    return client_id
