"""
Experiment group assignment.

Each installation is placed in one group, derived from its telemetry client
id and the installed version and kept in the state store. A new version
gets a fresh assignment; the same version always reads back the stored one.
"""

import hashlib
from enum import Enum
from typing import Optional

from metrics.config import config


USER_GROUP_KEY = "suggestionUserGroup"


class UserGroup(str, Enum):
    CONTROL = "Control"
    CROSS_FILE = "CrossFile"
    CLASSIFIER = "Classifier"
    RIGHT_CONTEXT = "RightContext"


class UserGroupClassifier:
    """Reads, and on first use assigns, the current user's group."""

    def __init__(self, store, client_id: str, version: Optional[str] = None):
        """
        Args:
            store: Key-value store with get/set
            client_id: Stable identity of this installation
            version: Installed version (defaults to extension_version)
        """
        self.store = store
        self.client_id = client_id
        self.version = version or config.get('extension_version', '0.0.0')
        self._group = None

    def current_group(self) -> UserGroup:
        if self._group is None:
            self._group = self._load_or_assign()
        return self._group

    def reset(self):
        """Forget the assignment so the next read computes a new one."""
        self._group = None
        self.store.set(USER_GROUP_KEY, None)

    def _load_or_assign(self) -> UserGroup:
        stored = self.store.get(USER_GROUP_KEY)
        if isinstance(stored, dict) and stored.get('version') == self.version:
            try:
                return UserGroup(stored.get('group'))
            except ValueError:
                pass  # unknown group name, reassign

        group = self._assign()
        self.store.set(USER_GROUP_KEY, {'group': group.value, 'version': self.version})
        return group

    def _assign(self) -> UserGroup:
        groups = list(UserGroup)
        digest = hashlib.sha256(f"{self.client_id}:{self.version}".encode()).hexdigest()
        return groups[int(digest[:8], 16) % len(groups)]
