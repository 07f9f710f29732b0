"""
Data types for suggestion telemetry.

Defines the accepted-suggestion record buffered by the tracker and the
user-modification event it produces.
"""

from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Union


USER_MODIFICATION_EVENT = "suggestion_user_modification"


class TriggerType(str, Enum):
    """How the suggestion was invoked."""
    ON_DEMAND = "OnDemand"
    AUTO_TRIGGER = "AutoTrigger"


class CompletionType(str, Enum):
    """Shape of the suggestion."""
    LINE = "Line"
    BLOCK = "Block"


@dataclass(frozen=True)
class LocationRef:
    """Character offset range inside a file."""
    file_path: Union[str, Path]
    start: int
    end: int


@dataclass(frozen=True)
class AcceptedSuggestionEntry:
    """One accepted suggestion, waiting to be evaluated."""
    accepted_at: datetime
    request_id: str
    session_id: str
    trigger_type: TriggerType
    suggestion_index: int
    completion_type: CompletionType
    language: str
    original_text: str
    location: LocationRef

    def __post_init__(self):
        if self.suggestion_index < 0:
            raise ValueError(f"suggestion_index must be >= 0, got {self.suggestion_index}")
        if self.accepted_at.tzinfo is None:
            # Naive timestamps are taken as UTC
            object.__setattr__(self, "accepted_at", self.accepted_at.replace(tzinfo=timezone.utc))

    @classmethod
    def create(
        cls,
        request_id: str,
        session_id: str,
        trigger_type: TriggerType,
        suggestion_index: int,
        completion_type: CompletionType,
        language: str,
        original_text: str,
        location: LocationRef
    ) -> "AcceptedSuggestionEntry":
        """Create a new entry accepted now."""
        return cls(
            accepted_at=datetime.now(timezone.utc),
            request_id=request_id,
            session_id=session_id,
            trigger_type=TriggerType(trigger_type),
            suggestion_index=suggestion_index,
            completion_type=CompletionType(completion_type),
            language=language,
            original_text=original_text,
            location=location
        )


@dataclass
class UserModificationEvent:
    """How much of an accepted suggestion the user changed."""
    request_id: str
    session_id: str
    trigger_type: str
    suggestion_index: int
    modification_percentage: float
    completion_type: str
    language: str
    credential_start_url: str = ""
    user_group: str = "Unknown"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return asdict(self)

    @classmethod
    def from_entry(
        cls,
        entry: AcceptedSuggestionEntry,
        modification_percentage: float,
        credential_start_url: str,
        user_group: str
    ) -> "UserModificationEvent":
        return cls(
            request_id=entry.request_id,
            session_id=entry.session_id,
            trigger_type=TriggerType(entry.trigger_type).value,
            suggestion_index=entry.suggestion_index,
            modification_percentage=modification_percentage,
            completion_type=CompletionType(entry.completion_type).value,
            language=entry.language,
            credential_start_url=credential_start_url,
            user_group=user_group
        )
