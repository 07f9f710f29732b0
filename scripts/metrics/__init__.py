"""
Shared utilities for the suggestion tracker.

This package provides common utilities used across the telemetry components:
- calculator: Edit distance and metric calculations
- jsonl_utils: JSONL event log reading/writing with locking
- state_store: Persisted key-value state
- config: Unified configuration management
"""

from .jsonl_utils import JSONLReader, JSONLWriter, BatchedJSONLWriter
from .calculator import MetricsCalculator
from .state_store import MemoryStateStore, JSONStateStore
from .config import TrackerConfig, config

__all__ = [
    'JSONLReader',
    'JSONLWriter',
    'BatchedJSONLWriter',
    'MetricsCalculator',
    'MemoryStateStore',
    'JSONStateStore',
    'TrackerConfig',
    'config',
]

__version__ = '1.0.0'
