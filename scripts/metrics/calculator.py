"""
Metric calculation utilities.

Provides common metric calculations used across the tracker:
- Edit distance and modification ratio between suggestion texts
- Score statistics (mean, median, percentiles)
- Counts and averages over event fields
"""

import numpy as np
from typing import List, Dict
from collections import Counter


class MetricsCalculator:
    """Shared metric calculation utilities."""

    @staticmethod
    def edit_distance(text1: str, text2: str) -> int:
        """
        Calculate the Levenshtein distance between two strings.

        Unit cost for insertion, deletion and substitution. Rows of the
        dynamic-programming table are computed with numpy; insertions are
        folded in with a running minimum over each row.

        Args:
            text1: First text
            text2: Second text

        Returns:
            Minimum number of edits turning text1 into text2
        """
        # Keep the row as short as possible
        if len(text1) < len(text2):
            text1, text2 = text2, text1
        if not text2:
            return len(text1)

        target = np.fromiter((ord(c) for c in text2), dtype=np.int64, count=len(text2))
        offsets = np.arange(len(text2) + 1, dtype=np.int64)
        previous = offsets.copy()

        for i, char in enumerate(text1, 1):
            current = np.empty_like(previous)
            current[0] = i
            current[1:] = np.minimum(
                previous[:-1] + (target != ord(char)),  # substitute or match
                previous[1:] + 1                         # delete
            )
            # current[j] = min(current[j], current[j - 1] + 1)
            current = np.minimum.accumulate(current - offsets) + offsets
            previous = current

        return int(previous[-1])

    @staticmethod
    def edit_diff(text1: str, text2: str) -> float:
        """
        Fraction of text that differs between two strings.

        Args:
            text1: Text as originally inserted
            text2: Text currently present

        Returns:
            Edit distance over the longer length, 0-1 (1 = entirely different).
            Empty input on either side yields 1.0.
        """
        if not text1 or not text2:
            return 1.0

        distance = MetricsCalculator.edit_distance(text1, text2)
        return distance / max(len(text1), len(text2))

    @staticmethod
    def score_stats(scores: List[float]) -> Dict[str, float]:
        """
        Calculate score statistics.

        Args:
            scores: List of scores (0-1 range)

        Returns:
            Dictionary with avg, min, max, median, std, percentiles, count
        """
        if not scores:
            return {
                "avg": 0.0,
                "min": 0.0,
                "max": 0.0,
                "median": 0.0,
                "std": 0.0,
                "p50": 0.0,
                "p95": 0.0,
                "p99": 0.0,
                "count": 0
            }

        scores_array = np.array(scores, dtype=float)

        return {
            "avg": float(np.mean(scores_array)),
            "min": float(np.min(scores_array)),
            "max": float(np.max(scores_array)),
            "median": float(np.median(scores_array)),
            "std": float(np.std(scores_array)),
            "p50": float(np.percentile(scores_array, 50)),
            "p95": float(np.percentile(scores_array, 95)),
            "p99": float(np.percentile(scores_array, 99)),
            "count": len(scores)
        }

    @staticmethod
    def count_by_field(items: List[dict], field: str) -> Dict[str, int]:
        """
        Count occurrences by field value.

        Args:
            items: List of dictionaries
            field: Field to count by (supports dot notation)

        Returns:
            Dictionary mapping field values to counts
        """
        counts = Counter()

        for item in items:
            value = MetricsCalculator._lookup(item, field)
            if value is not None:
                counts[str(value)] += 1

        return dict(counts)

    @staticmethod
    def average_by_group(items: List[dict], group_field: str, value_field: str) -> Dict[str, float]:
        """
        Average a numeric field per value of another field.

        Args:
            items: List of dictionaries
            group_field: Field to group by
            value_field: Numeric field to average

        Returns:
            Dictionary mapping group values to averages
        """
        groups: Dict[str, List[float]] = {}

        for item in items:
            group = MetricsCalculator._lookup(item, group_field)
            value = MetricsCalculator._lookup(item, value_field)
            if group is None or not isinstance(value, (int, float)):
                continue
            groups.setdefault(str(group), []).append(float(value))

        return {group: float(np.mean(values)) for group, values in groups.items()}

    @staticmethod
    def _lookup(item: dict, field: str):
        value = item
        for key in field.split('.'):
            if not isinstance(value, dict):
                return None
            value = value.get(key)
        return value
