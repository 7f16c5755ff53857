# SPDX-License-Identifier: LGPL-3.0-or-later
# vmexchange/core/levenshtein.py
"""Weighted Levenshtein edit distance."""
from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class LevenshteinDistance:
    """
    Edit distance with configurable insertion, deletion and substitution costs.

    The first row and column of the matrix are initialised with the plain
    index (cost 1 per step) regardless of the configured weights.

    Example:
        >>> LevenshteinDistance().distance("kitten", "sitting")
        3
        >>> LevenshteinDistance(2, 1, 1).distance("", "ab")
        2
    """
    insertion_cost: int = 1
    deletion_cost: int = 1
    substitution_cost: int = 1

    def __post_init__(self) -> None:
        for name in ("insertion_cost", "deletion_cost", "substitution_cost"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name.replace('_', ' ').capitalize()} must be greater than or equal to 0")

    def distance(self, source: str, target: str) -> int:
        if source is None or target is None:
            raise ValueError("Source or target cannot be None")

        rows = len(source)
        cols = len(target)

        # only the previous row is needed
        prev = list(range(cols + 1))
        for row in range(1, rows + 1):
            cur = [row] + [0] * cols
            for col in range(1, cols + 1):
                sub = prev[col - 1] + (0 if source[row - 1] == target[col - 1] else self.substitution_cost)
                delete = prev[col] + self.deletion_cost
                insert = cur[col - 1] + self.insertion_cost
                cur[col] = min(sub, delete, insert)
            prev = cur

        return prev[cols]


__all__ = ["LevenshteinDistance"]
