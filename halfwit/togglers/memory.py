"""
In-memory toggler.
"""

from __future__ import annotations

from typing import FrozenSet, Iterable, List, Optional


class InMemoryToggler:
    """Keeps the enabled set in memory and remembers every mask applied."""

    def __init__(self, candidates: Optional[Iterable[str]] = None) -> None:
        self.enabled: FrozenSet[str] = frozenset(candidates or ())
        self.history: List[FrozenSet[str]] = []

    def toggle(self, mask: FrozenSet[str]) -> None:
        self.enabled = frozenset(mask)
        self.history.append(self.enabled)
