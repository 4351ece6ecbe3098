"""
Candidate registry.

Owns the ordered universe of a session. Immutable once built; toggle state
is always expressed as a mask passed in from outside.
"""

from __future__ import annotations

from typing import Dict, FrozenSet, Iterable, Iterator, Tuple

from .errors import ConfigurationError


class CandidateRegistry:
    def __init__(self, candidates: Iterable[str]) -> None:
        universe = tuple(candidates)
        if not universe:
            raise ConfigurationError("Universe must contain at least one candidate.")

        index: Dict[str, int] = {}
        for position, candidate in enumerate(universe):
            if not isinstance(candidate, str) or not candidate:
                raise ConfigurationError(
                    "Candidate identifiers must be non-empty strings.",
                    details={"position": position, "candidate": repr(candidate)},
                )
            if candidate in index:
                raise ConfigurationError(
                    f"Duplicate candidate '{candidate}'.",
                    details={"candidate": candidate},
                )
            index[candidate] = position

        self._universe = universe
        self._index = index
        self._all = frozenset(universe)

    @property
    def universe(self) -> Tuple[str, ...]:
        return self._universe

    @property
    def baseline(self) -> FrozenSet[str]:
        """The original state: every candidate enabled."""
        return self._all

    def __len__(self) -> int:
        return len(self._universe)

    def __iter__(self) -> Iterator[str]:
        return iter(self._universe)

    def __contains__(self, candidate: object) -> bool:
        return candidate in self._index

    def index(self, candidate: str) -> int:
        try:
            return self._index[candidate]
        except KeyError:
            raise ConfigurationError(f"Unknown candidate '{candidate}'.") from None

    def ordered(self, mask: Iterable[str]) -> Tuple[str, ...]:
        """Mask members in universe order."""
        members = set(mask)
        return tuple(c for c in self._universe if c in members)

    def validate(self, mask: Iterable[str]) -> FrozenSet[str]:
        members = frozenset(mask)
        foreign = members - self._all
        if foreign:
            raise ConfigurationError(
                "Mask contains candidates outside the universe.",
                details={"unknown": sorted(foreign)},
            )
        return members

    def complement(self, mask: Iterable[str]) -> FrozenSet[str]:
        return self._all - frozenset(mask)
