"""
SPI interface for togglers.
"""

from __future__ import annotations

from typing import FrozenSet, Protocol


class Toggler(Protocol):
    """
    Makes the medium (filesystem, plugin config, ...) reflect a mask.
    halfwit treats this as opaque.
    """

    def toggle(self, mask: FrozenSet[str]) -> None:
        """Enable exactly the members of mask, disable the rest. Synchronous."""
