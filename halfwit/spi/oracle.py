"""
SPI interface for oracles.
"""

from __future__ import annotations

import threading
from typing import FrozenSet, Optional, Protocol

from ..model import Judgement
from ..registry import CandidateRegistry


class Oracle(Protocol):
    """Judges one mask. Must return a tagged Judgement, never a raw exit status."""

    def judge(
        self,
        mask: FrozenSet[str],
        registry: CandidateRegistry,
        interrupt: Optional[threading.Event] = None,
    ) -> Judgement:
        """Run the judged program with mask enabled and report the verdict."""
