"""
SPI interface for trial persistence.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Protocol, Tuple

from ..config import BisectConfig, SearchConfig
from ..model import Trial


@dataclass(frozen=True)
class JournalState:
    """Everything needed to resume a session after restart.

    config reflects the latest recorded search policy.
    """

    session_id: str
    universe: Tuple[str, ...]
    config: BisectConfig
    trials: Tuple[Trial, ...]
    created: float
    aborted: bool = False
    log_path: Optional[str] = None

    @property
    def next_seq(self) -> int:
        return self.trials[-1].seq + 1 if self.trials else 1


class TrialJournal(Protocol):
    """SPI for the append-only trial log."""

    def create_session(
        self,
        session_id: str,
        universe: Tuple[str, ...],
        config: BisectConfig,
    ) -> None:
        """Register a new session. Fails if it already exists."""

    def append(self, session_id: str, trial: Trial) -> None:
        """Persist one trial. Durable before returning."""

    def load(self, session_id: str) -> JournalState:
        """Replay the whole record. Raises JournalCorruption on any integrity failure."""

    def update_policy(self, session_id: str, search: SearchConfig) -> None:
        """Record a new search policy (retries, budget) that applies from here on."""

    def mark_aborted(self, session_id: str) -> None:
        """Record an explicit abort. The session cannot be resumed afterwards."""

    def sessions(self) -> List[str]:
        """Known session ids."""
