"""
In-memory trial journal.
"""

from __future__ import annotations

import time
from dataclasses import replace
from typing import Dict, List, Tuple

from ..config import BisectConfig, SearchConfig
from ..errors import ConfigurationError, JournalCorruption, SessionClosed, SessionNotFound
from ..model import Trial
from ..spi.journal import JournalState


class InMemoryJournal:
    def __init__(self) -> None:
        self._universes: Dict[str, Tuple[str, ...]] = {}
        self._configs: Dict[str, BisectConfig] = {}
        self._created: Dict[str, float] = {}
        self._trials: Dict[str, List[Trial]] = {}
        self._aborted: Dict[str, bool] = {}

    def create_session(
        self,
        session_id: str,
        universe: Tuple[str, ...],
        config: BisectConfig,
    ) -> None:
        if session_id in self._universes:
            raise ConfigurationError(
                f"Session '{session_id}' already exists.", details={"session_id": session_id}
            )
        self._universes[session_id] = tuple(universe)
        self._configs[session_id] = config
        self._created[session_id] = time.time()
        self._trials[session_id] = []
        self._aborted[session_id] = False

    def append(self, session_id: str, trial: Trial) -> None:
        self._require_session(session_id)
        if self._aborted[session_id]:
            raise SessionClosed(f"Session '{session_id}' was aborted.")
        trials = self._trials[session_id]
        expected = trials[-1].seq + 1 if trials else 1
        if trial.seq != expected:
            raise JournalCorruption(
                f"Out-of-order append: expected seq {expected}, got {trial.seq}.",
                details={"expected": expected, "seq": trial.seq},
            )
        trials.append(trial)

    def load(self, session_id: str) -> JournalState:
        self._require_session(session_id)
        return JournalState(
            session_id=session_id,
            universe=self._universes[session_id],
            config=self._configs[session_id],
            trials=tuple(self._trials[session_id]),
            created=self._created[session_id],
            aborted=self._aborted[session_id],
        )

    def update_policy(self, session_id: str, search: SearchConfig) -> None:
        self._require_session(session_id)
        if self._aborted[session_id]:
            raise SessionClosed(f"Session '{session_id}' was aborted.")
        self._configs[session_id] = replace(self._configs[session_id], search=search)

    def mark_aborted(self, session_id: str) -> None:
        self._require_session(session_id)
        self._aborted[session_id] = True

    def sessions(self) -> List[str]:
        return sorted(self._universes)

    def _require_session(self, session_id: str) -> None:
        if session_id not in self._universes:
            raise SessionNotFound(f"Unknown session_id '{session_id}'.")
