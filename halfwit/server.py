"""
halfwit bisection server.

Session management over the journal: start, resume, status, abort.
The CLI and the HTTP transport are thin wrappers around this class.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from .config import BisectConfig, SearchConfig
from .controller import RunStatus, SessionController, SessionReport, describe
from .errors import ConfigurationError, SessionClosed
from .oracle import CommandOracle
from .registry import CandidateRegistry
from .spi.journal import TrialJournal
from .spi.oracle import Oracle
from .spi.toggler import Toggler
from .stores.jsonl import JsonlJournal
from .togglers.memory import InMemoryToggler


def new_session_id() -> str:
    return datetime.now().strftime("%Y%m%d-%H%M%S") + "-" + uuid.uuid4().hex[:8]


class BisectServer:
    """
    Owns one journal and one toggler.

    Without an injected oracle every session runs its configured adapter
    command. Without an injected toggler candidates are toggled only through
    the adapter's environment.
    """

    def __init__(
        self,
        journal: Optional[TrialJournal] = None,
        toggler: Optional[Toggler] = None,
        oracle: Optional[Oracle] = None,
        verbose: bool = False,
    ) -> None:
        self.journal = journal if journal is not None else JsonlJournal(BisectConfig().journal_dir)
        self.toggler = toggler if toggler is not None else InMemoryToggler()
        self.verbose = verbose
        self._oracle = oracle
        self._running: Dict[str, SessionController] = {}

    def start_session(
        self,
        universe: Iterable[str],
        config: Optional[BisectConfig] = None,
        run: bool = True,
        session_id: Optional[str] = None,
    ) -> SessionReport:
        config = config or BisectConfig()
        registry = CandidateRegistry(universe)
        oracle = self._oracle_for(config)

        session_id = session_id or new_session_id()
        if session_id in self.journal.sessions():
            raise ConfigurationError(
                f"Session '{session_id}' already exists.", details={"session_id": session_id}
            )
        self.journal.create_session(session_id, registry.universe, config)
        if not run:
            return self.status(session_id)
        return self._run(session_id, oracle, config.search)

    def resume_session(
        self,
        session_id: str,
        max_retries: Optional[int] = None,
        trial_budget: Optional[int] = None,
    ) -> SessionReport:
        state = self.journal.load(session_id)
        if state.aborted:
            raise SessionClosed(f"Session '{session_id}' was aborted.")
        if session_id in self._running:
            raise SessionClosed(f"Session '{session_id}' is already running.")

        current = state.config.search
        if max_retries is not None and max_retries < current.max_retries:
            # earlier retries were judged under the larger allowance
            raise ConfigurationError(
                "max_retries can only be raised on resume.",
                details={"current": current.max_retries, "requested": max_retries},
            )
        search = current.adjusted(max_retries=max_retries, trial_budget=trial_budget)
        oracle = self._oracle_for(state.config)
        if search != current:
            self.journal.update_policy(session_id, search)
        return self._run(session_id, oracle, search)

    def status(self, session_id: str) -> SessionReport:
        state = self.journal.load(session_id)
        if session_id in self._running and not state.aborted:
            # replay the journal as it stands; the run loop owns the outcome
            return describe(state, status=RunStatus.PENDING)
        return describe(state)

    def abort(self, session_id: str) -> SessionReport:
        controller = self._running.get(session_id)
        if controller is not None:
            # the run loop is the only writer; it records the abort on exit
            controller.cancel(force=True, abort=True)
            return describe(self.journal.load(session_id), status=RunStatus.ABORTED)

        state = self.journal.load(session_id)
        self.journal.mark_aborted(session_id)
        self.toggler.toggle(CandidateRegistry(state.universe).baseline)
        return self.status(session_id)

    def cancel(self, session_id: str, force: bool = False) -> bool:
        """Ask a running session to stop. Returns False when it is not running here."""
        controller = self._running.get(session_id)
        if controller is None:
            return False
        controller.cancel(force=force)
        return True

    def sessions(self) -> List[str]:
        return self.journal.sessions()

    def _oracle_for(self, config: BisectConfig) -> Oracle:
        if self._oracle is not None:
            return self._oracle
        oracle = CommandOracle(config.oracle)
        oracle.check()
        return oracle

    def _run(self, session_id: str, oracle: Oracle, search: SearchConfig) -> SessionReport:
        controller = SessionController(
            journal=self.journal,
            toggler=self.toggler,
            oracle=oracle,
            verbose=self.verbose,
        )
        self._running[session_id] = controller
        try:
            return controller.run(session_id, search=search)
        finally:
            self._running.pop(session_id, None)
