"""
halfwit session controller.

Runs the trial loop for one session:

while True:
    decision = engine.next_trial(history)
    if decision is Done or Stalled:
        break
    toggler.toggle(decision.mask)
    judgement = oracle.judge(decision.mask)
    journal.append(trial)          # durable before the engine sees it
    history += trial

Trials are strictly serialized. Whatever happens, the toggler is handed the
baseline mask (everything enabled) before run() returns.
"""

from __future__ import annotations

import json
import os
import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, TextIO, Tuple, Union

from .config import SearchConfig
from .engine import SearchEngine
from .errors import SessionClosed
from .model import CulpritSet, Done, Frontier, Stalled, Trial, TrialRequest
from .registry import CandidateRegistry
from .spi.journal import JournalState, TrialJournal
from .spi.oracle import Oracle
from .spi.toggler import Toggler


class RunStatus(str, Enum):
    PENDING = "pending"        # resumable, more trials needed
    DONE = "done"
    STALLED = "stalled"
    CANCELLED = "cancelled"
    ABORTED = "aborted"


@dataclass
class SessionReport:
    """Outcome of a run, or the replayed status of a session."""
    session_id: str
    status: RunStatus
    frontier: Frontier
    trials: Tuple[Trial, ...] = ()
    outcome: Optional[Union[Done, Stalled]] = None
    log_path: Optional[str] = None
    universe: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def culprits(self) -> Tuple[CulpritSet, ...]:
        if self.outcome is not None:
            return self.outcome.culprits
        return self.frontier.culprits

    def to_dict(self) -> dict:
        return {
            "session_id": self.session_id,
            "status": self.status.value,
            "trials": len(self.trials),
            "frontier": self.frontier.to_dict(),
            "outcome": self.outcome.to_dict() if self.outcome is not None else None,
            "culprits": [c.to_dict() for c in self.culprits],
            "log_path": self.log_path,
        }

    def summary(self) -> str:
        lines = [f"Session {self.session_id}: {self.status.value} after {len(self.trials)} trial(s)"]
        if isinstance(self.outcome, Stalled):
            lines.append(f"Could not isolate: {self.outcome.reason.value}: {self.outcome.detail}")
            for mask in self.outcome.masks:
                lines.append(f"  mask: {_format_members(self._ordered(mask))}")
        elif self.status in (RunStatus.PENDING, RunStatus.CANCELLED):
            lines.append(
                f"Phase {self.frontier.phase}: {self.frontier.size} suspect(s), "
                f"granularity {self.frontier.granularity}"
            )
        if self.culprits:
            lines.append(f"Culprit set(s) found: {len(self.culprits)}")
            for i, culprit in enumerate(self.culprits, start=1):
                lines.append(
                    f"  {i}. {_format_members(culprit.members)} "
                    f"(evidence trials: {', '.join(str(s) for s in culprit.evidence_seqs())})"
                )
        elif self.status is RunStatus.DONE:
            lines.append("No culprit set found.")
        return "\n".join(lines)

    def _ordered(self, mask) -> Tuple[str, ...]:
        if self.universe:
            return tuple(c for c in self.universe if c in mask)
        return tuple(sorted(mask))


def describe(
    state: JournalState,
    search: Optional[SearchConfig] = None,
    status: Optional[RunStatus] = None,
) -> SessionReport:
    """Replay a journal into a report without running anything."""
    registry = CandidateRegistry(state.universe)
    engine = SearchEngine(registry, search or state.config.search)
    decision = engine.next_trial(state.trials)
    frontier = engine.frontier(state.trials)
    outcome = None if isinstance(decision, TrialRequest) else decision
    if status is None:
        if state.aborted:
            status = RunStatus.ABORTED
        elif isinstance(decision, Done):
            status = RunStatus.DONE
        elif isinstance(decision, Stalled):
            status = RunStatus.STALLED
        else:
            status = RunStatus.PENDING
    return SessionReport(
        session_id=state.session_id,
        status=status,
        frontier=frontier,
        trials=state.trials,
        outcome=outcome,
        log_path=state.log_path,
        universe=state.universe,
    )


class SessionController:
    """
    Drives one session at a time.

    cancel() is cooperative: the in-flight trial completes and is journaled,
    then the loop stops. cancel(force=True) also interrupts the oracle, which
    kills the adapter and yields an inconclusive trial.
    """

    def __init__(
        self,
        journal: TrialJournal,
        toggler: Toggler,
        oracle: Oracle,
        verbose: bool = False,
    ):
        self.journal = journal
        self.toggler = toggler
        self.oracle = oracle
        self.verbose = verbose

        self._cancel = threading.Event()
        self._interrupt = threading.Event()
        self._abort = False
        self.log_file: Optional[TextIO] = None

    def cancel(self, force: bool = False, abort: bool = False) -> None:
        self._abort = self._abort or abort
        self._cancel.set()
        if force:
            self._interrupt.set()

    def run(self, session_id: str, search: Optional[SearchConfig] = None) -> SessionReport:
        state = self.journal.load(session_id)
        if state.aborted:
            raise SessionClosed(f"Session '{session_id}' was aborted.")

        search = search or state.config.search
        registry = CandidateRegistry(state.universe)
        engine = SearchEngine(registry, search)
        history = state.trials

        self._open_log(state.log_path)
        self._log_header(state, search)
        cancelled = False
        failed = False
        try:
            while True:
                decision = engine.next_trial(history)
                if not isinstance(decision, TrialRequest):
                    break
                if self._cancel.is_set():
                    cancelled = True
                    self.log("Cancelled; stopping before the next trial")
                    break

                self.toggler.toggle(decision.mask)
                judgement = self.oracle.judge(decision.mask, registry, interrupt=self._interrupt)
                history = engine.record_verdict(history, decision.mask, judgement)
                trial = history[-1]
                self.journal.append(session_id, trial)
                self.log(
                    f"Trial {trial.seq}: {len(trial.mask)}/{len(registry)} enabled "
                    f"(attempt {decision.attempt}) -> {trial.verdict.value}"
                    + (f" [{trial.reason}]" if trial.reason else "")
                    + f" in {trial.duration:.2f}s"
                )
        except Exception as exc:
            failed = True
            self.log(f"Run stopped by error: {exc}")
            raise
        finally:
            self.toggler.toggle(registry.baseline)
            self.log("Baseline restored")
            aborted = self._abort
            self._abort = False
            self._cancel.clear()
            self._interrupt.clear()
            if aborted:
                self.journal.mark_aborted(session_id)
                self.log("Session aborted")
            if failed:
                self._close_log()

        final = self.journal.load(session_id)
        if aborted:
            status = RunStatus.ABORTED
        elif cancelled:
            status = RunStatus.CANCELLED
        else:
            status = None
        report = describe(final, search=search, status=status)

        self.log("=" * 60)
        for line in report.summary().splitlines():
            self.log(line)
        self.log("=" * 60)
        self._save_report(report)
        self._close_log()
        return report

    # ------------------------------------------------------------------
    # logging
    # ------------------------------------------------------------------

    def _open_log(self, path: Optional[str]) -> None:
        self._close_log()
        if path:
            os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
            self.log_file = open(path, "a")

    def _close_log(self) -> None:
        if self.log_file:
            self.log_file.close()
            self.log_file = None

    def _log_header(self, state: JournalState, search: SearchConfig) -> None:
        header = [
            "=" * 70,
            f"halfwit session: {state.session_id}",
            f"Run started: {datetime.now().isoformat()}",
            f"Candidates: {len(state.universe)}",
            f"Trials already journaled: {len(state.trials)}",
            f"Max retries: {search.max_retries}",
            f"Trial budget: {search.trial_budget if search.trial_budget is not None else 'unlimited'}",
            "=" * 70,
        ]
        for line in header:
            self._write_log(line)

    def _write_log(self, msg: str) -> None:
        if self.log_file:
            self.log_file.write(msg + "\n")
            self.log_file.flush()

    def log(self, msg: str) -> None:
        timestamped = f"[{datetime.now().strftime('%H:%M:%S.%f')[:-3]}] {msg}"
        self._write_log(timestamped)
        if self.verbose:
            print(f"[halfwit] {msg}")

    def _save_report(self, report: SessionReport) -> None:
        """Write report.json next to run.log. Derived output; resume never reads it."""
        if not report.log_path:
            return
        path = os.path.join(os.path.dirname(report.log_path), "report.json")
        with open(path, "w") as f:
            json.dump(report.to_dict(), f, indent=2)


def _format_members(members) -> str:
    return "{" + ", ".join(members) + "}" if members else "{}"
