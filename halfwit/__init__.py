"""
halfwit - fault isolation by subset bisection

Finds the smallest sets of candidates (files, patches, flags) whose presence
makes a behavior reproduce, by repeatedly enabling subsets and asking an
external oracle whether the behavior is still there.

Design principles:
- The engine only sees masks and verdicts; it never toggles anything
- Every trial is journaled before the search moves on
- When evidence contradicts itself the search stalls instead of guessing
"""

from .config import BisectConfig, OracleConfig, SearchConfig, load_config
from .controller import RunStatus, SessionController, SessionReport
from .engine import SearchEngine
from .errors import (
    ConfigurationError,
    HalfwitError,
    JournalCorruption,
    OracleInvocationError,
    SessionClosed,
    SessionNotFound,
    VerdictAmbiguity,
)
from .model import (
    CulpritSet,
    Done,
    Frontier,
    Judgement,
    Stalled,
    StallReason,
    Trial,
    TrialRequest,
    Verdict,
)
from .oracle import CommandOracle
from .registry import CandidateRegistry
from .server import BisectServer

__all__ = [
    "BisectConfig",
    "OracleConfig",
    "SearchConfig",
    "load_config",
    "RunStatus",
    "SessionController",
    "SessionReport",
    "SearchEngine",
    "ConfigurationError",
    "HalfwitError",
    "JournalCorruption",
    "OracleInvocationError",
    "SessionClosed",
    "SessionNotFound",
    "VerdictAmbiguity",
    "CulpritSet",
    "Done",
    "Frontier",
    "Judgement",
    "Stalled",
    "StallReason",
    "Trial",
    "TrialRequest",
    "Verdict",
    "CommandOracle",
    "CandidateRegistry",
    "BisectServer",
]
