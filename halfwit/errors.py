"""
halfwit error taxonomy.

Every error carries a stable code, a message and optional details so the
CLI and HTTP transport can report it verbatim.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class HalfwitError(Exception):
    code = "HALFWIT_ERROR"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, "details": self.details}


class ConfigurationError(HalfwitError):
    """Invalid universe, invalid config, unreachable adapter. Never retried."""
    code = "CONFIGURATION"


class OracleInvocationError(HalfwitError):
    """The adapter could not be launched. The trial is not journaled."""
    code = "ORACLE_INVOCATION"


class VerdictAmbiguity(HalfwitError):
    """Repeated trials of one mask disagree or never become conclusive."""
    code = "VERDICT_AMBIGUITY"


class JournalCorruption(HalfwitError):
    """The journal failed an integrity check. Never repaired silently."""
    code = "JOURNAL_CORRUPTION"


class SessionNotFound(HalfwitError):
    code = "SESSION_NOT_FOUND"


class SessionClosed(HalfwitError):
    """The session was aborted and cannot be resumed."""
    code = "SESSION_CLOSED"
