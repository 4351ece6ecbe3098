"""SPI surface for halfwit collaborators."""

from .journal import JournalState, TrialJournal
from .oracle import Oracle
from .toggler import Toggler

__all__ = [
    "JournalState",
    "Oracle",
    "Toggler",
    "TrialJournal",
]
