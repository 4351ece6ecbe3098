"""Trial journal implementations."""

from .jsonl import JsonlJournal
from .memory import InMemoryJournal

__all__ = ["InMemoryJournal", "JsonlJournal"]
