"""Reference togglers. The engine never depends on these."""

from .files import FileToggler
from .memory import InMemoryToggler

__all__ = ["FileToggler", "InMemoryToggler"]
