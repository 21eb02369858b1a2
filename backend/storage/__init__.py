"""Storage facade for problems, solutions, sessions, progress and attempts."""
from .base import Storage
from .memory import MemStorage

__all__ = ["Storage", "MemStorage"]
