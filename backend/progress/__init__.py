"""Progress tracking per math category."""
from .ledger import ProgressLedger, apply_attempt

__all__ = ["ProgressLedger", "apply_attempt"]
