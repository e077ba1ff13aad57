"""History persistence."""

from qualitypulse.storage.history import HistoryStore, to_epoch_ms

__all__ = ["HistoryStore", "to_epoch_ms"]
