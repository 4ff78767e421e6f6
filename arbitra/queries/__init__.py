"""History query package."""

from arbitra.queries.history import TransactionHistory

__all__ = ["TransactionHistory"]
