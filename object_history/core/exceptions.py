class HistoryError(Exception):
    """Base class for errors raised by the history engine."""


class HistoryFlushError(HistoryError):
    """The writer failed to persist a batch. Nothing was removed from the queue."""

    def __init__(self, message: str, pending: int = 0):
        super().__init__(message)
        self.pending = pending
