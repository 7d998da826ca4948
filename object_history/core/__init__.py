from .registry import history, register
from .units import history_batch

__all__ = ["history", "register", "history_batch"]
