"""Position store implementations."""
from .memory import InMemoryPositionStore

__all__ = ["InMemoryPositionStore"]
