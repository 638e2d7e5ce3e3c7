"""Isolated execution contexts for compiled units."""

from hotswap.isolation.base import (
    ContextState,
    IsolatedContext,
    IsolationError,
    IsolationMechanism,
    LoadError,
    UnloadError,
)
from hotswap.isolation.inprocess import InProcessIsolation
from hotswap.isolation.process import ProcessIsolation

__all__ = [
    "ContextState",
    "InProcessIsolation",
    "IsolatedContext",
    "IsolationError",
    "IsolationMechanism",
    "LoadError",
    "ProcessIsolation",
    "UnloadError",
]
