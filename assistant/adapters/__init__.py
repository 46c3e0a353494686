"""Adapter package exports."""

from .base import Adapter, AdapterResult, Candidate
from .memory import EchoAdapter, InMemoryAdapter

__all__ = [
    "Adapter",
    "AdapterResult",
    "Candidate",
    "EchoAdapter",
    "InMemoryAdapter",
]
