"""Base classes and types for domain adapters."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Mapping


@dataclass(slots=True)
class AdapterResult:
    """Standard adapter response payload."""

    success: bool
    data: dict[str, Any] = field(default_factory=dict)
    error: str | None = None


@dataclass(slots=True, frozen=True)
class Candidate:
    """An existing entity that may be the target of an operation."""

    id: str
    display: str


class Adapter(ABC):
    """Executes concrete operations against a calendar, mail, task or memory backend."""

    name: str

    @abstractmethod
    async def execute(self, args: Mapping[str, Any]) -> AdapterResult:
        """Run the operation described by ``args`` (``args["action"]`` names it).

        Report business failures in the result. Raise
        :class:`~assistant.core.errors.AdapterError` for operations the backend
        cannot accept at all.
        """

    def find(self, entity_type: str, query: str) -> list[Candidate]:
        """Return entities whose text matches ``query``. Backends without search return nothing."""

        return []

    def describe(self) -> str:
        return self.__doc__ or self.name
