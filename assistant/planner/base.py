"""Planner abstract base class."""

from __future__ import annotations

from abc import ABC, abstractmethod

from .types import PlannerContext, PlannerOutput


class Planner(ABC):
    """Turns the latest inbound message into an ordered plan."""

    @abstractmethod
    async def plan(self, context: PlannerContext) -> PlannerOutput:
        """Return the plan for a given context."""

    @abstractmethod
    def describe(self) -> str:
        """Human-readable summary of planner strategy."""
