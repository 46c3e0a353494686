"""Resolver lookup by plan step capability and action."""

from __future__ import annotations

import logging
from typing import Iterable, Iterator, Mapping

from assistant.adapters.base import Adapter
from assistant.classifier import Classifier
from assistant.core.errors import UnknownCapabilityError
from assistant.resolvers.base import Resolver
from assistant.resolvers.builtin import (
    CalendarFindResolver,
    CalendarMutateResolver,
    DatabaseListResolver,
    DatabaseTaskResolver,
    GeneralResolver,
    GmailResolver,
    MetaResolver,
    SecondBrainResolver,
)
from assistant.state.models import Capability, PlanStep

logger = logging.getLogger("assistant.resolvers")


class ResolverRegistry:
    """Ordered resolver collection; the first resolver registered for a capability is its fallback."""

    def __init__(self, resolvers: Iterable[Resolver]) -> None:
        self._resolvers = list(resolvers)

    def __iter__(self) -> Iterator[Resolver]:
        return iter(self._resolvers)

    def __len__(self) -> int:
        return len(self._resolvers)

    def get(self, name: str) -> Resolver | None:
        for resolver in self._resolvers:
            if resolver.name == name:
                return resolver
        return None

    def fallback_for(self, capability: Capability) -> Resolver | None:
        for resolver in self._resolvers:
            if resolver.capability is capability:
                return resolver
        return None

    def for_step(self, step: PlanStep) -> Resolver:
        """Resolver accepting ``step``, or the capability fallback.

        Raises :class:`UnknownCapabilityError` when neither exists.
        """

        for resolver in self._resolvers:
            if resolver.accepts(step):
                return resolver
        fallback = self.fallback_for(step.capability)
        if fallback is None:
            raise UnknownCapabilityError(step.capability.value, step.action)
        logger.info(
            "No resolver accepts %s:%s; falling back to %s",
            step.capability.value,
            step.action,
            fallback.name,
        )
        return fallback


def build_default_registry(
    classifier: Classifier | None = None,
    adapters: Mapping[Capability, Adapter] | None = None,
) -> ResolverRegistry:
    adapters = adapters or {}

    def lookup(capability: Capability) -> Adapter | None:
        return adapters.get(capability)

    return ResolverRegistry(
        [
            DatabaseTaskResolver(classifier, lookup(Capability.DATABASE)),
            DatabaseListResolver(classifier, lookup(Capability.DATABASE)),
            CalendarFindResolver(classifier, lookup(Capability.CALENDAR)),
            CalendarMutateResolver(classifier, lookup(Capability.CALENDAR)),
            GmailResolver(classifier, lookup(Capability.GMAIL)),
            SecondBrainResolver(classifier, lookup(Capability.SECOND_BRAIN)),
            GeneralResolver(classifier),
            MetaResolver(),
        ]
    )
