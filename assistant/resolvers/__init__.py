"""Resolver package exports."""

from .base import Resolver, TemplateResolver, result_update
from .builtin import (
    CalendarFindResolver,
    CalendarMutateResolver,
    DatabaseListResolver,
    DatabaseTaskResolver,
    GeneralResolver,
    GmailResolver,
    MetaResolver,
    SecondBrainResolver,
)
from .registry import ResolverRegistry, build_default_registry

__all__ = [
    "Resolver",
    "TemplateResolver",
    "result_update",
    "CalendarFindResolver",
    "CalendarMutateResolver",
    "DatabaseListResolver",
    "DatabaseTaskResolver",
    "GeneralResolver",
    "GmailResolver",
    "MetaResolver",
    "SecondBrainResolver",
    "ResolverRegistry",
    "build_default_registry",
]
