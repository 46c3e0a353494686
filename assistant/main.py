"""FastAPI application entry point for the assistant orchestrator."""

import logging
import sqlite3
from pathlib import Path
from typing import Any

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from assistant.adapters import EchoAdapter, InMemoryAdapter
from assistant.api.turns import create_turns_router
from assistant.classifier import OpenRouterClassifier
from assistant.core.config import get_settings
from assistant.core.errors import unhandled_exception_handler
from assistant.core.logging import configure_logging, request_id_middleware
from assistant.core.metrics import MetricsCollector
from assistant.engine import ConversationEngine
from assistant.planner.classifier import ClassifierPlanner
from assistant.planner.simple import RuleBasedPlanner
from assistant.resolvers import build_default_registry
from assistant.state.models import Capability
from assistant.state.store import SQLiteStateStore

settings = get_settings()
logger = logging.getLogger("assistant.app")

state_store = SQLiteStateStore(settings.state_db_path)
metrics = MetricsCollector()

classifier = None
if settings.classifier_enabled:
    classifier = OpenRouterClassifier(
        settings.openrouter_api_key or "",
        settings.openrouter_model,
        referer=settings.openrouter_referer,
        title=settings.openrouter_title,
        timeout=settings.classifier_timeout_seconds,
    )

echo_adapter = EchoAdapter()
adapters = {
    Capability.CALENDAR: InMemoryAdapter("calendar"),
    Capability.DATABASE: InMemoryAdapter("database"),
    Capability.GMAIL: InMemoryAdapter("gmail"),
    Capability.SECOND_BRAIN: InMemoryAdapter("second-brain"),
    Capability.GENERAL: echo_adapter,
    Capability.META: echo_adapter,
}

planner = ClassifierPlanner(classifier) if classifier is not None else RuleBasedPlanner()
registry = build_default_registry(classifier, adapters)
engine = ConversationEngine(settings, state_store, planner, registry, adapters, metrics=metrics)

app = FastAPI(title=settings.app_name, version="0.1.0", docs_url="/docs")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.middleware("http")(request_id_middleware)

app.include_router(create_turns_router(engine))


@app.get("/health", tags=["health"])
async def health_check() -> dict[str, str]:
    """Return basic service status for monitoring."""

    return {"status": "ok"}


@app.get("/ready", tags=["health"])
async def readiness() -> dict[str, Any]:
    """Readiness endpoint that verifies critical dependencies.

    Checks:
    - State SQLite DB reachable and has the expected tables.
    - Whether the LLM classifier is configured (rules are used otherwise).
    """

    components: dict[str, dict[str, Any]] = {}

    state_ok = False
    state_error: str | None = None
    try:
        state_path = Path(settings.state_db_path)
        with sqlite3.connect(state_path) as conn:
            rows = conn.execute(
                "SELECT name FROM sqlite_master WHERE type='table' "
                "AND name IN ('threads','suspended_turns','thread_memory')"
            ).fetchall()
            state_ok = len(rows) == 3
    except Exception as exc:  # noqa: BLE001
        state_error = str(exc)
    components["state_db"] = {
        "path": str(settings.state_db_path),
        "ok": state_ok,
        **({"error": state_error} if state_error else {}),
    }

    components["planner"] = {
        "ok": True,
        "strategy": planner.describe(),
        "classifier_enabled": settings.classifier_enabled,
    }

    overall = "ok" if state_ok else "fail"
    if state_ok and not settings.classifier_enabled:
        overall = "degraded"

    return {
        "status": overall,
        "environment": settings.environment,
        "components": components,
    }


@app.on_event("startup")
async def setup_logging() -> None:
    level = configure_logging(settings.log_level)
    logger.info("Logging configured at %s level for %s environment", logging.getLevelName(level), settings.environment)


app.add_exception_handler(Exception, unhandled_exception_handler)


@app.get("/metrics", tags=["metrics"])
async def metrics_endpoint() -> dict:
    snapshot = metrics.snapshot()
    return {
        "total_turns": snapshot.total_turns,
        "turn_outcomes": snapshot.turn_outcomes,
        "dispatches": snapshot.dispatches,
        "resume_outcomes": snapshot.resume_outcomes,
        "ledger_hits": snapshot.ledger_hits,
        "retries": snapshot.retries,
    }
