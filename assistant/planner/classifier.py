"""Planner backed by the natural-language classification capability."""

from __future__ import annotations

import logging
from typing import Any

from assistant.classifier import Classifier
from assistant.core.errors import ClassificationError
from assistant.planner.base import Planner
from assistant.planner.simple import RuleBasedPlanner, downgrade_capability, infer_meta_action
from assistant.planner.types import IntentType, PlannerContext, PlannerOutput
from assistant.registry.schemas import format_schemas_for_prompt, routing_suggestions
from assistant.state.models import Capability, PlanStep

logger = logging.getLogger("assistant.planner")

PLANNER_INSTRUCTIONS = (
    "Split the user's message into an ordered plan of capability steps. Reply with a JSON object "
    '{"intent_type": "operation"|"conversation"|"meta", "confidence": 0-1, '
    '"plan": [{"id", "capability", "action", "constraints", "depends_on"}]}.'
)


def normalize_action(action: Any) -> str:
    text = str(action or "").strip().lower()
    if not text:
        return "process_request"
    return "_".join(text.replace("-", " ").split())


def assign_step_ids(raw_plan: list[dict[str, Any]]) -> list[str]:
    """Unique ids for the raw plan items, keeping each item's own id where possible."""

    reserved = {str(item["id"]) for item in raw_plan if item.get("id")}
    assigned: list[str] = []
    for index, item in enumerate(raw_plan, start=1):
        own = str(item.get("id") or "")
        if own and own not in assigned:
            assigned.append(own)
            continue
        candidate = index
        while f"s{candidate}" in assigned or f"s{candidate}" in reserved:
            candidate += 1
        assigned.append(f"s{candidate}")
    return assigned


class ClassifierPlanner(Planner):
    """Ask the classifier for a JSON plan and fall back to rules when it misbehaves."""

    def __init__(self, classifier: Classifier, fallback: RuleBasedPlanner | None = None) -> None:
        self.classifier = classifier
        self.fallback = fallback or RuleBasedPlanner()

    def describe(self) -> str:
        return f"Classifier planner with fallback to {self.fallback.describe()}"

    async def plan(self, context: PlannerContext) -> PlannerOutput:
        system_context = f"{PLANNER_INSTRUCTIONS}\n\n{format_schemas_for_prompt()}"
        user_context = f"{context.now.formatted}\n\nUser message: {context.text}"

        try:
            payload = await self.classifier.classify(system_context, user_context)
        except ClassificationError as exc:
            logger.warning("Planner classification failed, using rules: %s", exc)
            return self._fallback(context, llm_calls=1)

        output = self.normalize(payload, context)
        if output is None:
            logger.warning("Planner payload was malformed, using rules")
            return self._fallback(context, llm_calls=1)
        return output

    def _fallback(self, context: PlannerContext, llm_calls: int) -> PlannerOutput:
        output = self.fallback.build(context)
        output.llm_calls = llm_calls
        return output

    def normalize(self, payload: dict[str, Any], context: PlannerContext) -> PlannerOutput | None:
        """Validate a raw classifier payload. Returns ``None`` when it is unusable."""

        raw_intent = payload.get("intent_type") or payload.get("intentType")
        raw_plan = payload.get("plan")
        try:
            intent = IntentType(raw_intent)
        except ValueError:
            return None
        if not isinstance(raw_plan, list) or not all(isinstance(item, dict) for item in raw_plan):
            return None

        message = context.text
        step_ids = assign_step_ids(raw_plan)
        id_map: dict[str, str] = {}
        for item, step_id in zip(raw_plan, step_ids):
            if item.get("id"):
                id_map.setdefault(str(item["id"]), step_id)
        steps: list[PlanStep] = []

        for item, step_id in zip(raw_plan, step_ids):
            try:
                capability = Capability(item.get("capability"))
            except ValueError:
                logger.warning("Invalid capability %r, defaulting to general", item.get("capability"))
                capability = Capability.GENERAL
            capability = downgrade_capability(capability, context.user)

            constraints = item.get("constraints")
            constraints = dict(constraints) if isinstance(constraints, dict) else {}
            constraints.setdefault("raw_message", constraints.pop("rawMessage", None) or message)

            depends_on = item.get("depends_on", item.get("dependsOn")) or []
            if not isinstance(depends_on, list):
                depends_on = []
            valid_depends = [
                id_map[str(dep)] for dep in depends_on if str(dep) in id_map and id_map[str(dep)] != step_id
            ]
            if len(valid_depends) != len(depends_on):
                logger.warning("Dropped invalid dependencies in step %s", item.get("id"))

            steps.append(
                PlanStep(
                    id=step_id,
                    capability=capability,
                    action=normalize_action(item.get("action")),
                    constraints=constraints,
                    depends_on=valid_depends,
                )
            )

        if intent is IntentType.META and not steps:
            steps.append(
                PlanStep(
                    id="s1",
                    capability=Capability.META,
                    action=infer_meta_action(message),
                    constraints={"raw_message": message},
                )
            )
        if not steps:
            return None

        try:
            confidence = float(payload.get("confidence", 0.7))
        except (TypeError, ValueError):
            confidence = 0.7

        suggestions = routing_suggestions(message)
        if len({suggestion.capability for suggestion in suggestions}) < 2:
            suggestions = []

        logger.info("Classifier planned %d step(s) with intent %s", len(steps), intent.value)
        return PlannerOutput(
            intent_type=intent,
            confidence=max(0.0, min(1.0, confidence)),
            plan=tuple(steps),
            routing_suggestions=tuple(suggestions),
            llm_calls=1,
        )
