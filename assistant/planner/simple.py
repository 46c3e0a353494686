"""Baseline rule-based planner implementation."""

from __future__ import annotations

import logging
import re

from assistant.planner.base import Planner
from assistant.planner.types import IntentType, PlannerContext, PlannerOutput
from assistant.registry.schemas import (
    DATABASE_TASK_SCHEMA,
    GENERAL_SCHEMA,
    CapabilitySchema,
    get_best_match,
    get_schemas_for_capability,
    routing_suggestions,
)
from assistant.state.models import Capability, PlanStep, UserContext

logger = logging.getLogger("assistant.planner")

CLAUSE_SEPARATOR = re.compile(r"\s*(?:;|\band then\b|\bthen\b)\s*", re.IGNORECASE)

META_PATTERN = re.compile(
    r"what can you do|what are your capabilities|who are you|what are you|my plan|what plan|"
    r"plan price|am i connected|google connected|\bstatus\b|\bhelp[?!.]*$|"
    r"מה אתה יכול|מה את יכולה|עזרה|יכולות|מי אתה|תוכנית|מחובר לגוגל|סטטוס",
    re.IGNORECASE,
)

GREETING_PATTERN = re.compile(
    r"^(שלום|היי|הי|בוקר טוב|ערב טוב|תודה|hello|hi|hey|good morning|good evening|thanks|thank you)[\s!?.]*$",
    re.IGNORECASE,
)

# Ordered (pattern, action) rules per schema; the first hit wins.
ACTION_RULES: dict[str, tuple[tuple[str, str], ...]] = {
    "calendar_find_resolver": (
        (r"\bfree\b|\bavailable\b|פנוי", "check_availability"),
        (r"conflict|overlap", "check_conflicts"),
        (r"how many hours|analy[sz]e", "analyze_schedule"),
        (r"when is|מתי", "find_event"),
    ),
    "calendar_mutate_resolver": (
        (r"every (day|week|month|monday|tuesday|wednesday|thursday|friday|saturday|sunday)|recurring|weekly", "create_recurring"),
        (r"clear all|(delete|cancel|remove) all", "delete_events_by_window"),
        (r"(postpone|move|reschedule) all", "update_events_by_window"),
        (r"delete|cancel|remove|מחק|בטל", "delete_event"),
        (r"reschedule|postpone|move|change|update|שנה|הזז", "update_event"),
    ),
    "database_task_resolver": (
        (r"delete all|clear all", "delete_all_tasks"),
        (r"(delete|remove|cancel)\b.*reminder", "delete_reminder"),
        (r"delete|remove|מחק", "delete_task"),
        (r"done with|finished|completed|mark .* (as )?done|סיימתי", "complete_task"),
        (r"what are my|what reminders|show|\blist\b|מה ה", "list_tasks"),
        (r"update|change|move|reschedule", "update_task"),
        (r"remind|nudge|reminder|תזכיר|תזכורת", "create_reminder"),
    ),
    "database_list_resolver": (
        (r"(delete|remove) (the |my )?list", "delete_list"),
        (r"what lists|my lists", "list_lists"),
        (r"remove|delete", "delete_item"),
        (r"check off|tick|toggle|got the", "toggle_item"),
        (r"create|new list|make a list|תיצור", "create_list"),
        (r"\badd\b|הוסף", "add_to_list"),
    ),
    "gmail_resolver": (
        (r"reply", "reply_email"),
        (r"send|write|שלח", "send_email"),
        (r"mark .*unread", "mark_unread"),
        (r"mark .*read", "mark_read"),
        (r"search|find|from ", "search_emails"),
    ),
    "secondbrain_resolver": (
        (r"delete|forget|remove", "delete_memory"),
        (r"update|change", "update_memory"),
        (r"what did i|what do you remember|find|search|מה שמרתי", "search_memory"),
        (r"list (all|my)|all my (notes|memories)", "list_memories"),
    ),
}

DEFAULT_ACTIONS: dict[str, str] = {
    "calendar_find_resolver": "list_events",
    "calendar_mutate_resolver": "create_event",
    "database_task_resolver": "create_task",
    "database_list_resolver": "get_list",
    "gmail_resolver": "list_emails",
    "secondbrain_resolver": "store_memory",
    "general_resolver": "respond",
    "meta_resolver": "describe_capabilities",
}

# Keyword routing used when no schema trigger matches a clause.
LEGACY_CAPABILITY_PATTERNS: tuple[tuple[re.Pattern[str], Capability], ...] = (
    (re.compile(r"פגישה|אירוע|יומן|לוז|meeting|event|calendar|appointment", re.I), Capability.CALENDAR),
    (re.compile(r"מייל|אימייל|e-?mail|\bmail\b|inbox", re.I), Capability.GMAIL),
    (re.compile(r"תזכור ש|זכור ש|שמור.*ש|remember|save.*that|password is|bill is", re.I), Capability.SECOND_BRAIN),
    (re.compile(r"תזכיר|תזכורת|להזכיר|משימה|רשימה|remind|task|todo|\blist\b", re.I), Capability.DATABASE),
)

DOWNGRADES: dict[Capability, Capability] = {
    Capability.CALENDAR: Capability.DATABASE,
    Capability.GMAIL: Capability.GENERAL,
    Capability.DATABASE: Capability.GENERAL,
    Capability.SECOND_BRAIN: Capability.GENERAL,
}


def split_clauses(message: str) -> list[str]:
    clauses = [clause.strip(" ,.") for clause in CLAUSE_SEPARATOR.split(message)]
    return [clause for clause in clauses if clause]


def infer_meta_action(message: str) -> str:
    lowered = message.lower()
    if re.search(r"website|אתר|כתובת|\burl\b|\blink\b", lowered):
        return "website"
    if re.search(r"who are you|מי אתה|what are you", lowered):
        return "about_agent"
    if re.search(r"my plan|what plan|plan price|תוכנית|מחיר", lowered):
        return "plan_info"
    if re.search(r"am i connected|google connected|מחובר", lowered):
        return "account_status"
    if re.search(r"status|סטטוס", lowered):
        return "status"
    if re.search(r"help|עזרה", lowered):
        return "help"
    return "describe_capabilities"


def infer_action(schema: CapabilitySchema, clause: str) -> str:
    lowered = clause.lower()
    for pattern, action in ACTION_RULES.get(schema.name, ()):
        if re.search(pattern, lowered):
            return action
    return DEFAULT_ACTIONS.get(schema.name, schema.action_hints[0])


def downgrade_capability(capability: Capability, user: UserContext) -> Capability:
    """Walk the downgrade chain until the user has the capability enabled."""

    while not user.capabilities.enabled(capability):
        fallback = DOWNGRADES.get(capability, Capability.GENERAL)
        logger.info("Capability %s is not enabled; routing to %s", capability.value, fallback.value)
        capability = fallback
    return capability


class RuleBasedPlanner(Planner):
    """Deterministic planner driven by the capability schema registry."""

    def describe(self) -> str:
        return "Rule-based schema-pattern planner"

    async def plan(self, context: PlannerContext) -> PlannerOutput:
        return self.build(context)

    def build(self, context: PlannerContext) -> PlannerOutput:
        message = context.text.strip()

        if META_PATTERN.search(message):
            step = PlanStep(
                id="s1",
                capability=Capability.META,
                action=infer_meta_action(message),
                constraints={"raw_message": message},
            )
            return PlannerOutput(intent_type=IntentType.META, confidence=0.95, plan=(step,))

        if not message or GREETING_PATTERN.match(message):
            step = PlanStep(
                id="s1",
                capability=Capability.GENERAL,
                action="greet",
                constraints={"raw_message": message},
            )
            return PlannerOutput(intent_type=IntentType.CONVERSATION, confidence=0.9, plan=(step,))

        steps: list[PlanStep] = []
        all_matched = True
        for index, clause in enumerate(split_clauses(message), start=1):
            capability, action, matched = self._route_clause(clause, context.user)
            all_matched = all_matched and matched
            steps.append(
                PlanStep(
                    id=f"s{index}",
                    capability=capability,
                    action=action,
                    constraints={"raw_message": clause},
                )
            )

        suggestions = routing_suggestions(message)
        if len({suggestion.capability for suggestion in suggestions}) < 2:
            suggestions = []

        intent = IntentType.OPERATION
        if all(step.capability is Capability.GENERAL for step in steps):
            intent = IntentType.CONVERSATION

        output = PlannerOutput(
            intent_type=intent,
            confidence=0.9 if all_matched else 0.7,
            plan=tuple(steps),
            routing_suggestions=tuple(suggestions),
        )
        logger.info(
            "Planned %d step(s): %s",
            len(output.plan),
            ", ".join(f"{step.id}={step.capability.value}:{step.action}" for step in output.plan),
        )
        return output

    def _route_clause(self, clause: str, user: UserContext) -> tuple[Capability, str, bool]:
        match = get_best_match(clause)
        if match is not None:
            schema = match.schema
            matched = True
        else:
            matched = False
            schema = GENERAL_SCHEMA
            for pattern, capability in LEGACY_CAPABILITY_PATTERNS:
                if pattern.search(clause):
                    schema = get_schemas_for_capability(capability)[0]
                    break

        capability = downgrade_capability(schema.capability, user)
        if capability is not schema.capability:
            schema = DATABASE_TASK_SCHEMA if capability is Capability.DATABASE else GENERAL_SCHEMA
        return capability, infer_action(schema, clause), matched
