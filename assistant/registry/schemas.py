"""Static catalog of capability schemas used for routing hints and disambiguation.

Each schema tells the planner what one resolver handles: its capability tag,
the action hints it accepts, localized trigger phrases, and a few worked
examples. The catalog is sorted once at import time (priority descending,
registration order on ties) and never re-sorted per request.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Mapping, Sequence

from assistant.state.models import Capability, RoutingSuggestion


@dataclass(slots=True, frozen=True)
class SchemaExample:
    input: str
    action: str


@dataclass(slots=True, frozen=True)
class CapabilitySchema:
    """Routing contract for a single resolver."""

    name: str
    capability: Capability
    summary: str
    action_hints: tuple[str, ...]
    trigger_patterns: Mapping[str, tuple[str, ...]]
    examples: tuple[SchemaExample, ...] = ()
    priority: int = 0

    def iter_patterns(self) -> list[str]:
        patterns: list[str] = []
        for phrases in self.trigger_patterns.values():
            patterns.extend(phrases)
        return patterns


@dataclass(slots=True, frozen=True)
class PatternMatch:
    schema: CapabilitySchema
    score: float
    matched_patterns: tuple[str, ...] = field(default_factory=tuple)

    def to_suggestion(self) -> RoutingSuggestion:
        return RoutingSuggestion(
            resolver_name=self.schema.name,
            capability=self.schema.capability,
            score=self.score,
            matched_patterns=self.matched_patterns,
        )


CALENDAR_FIND_SCHEMA = CapabilitySchema(
    name="calendar_find_resolver",
    capability=Capability.CALENDAR,
    summary=(
        "Query and search calendar events. Lists events, checks schedule, finds specific events, "
        "analyzes availability and conflicts."
    ),
    action_hints=(
        "list_events",
        "find_event",
        "get_events",
        "check_conflicts",
        "check_availability",
        "analyze_schedule",
    ),
    trigger_patterns={
        "en": (
            "what do i have",
            "what events",
            "when is my",
            "show my calendar",
            "show my schedule",
            "am i free",
            "am i available",
            "check calendar",
            "check schedule",
            "what's on",
            "how many hours",
        ),
        "he": ("מה יש לי", "מה האירועים", "מתי יש לי", "מתי הפגישה", "הראה לי את היומן"),
    },
    examples=(
        SchemaExample("What do I have tomorrow?", "list_events"),
        SchemaExample("When is my meeting with Sarah?", "find_event"),
        SchemaExample("Am I free on Monday?", "check_availability"),
    ),
    priority=65,
)

CALENDAR_MUTATE_SCHEMA = CapabilitySchema(
    name="calendar_mutate_resolver",
    capability=Capability.CALENDAR,
    summary="Create, update, and delete calendar events, including recurring events and bulk changes.",
    action_hints=(
        "create_event",
        "update_event",
        "delete_event",
        "create_recurring",
        "delete_events_by_window",
        "update_events_by_window",
    ),
    trigger_patterns={
        "en": (
            "add to calendar",
            "schedule",
            "create event",
            "set up meeting",
            "delete event",
            "cancel meeting",
            "reschedule",
            "update event",
            "change the meeting",
            "every week",
            "recurring",
            "clear all events",
            "delete all events",
            "postpone all",
        ),
        "he": ("תוסיף ליומן", "תקבע", "קבע לי", "צור אירוע", "מחק אירוע", "בטל פגישה"),
    },
    examples=(
        SchemaExample("Schedule a meeting with John tomorrow at 2pm", "create_event"),
        SchemaExample("Cancel my 3pm appointment", "delete_event"),
        SchemaExample("postpone all morning events tomorrow to Saturday", "update_events_by_window"),
    ),
    priority=60,
)

DATABASE_TASK_SCHEMA = CapabilitySchema(
    name="database_task_resolver",
    capability=Capability.DATABASE,
    summary=(
        "Manage tasks and reminders. Create, complete, update, delete, and list tasks/reminders, "
        "including bulk operations."
    ),
    action_hints=(
        "create_task",
        "create_reminder",
        "list_tasks",
        "complete_task",
        "update_task",
        "delete_task",
        "delete_reminder",
        "delete_all_tasks",
    ),
    trigger_patterns={
        "en": (
            "remind me",
            "reminder",
            "task",
            "to-do",
            "todo",
            "what are my tasks",
            "what reminders",
            "done with",
            "finished",
            "completed",
            "delete task",
            "delete reminder",
            "add task",
            "nudge me",
        ),
        "he": ("תזכיר לי", "תזכירי לי", "תזכורת", "תזכורות", "משימה", "משימות"),
    },
    examples=(
        SchemaExample("Remind me to call mom at 5pm", "create_reminder"),
        SchemaExample("What are my tasks for today?", "list_tasks"),
        SchemaExample("I'm done with the report", "complete_task"),
    ),
    priority=60,
)

DATABASE_LIST_SCHEMA = CapabilitySchema(
    name="database_list_resolver",
    capability=Capability.DATABASE,
    summary="Manage named lists (shopping, movies, etc.). Only when the user explicitly says 'list'.",
    action_hints=(
        "create_list",
        "add_to_list",
        "get_list",
        "list_lists",
        "toggle_item",
        "delete_item",
        "delete_list",
    ),
    trigger_patterns={
        "en": (
            "shopping list",
            "create a list",
            "add to list",
            "add to the list",
            "to my list",
            "delete list",
            "what lists",
            "my lists",
        ),
        "he": ("רשימה", "רשימת", "תיצור רשימה", "הוסף לרשימה"),
    },
    examples=(
        SchemaExample("Create a shopping list with milk, bread, eggs", "create_list"),
        SchemaExample("Add butter to my shopping list", "add_to_list"),
    ),
    priority=55,
)

GMAIL_SCHEMA = CapabilitySchema(
    name="gmail_resolver",
    capability=Capability.GMAIL,
    summary="Email management. Read inbox, search emails, send new emails, reply, mark read/unread.",
    action_hints=(
        "list_emails",
        "get_email",
        "search_emails",
        "send_email",
        "reply_email",
        "mark_read",
        "mark_unread",
    ),
    trigger_patterns={
        "en": (
            "email",
            "inbox",
            "check my email",
            "send email",
            "send an email",
            "reply to",
            "mailbox",
        ),
        "he": ("מייל", "אימייל", "מה יש לי במייל", "שלח מייל"),
    },
    examples=(
        SchemaExample("Check my email", "list_emails"),
        SchemaExample("Send an email to john@example.com", "send_email"),
        SchemaExample("Reply to Sarah's email", "reply_email"),
    ),
    priority=45,
)

SECOND_BRAIN_SCHEMA = CapabilitySchema(
    name="secondbrain_resolver",
    capability=Capability.SECOND_BRAIN,
    summary=(
        "Semantic long-term memory vault. Store notes, contacts, and key-value facts; "
        "search and retrieve previously saved memories."
    ),
    action_hints=(
        "store_memory",
        "search_memory",
        "list_memories",
        "update_memory",
        "delete_memory",
    ),
    trigger_patterns={
        "en": (
            "remember that",
            "save that",
            "store that",
            "note that",
            "what did i say about",
            "what did i save",
            "what do you remember",
            "delete what i saved",
            "save contact",
            "password is",
            "bill is",
            "find contact",
        ),
        "he": ("תזכור ש", "תזכרי ש", "זכור ש", "שמור ש"),
    },
    examples=(
        SchemaExample("Remember that the project deadline is January 15th", "store_memory"),
        SchemaExample("What did I save about the meeting?", "search_memory"),
        SchemaExample("WiFi password is 1234", "store_memory"),
    ),
    priority=40,
)

META_SCHEMA = CapabilitySchema(
    name="meta_resolver",
    capability=Capability.META,
    summary="Information about the assistant and the user's account: capabilities, help, status, plan.",
    action_hints=(
        "describe_capabilities",
        "help",
        "status",
        "about_agent",
        "plan_info",
        "account_status",
    ),
    trigger_patterns={
        "en": (
            "what can you do",
            "what are your capabilities",
            "how to use",
            "who are you",
            "my plan",
            "what plan",
            "am i connected",
        ),
        "he": ("מה אתה יכול", "מה את יכולה", "עזרה", "איך להשתמש"),
    },
    examples=(
        SchemaExample("What can you do?", "describe_capabilities"),
        SchemaExample("Who are you?", "about_agent"),
        SchemaExample("What plan am I on?", "plan_info"),
    ),
    priority=20,
)

GENERAL_SCHEMA = CapabilitySchema(
    name="general_resolver",
    capability=Capability.GENERAL,
    summary="Conversational replies for questions, advice, brainstorming, and general chat.",
    action_hints=(
        "respond",
        "chat",
        "greet",
        "acknowledge",
        "advise",
        "brainstorm",
    ),
    trigger_patterns={
        "en": (
            "hello",
            "hey",
            "good morning",
            "good evening",
            "thanks",
            "thank you",
            "how are you",
            "help me think",
            "give me advice",
        ),
        "he": ("שלום", "היי", "בוקר טוב", "תודה", "מה שלומך"),
    },
    examples=(
        SchemaExample("Hello!", "greet"),
        SchemaExample("Help me brainstorm ideas", "brainstorm"),
    ),
    priority=10,
)

_REGISTRATION_ORDER: tuple[CapabilitySchema, ...] = (
    META_SCHEMA,
    DATABASE_TASK_SCHEMA,
    DATABASE_LIST_SCHEMA,
    CALENDAR_FIND_SCHEMA,
    CALENDAR_MUTATE_SCHEMA,
    GMAIL_SCHEMA,
    SECOND_BRAIN_SCHEMA,
    GENERAL_SCHEMA,
)

# sorted() is stable, so equal priorities keep registration order.
CAPABILITY_SCHEMAS: tuple[CapabilitySchema, ...] = tuple(
    sorted(_REGISTRATION_ORDER, key=lambda schema: schema.priority, reverse=True)
)


def get_schema_by_name(name: str) -> CapabilitySchema | None:
    for schema in CAPABILITY_SCHEMAS:
        if schema.name == name:
            return schema
    return None


def get_schemas_for_capability(capability: Capability | str) -> list[CapabilitySchema]:
    capability = Capability(capability)
    return [schema for schema in CAPABILITY_SCHEMAS if schema.capability is capability]


def match_patterns(
    message: str,
    schemas: Sequence[CapabilitySchema] = CAPABILITY_SCHEMAS,
) -> list[PatternMatch]:
    """Score every schema against ``message``.

    Each trigger phrase found as a substring of the case-folded message is
    worth 10 points, plus ``priority / 10``. Only schemas with at least one
    matching phrase are returned, best score first; ties keep catalog order.
    """

    normalized = message.casefold()
    results: list[PatternMatch] = []

    for schema in schemas:
        matched = tuple(
            pattern for pattern in schema.iter_patterns() if pattern.casefold() in normalized
        )
        if not matched:
            continue
        score = len(matched) * 10 + schema.priority / 10
        results.append(PatternMatch(schema=schema, score=score, matched_patterns=matched))

    results.sort(key=lambda match: match.score, reverse=True)
    return results


def get_best_match(message: str) -> PatternMatch | None:
    matches = match_patterns(message)
    return matches[0] if matches else None


def routing_suggestions(message: str) -> list[RoutingSuggestion]:
    return [match.to_suggestion() for match in match_patterns(message)]


def format_schemas_for_prompt(schemas: Sequence[CapabilitySchema] = CAPABILITY_SCHEMAS) -> str:
    """Render the catalog as planner context for the classification capability."""

    lines = ["## RESOLVER CAPABILITIES (USE FOR ROUTING)", ""]
    for schema in schemas:
        lines.append(f"### {schema.name}")
        lines.append(f"- Capability: {schema.capability.value}")
        lines.append(f"- Purpose: {schema.summary}")
        lines.append(f"- Actions: {', '.join(schema.action_hints)}")
        for language, phrases in schema.trigger_patterns.items():
            lines.append(f"- Patterns {language.upper()}: {', '.join(phrases[:5])}")
        if schema.examples:
            lines.append("- Examples:")
            for example in schema.examples[:2]:
                lines.append(f'  - "{example.input}" -> action="{example.action}"')
        lines.append("")
    return "\n".join(lines)


def format_disambiguation_message(matches: Sequence[PatternMatch], language: str = "en") -> str:
    """Human-readable question listing the candidate capabilities."""

    options = "\n".join(
        f"{index}. {match.schema.summary.split('.')[0]}" for index, match in enumerate(matches, start=1)
    )
    if language == "he":
        return f"מצאתי כמה התאמות אפשריות:\n{options}\n\nלמה התכוונת?"
    return f"I found several possible matches:\n{options}\n\nWhich one did you mean?"
