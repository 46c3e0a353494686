"""Built-in resolvers for every capability domain."""

from __future__ import annotations

import re
from typing import Any

from assistant.registry.schemas import (
    CALENDAR_FIND_SCHEMA,
    CALENDAR_MUTATE_SCHEMA,
    DATABASE_LIST_SCHEMA,
    DATABASE_TASK_SCHEMA,
    GENERAL_SCHEMA,
    GMAIL_SCHEMA,
    META_SCHEMA,
    SECOND_BRAIN_SCHEMA,
)
from assistant.resolvers.base import TemplateResolver
from assistant.state.models import (
    Capability,
    ClarifyResult,
    ConversationState,
    ExecuteResult,
    PlanStep,
    UserContext,
)

TIME_PATTERN = re.compile(
    r"\b(?:today|tonight|tomorrow|this (?:morning|afternoon|evening|week|weekend)|next week|"
    r"(?:on |next )?(?:monday|tuesday|wednesday|thursday|friday|saturday|sunday)|"
    r"at \d{1,2}(?::\d{2})?\s*(?:am|pm)?|\d{1,2}(?::\d{2})?\s*(?:am|pm)|\d{1,2}/\d{1,2}(?:/\d{2,4})?)\b"
    r"|היום|מחר|בשעה \d{1,2}(?::\d{2})?",
    re.IGNORECASE,
)
EMAIL_PATTERN = re.compile(r"[\w.+-]+@[\w-]+\.[\w.-]+")


def extract_time(raw: str) -> str:
    return " ".join(match.group(0).strip() for match in TIME_PATTERN.finditer(raw))


def strip_time(raw: str) -> str:
    return re.sub(r"\s{2,}", " ", TIME_PATTERN.sub("", raw)).strip(" ,.")


class CalendarFindResolver(TemplateResolver):
    """Reads the calendar: listings, lookups and availability checks."""

    name = "calendar_find_resolver"
    capability = Capability.CALENDAR
    actions = CALENDAR_FIND_SCHEMA.action_hints
    entity_type = "calendar_event"
    default_action = "list_events"
    required = {"find_event": ("text",)}
    questions = {"text": ("Which event are you looking for?", "איזה אירוע לחפש?")}
    prefixes = ("when is my", "when is", "find my", "find the", "find")

    def extract_constraints(self, step: PlanStep, action: str, raw: str) -> dict[str, Any]:
        constraints: dict[str, Any] = {}
        window = extract_time(raw)
        if window:
            constraints["window"] = window
        if action == "find_event":
            text = self.extract_text(strip_time(raw))
            if text:
                constraints["text"] = text
        return constraints


class CalendarMutateResolver(TemplateResolver):
    """Creates, moves and deletes calendar events."""

    name = "calendar_mutate_resolver"
    capability = Capability.CALENDAR
    actions = CALENDAR_MUTATE_SCHEMA.action_hints
    entity_type = "calendar_event"
    default_action = "create_event"
    required = {
        "create_event": ("summary", "start"),
        "create_recurring": ("summary", "start"),
        "update_event": ("text",),
        "delete_event": ("text",),
        "delete_events_by_window": ("window",),
        "update_events_by_window": ("window",),
    }
    questions = {
        "summary": ("What should I call the event?", "איך לקרוא לאירוע?"),
        "start": ("When should it start?", "מתי האירוע מתחיל?"),
        "text": ("Which event do you mean?", "לאיזה אירוע הכוונה?"),
        "window": ("For which day or time range?", "לאיזה יום או טווח שעות?"),
    }
    prefixes = (
        "add to calendar",
        "add to my calendar",
        "schedule",
        "set up",
        "create event",
        "create an event",
        "reschedule",
        "cancel",
        "delete event",
        "delete",
        "move",
        "postpone",
        "תקבע",
        "קבע לי",
        "צור אירוע",
        "מחק אירוע",
        "בטל",
    )
    targeted_actions = frozenset({"update_event", "delete_event"})

    def extract_constraints(self, step: PlanStep, action: str, raw: str) -> dict[str, Any]:
        constraints: dict[str, Any] = {}
        when = extract_time(raw)
        text = self.extract_text(strip_time(raw))
        if action.endswith("_by_window"):
            if when:
                constraints["window"] = when
            return constraints
        if action.startswith("create"):
            if text:
                constraints["summary"] = text
            if when:
                constraints["start"] = when
            return constraints
        if text:
            constraints["text"] = text
        if when:
            constraints["start"] = when
        return constraints


class DatabaseTaskResolver(TemplateResolver):
    """Tasks and reminders."""

    name = "database_task_resolver"
    capability = Capability.DATABASE
    actions = DATABASE_TASK_SCHEMA.action_hints
    entity_type = "task"
    default_action = "create_task"
    required = {
        "create_task": ("text",),
        "create_reminder": ("text",),
        "complete_task": ("text",),
        "update_task": ("text",),
        "delete_task": ("text",),
        "delete_reminder": ("text",),
    }
    questions = {"text": ("Which task do you mean?", "לאיזו משימה הכוונה?")}
    prefixes = (
        "remind me",
        "nudge me",
        "add a task",
        "add task",
        "create a task",
        "new task",
        "i'm done with",
        "i am done with",
        "done with",
        "i finished",
        "mark",
        "delete the reminder",
        "delete reminder",
        "delete the task",
        "delete task",
        "delete",
        "remove",
        "תזכיר לי",
        "תזכירי לי",
        "סיימתי",
        "מחק",
    )
    targeted_actions = frozenset({"complete_task", "update_task", "delete_task", "delete_reminder"})

    def extract_constraints(self, step: PlanStep, action: str, raw: str) -> dict[str, Any]:
        if action in {"list_tasks", "delete_all_tasks"}:
            return {}
        constraints: dict[str, Any] = {}
        due = extract_time(raw)
        if due and action.startswith("create"):
            constraints["due"] = due
            raw = strip_time(raw)
        text = self.extract_text(raw)
        if action == "complete_task":
            text = re.sub(r"\s+as done$", "", text, flags=re.IGNORECASE)
        if text:
            constraints["text"] = text
        return constraints


class DatabaseListResolver(TemplateResolver):
    """Named lists and their items."""

    name = "database_list_resolver"
    capability = Capability.DATABASE
    actions = DATABASE_LIST_SCHEMA.action_hints
    entity_type = "list"
    default_action = "get_list"
    required = {
        "create_list": ("list_name",),
        "add_to_list": ("list_name", "item"),
        "get_list": ("list_name",),
        "toggle_item": ("list_name", "item"),
        "delete_item": ("list_name", "item"),
        "delete_list": ("list_name",),
    }
    questions = {
        "list_name": ("Which list?", "איזו רשימה?"),
        "item": ("Which item?", "איזה פריט?"),
    }

    LIST_NAME = re.compile(r"(?:^|\s)(?:my |the |a |an )?([\w-]+) list\b", re.IGNORECASE)
    ITEM = re.compile(r"^(?:please\s+)?(?:add|remove|delete|check off|toggle)\s+(.+?)\s+(?:to|from|on)\b", re.IGNORECASE)
    ITEMS_WITH = re.compile(r"\bwith\s+(.+)$", re.IGNORECASE)

    def extract_constraints(self, step: PlanStep, action: str, raw: str) -> dict[str, Any]:
        constraints: dict[str, Any] = {}
        name = self.LIST_NAME.search(raw)
        if name and name.group(1).lower() not in {"a", "the", "my", "new"}:
            constraints["list_name"] = name.group(1).lower()
        item = self.ITEM.search(raw.strip())
        if item:
            constraints["item"] = item.group(1).strip(" ,.")
        elif action == "create_list":
            items = self.ITEMS_WITH.search(raw)
            if items:
                constraints["items"] = [part.strip() for part in re.split(r",|\band\b", items.group(1)) if part.strip()]
        return constraints


class GmailResolver(TemplateResolver):
    """Mailbox reads and outgoing mail."""

    name = "gmail_resolver"
    capability = Capability.GMAIL
    actions = GMAIL_SCHEMA.action_hints
    entity_type = "email"
    default_action = "list_emails"
    required = {
        "send_email": ("to", "text"),
        "reply_email": ("text",),
        "get_email": ("text",),
        "search_emails": ("text",),
        "mark_read": ("text",),
        "mark_unread": ("text",),
    }
    questions = {
        "to": ("Who should I send it to?", "למי לשלוח?"),
        "text": ("What should it say?", "מה לכתוב?"),
    }
    targeted_actions = frozenset({"reply_email", "mark_read", "mark_unread"})

    BODY = re.compile(r"\b(?:saying|that says|with the message)\s+(.+)$|:\s*(.+)$", re.IGNORECASE)

    def extract_constraints(self, step: PlanStep, action: str, raw: str) -> dict[str, Any]:
        if action == "list_emails":
            return {}
        constraints: dict[str, Any] = {}
        address = EMAIL_PATTERN.search(raw)
        if address:
            constraints["to"] = address.group(0)
        body = self.BODY.search(raw)
        if body:
            constraints["text"] = (body.group(1) or body.group(2)).strip()
        elif action not in {"send_email", "reply_email"}:
            text = re.sub(r"^(?:search|find|get|read|mark)\s+(?:my\s+)?(?:emails?\s+)?(?:from|about)?\s*", "", raw.strip(), flags=re.IGNORECASE)
            if text:
                constraints["text"] = text.strip(" ,.")
        return constraints


class SecondBrainResolver(TemplateResolver):
    """Long-term memory: notes, contacts and key facts."""

    name = "secondbrain_resolver"
    capability = Capability.SECOND_BRAIN
    actions = SECOND_BRAIN_SCHEMA.action_hints
    entity_type = "memory"
    default_action = "store_memory"
    required = {
        "store_memory": ("text",),
        "search_memory": ("text",),
        "update_memory": ("text",),
        "delete_memory": ("text",),
    }
    questions = {"text": ("What should I remember?", "מה לזכור?")}
    prefixes = (
        "remember that",
        "save that",
        "store that",
        "note that",
        "what did i say about",
        "what did i save about",
        "what do you remember about",
        "delete what i saved about",
        "forget",
        "save contact",
        "find contact",
        "תזכור ש",
        "תזכרי ש",
        "זכור ש",
        "שמור ש",
    )
    targeted_actions = frozenset({"update_memory", "delete_memory"})

    def extract_constraints(self, step: PlanStep, action: str, raw: str) -> dict[str, Any]:
        if action == "list_memories":
            return {}
        text = self.extract_text(raw)
        return {"text": text.rstrip("?")} if text else {}


class GeneralResolver(TemplateResolver):
    """Conversational replies that need no backend."""

    name = "general_resolver"
    capability = Capability.GENERAL
    actions = GENERAL_SCHEMA.action_hints
    entity_type = "message"
    default_action = "respond"

    REPLIES = {
        "greet": ("Hi! How can I help you today?", "היי! איך אפשר לעזור?"),
        "acknowledge": ("You're welcome!", "בשמחה!"),
    }
    FALLBACK = (
        "I can help with your calendar, tasks, lists, email and notes. What would you like to do?",
        "אני יכול לעזור עם היומן, משימות, רשימות, מיילים והערות. במה לעזור?",
    )

    def extract_constraints(self, step: PlanStep, action: str, raw: str) -> dict[str, Any]:
        return {"text": raw.strip()} if raw.strip() else {}

    async def resolve(self, step: PlanStep, state: ConversationState) -> ExecuteResult | ClarifyResult:
        result = await super().resolve(step, state)
        if not isinstance(result, ExecuteResult) or result.args.get("reply"):
            return result
        args = dict(result.args)
        action = args["action"]
        if action == "greet" and re.match(r"^(thanks|thank you|תודה)", str(args.get("text", "")).lower()):
            action = "acknowledge"
        english, hebrew = self.REPLIES.get(action, self.FALLBACK)
        args["reply"] = hebrew if state.user.language == "he" else english
        return ExecuteResult(step_id=result.step_id, args=args)


def describe_capabilities(user: UserContext) -> str:
    enabled = ["tasks and reminders", "lists", "notes and memories"]
    if user.capabilities.calendar:
        enabled.insert(0, "your calendar")
    if user.capabilities.gmail:
        enabled.append("email")
    return "I can help with " + ", ".join(enabled[:-1]) + f" and {enabled[-1]}."


class MetaResolver(TemplateResolver):
    """Answers questions about the assistant itself and the user's account."""

    name = "meta_resolver"
    capability = Capability.META
    actions = META_SCHEMA.action_hints + ("website",)
    entity_type = "message"
    default_action = "describe_capabilities"

    def extract_constraints(self, step: PlanStep, action: str, raw: str) -> dict[str, Any]:
        return {}

    async def resolve(self, step: PlanStep, state: ConversationState) -> ExecuteResult | ClarifyResult:
        result = await super().resolve(step, state)
        if not isinstance(result, ExecuteResult):
            return result
        args = dict(result.args)
        args["reply"] = self.reply_for(args["action"], state.user)
        return ExecuteResult(step_id=result.step_id, args=args)

    @staticmethod
    def reply_for(action: str, user: UserContext) -> str:
        flags = user.capabilities
        if action == "about_agent":
            return "I'm your personal assistant for scheduling, reminders, lists, email and notes."
        if action == "plan_info":
            return f"You're on the {user.plan_tier} plan."
        if action in {"account_status", "status"}:
            calendar = "connected" if flags.calendar else "not connected"
            gmail = "connected" if flags.gmail else "not connected"
            return f"Calendar is {calendar}; Gmail is {gmail}."
        if action == "help":
            return describe_capabilities(user) + " Just tell me what you need in your own words."
        if action == "website":
            return "You can manage your account from the web dashboard."
        return describe_capabilities(user)
