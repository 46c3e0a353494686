"""Turn a finished state into the reply sent back to the user."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from assistant.core.errors import AssistantError
from assistant.state.models import ConversationState, ExecutionResult

VERB_TEMPLATES = {
    "create": "Done, I added {subject}.",
    "add": "Added {subject}.",
    "store": "Got it, I'll remember {subject}.",
    "save": "Saved {subject}.",
    "update": "Updated {subject}.",
    "delete": "Deleted {subject}.",
    "complete": "Nice work, {subject} is marked as done.",
    "send": "Sent {subject}.",
    "reply": "Replied {subject}.",
    "toggle": "Updated {subject}.",
    "mark": "Marked {subject}.",
}


class ResponseFormatter(ABC):
    """Produces ``formatted_response`` and ``final_response`` for a completed turn."""

    @abstractmethod
    def format(self, state: ConversationState) -> tuple[dict[str, Any], str]:
        """Return the structured payload and the reply text."""


class TemplateFormatter(ResponseFormatter):
    """Plain-text replies assembled from per-step templates."""

    def format(self, state: ConversationState) -> tuple[dict[str, Any], str]:
        lines: list[str] = []
        steps: list[dict[str, Any]] = []

        for step in state.plan:
            execution = state.execution_results.get(step.id)
            args = state.executor_args.get(step.id, {})
            if execution is None:
                steps.append({"step_id": step.id, "status": "unresolved"})
                continue
            steps.append(
                {
                    "step_id": step.id,
                    "action": args.get("action", step.action),
                    "status": "ok" if execution.success else "failed",
                    "already_committed": execution.already_committed,
                }
            )
            if execution.success:
                lines.append(self.describe_success(args, execution))

        if state.error:
            lines.append(AssistantError.user_message)

        text = "\n".join(line for line in lines if line) or AssistantError.user_message
        return {"steps": steps, "error": state.error}, text

    @staticmethod
    def describe_success(args: dict[str, Any], execution: ExecutionResult) -> str:
        data = execution.data or {}
        if data.get("reply"):
            return str(data["reply"])

        action = str(args.get("action", ""))
        verb = action.split("_", 1)[0]
        subject = args.get("text") or args.get("summary") or args.get("item") or args.get("list_name")
        subject = f'"{subject}"' if subject else "it"

        if "items" in data:
            items = data["items"]
            if not items:
                return "Nothing found."
            labels = [
                str(item.get("text") or item.get("summary") or item.get("item") or item.get("id"))
                for item in items
            ]
            return f"Found {len(items)}: " + ", ".join(labels)
        if "count" in data:
            return f"{action.replace('_', ' ').capitalize()}: {data['count']} affected."
        template = VERB_TEMPLATES.get(verb)
        if template:
            return template.format(subject=subject)
        return "Done."
