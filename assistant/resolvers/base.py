"""Base classes for capability resolvers.

A resolver turns one plan step into either a concrete operation payload
(:class:`ExecuteResult`) or a question for the human (:class:`ClarifyResult`).
Resolvers never call adapters to change anything; the execution phase does
that after the idempotency check.
"""

from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Mapping

from assistant.adapters.base import Adapter, Candidate
from assistant.classifier import Classifier, record_classifier_call
from assistant.core.errors import ClassificationError, HandlerError, ValidationError
from assistant.dispatch.hitl import DEFAULT_TIMEOUT_SECONDS, suspend_update
from assistant.state.models import (
    Capability,
    ClarifyResult,
    ConversationState,
    ExecuteResult,
    HITLResultEntry,
    PlanStep,
    ReturnTo,
)

FILL_MODE_PREFIX = "fill:"

ENTITY_NAMES_HE = {
    "calendar_event": "אירועים",
    "task": "משימות",
    "list": "רשימות",
    "email": "אימיילים",
    "memory": "זכרונות",
}


class Resolver(ABC):
    """Capability handler interface."""

    name: str
    capability: Capability
    actions: tuple[str, ...] = ()
    entity_type: str = "item"

    def can_handle(self, action: str) -> bool:
        return action in self.actions

    def accepts(self, step: PlanStep) -> bool:
        return step.capability is self.capability and self.can_handle(step.action)

    def find_step(self, state: ConversationState, step_id: str | None = None) -> PlanStep | None:
        """First unresolved step of this resolver's capability, optionally pinned to ``step_id``."""

        for step in state.plan:
            if step_id is not None and step.id != step_id:
                continue
            if step.capability is self.capability and step.id not in state.resolver_results:
                return step
        return None

    def find_clarification(
        self,
        state: ConversationState,
        step: PlanStep,
        mode: str = "continue",
    ) -> HITLResultEntry | None:
        return state.hitl_results.get(ReturnTo(step_id=step.id, mode=mode).key)

    @abstractmethod
    async def resolve(self, step: PlanStep, state: ConversationState) -> ExecuteResult | ClarifyResult:
        """Produce an operation payload or a clarification request for ``step``."""

    async def run(
        self,
        state: ConversationState,
        step_id: str | None = None,
        *,
        hitl_timeout_seconds: int = DEFAULT_TIMEOUT_SECONDS,
        now: datetime | None = None,
    ) -> dict[str, Any]:
        """Resolve this resolver's next step and return the matching state update.

        Returns an empty update when no unresolved step is left for it.
        """

        step = self.find_step(state, step_id)
        if step is None:
            return {}
        result = await self.resolve(step, state)
        return result_update(self, result, hitl_timeout_seconds=hitl_timeout_seconds, now=now)

    def describe(self) -> str:
        return self.__doc__ or self.name


def result_update(
    resolver: Resolver,
    result: ExecuteResult | ClarifyResult,
    *,
    hitl_timeout_seconds: int = DEFAULT_TIMEOUT_SECONDS,
    now: datetime | None = None,
) -> dict[str, Any]:
    if isinstance(result, ClarifyResult):
        return suspend_update(result, resolver.entity_type, hitl_timeout_seconds, now)
    return {
        "resolver_results": {result.step_id: result},
        "executor_args": {result.step_id: dict(result.args)},
    }


class TemplateResolver(Resolver):
    """Declarative resolver: extracts arguments, asks for what is missing, then executes.

    Subclasses describe their behaviour with class attributes:

    * ``default_action`` used when the step's action is not one of ``actions``
      (capability-level fallback routing);
    * ``required`` maps an action to the constraint keys it cannot run without;
    * ``questions`` maps a constraint key to the ``(en, he)`` question asked when
      it is missing;
    * ``prefixes`` are leading phrases stripped from the message to get ``text``;
    * ``targeted_actions`` act on an existing entity and go through candidate
      lookup when an adapter is available.
    """

    default_action: str = ""
    required: Mapping[str, tuple[str, ...]] = {}
    questions: Mapping[str, tuple[str, str]] = {}
    prefixes: tuple[str, ...] = ()
    targeted_actions: frozenset[str] = frozenset()

    def __init__(self, classifier: Classifier | None = None, lookup: Adapter | None = None) -> None:
        self.classifier = classifier
        self.lookup = lookup
        self._logger = logging.getLogger(f"assistant.resolvers.{self.name}")

    def effective_action(self, step: PlanStep) -> str:
        return step.action if self.can_handle(step.action) else self.default_action

    def extract_text(self, raw: str) -> str:
        text = raw.strip()
        lowered = text.lower()
        for prefix in sorted(self.prefixes, key=len, reverse=True):
            if lowered.startswith(prefix):
                text = text[len(prefix):]
                break
        text = re.sub(r"^(to|that|about|the|my|a|an)\s+", "", text.strip(), flags=re.IGNORECASE)
        return text.strip(" ,.:!?")

    def extract_constraints(self, step: PlanStep, action: str, raw: str) -> dict[str, Any]:
        """Arguments recoverable from the message itself. Override for domain-specific parsing."""

        text = self.extract_text(raw)
        return {"text": text} if text else {}

    async def classify_constraints(self, step: PlanStep, action: str, state: ConversationState) -> dict[str, Any]:
        if self.classifier is None:
            return {}
        system_context = (
            f"Extract the arguments for the '{action}' action of {self.name}. "
            "Reply with a flat JSON object of argument names to values."
        )
        user_context = f"{state.now.formatted}\n\n{step.constraints.get('raw_message', state.input.text)}"
        record_classifier_call()
        try:
            payload = await self.classifier.classify(system_context, user_context)
        except ClassificationError as exc:
            raise HandlerError(self.name, step.id, exc) from exc
        return {key: value for key, value in payload.items() if value not in (None, "")}

    def missing(self, action: str, constraints: Mapping[str, Any]) -> list[str]:
        return [key for key in self.required.get(action, ()) if not constraints.get(key)]

    def question_for(self, key: str, language: str) -> str:
        english, hebrew = self.questions.get(key, (f"Could you tell me the {key}?", f"מה ה{key}?"))
        return hebrew if language == "he" else english

    def build_args(self, action: str, constraints: Mapping[str, Any]) -> dict[str, Any]:
        args = {key: value for key, value in constraints.items() if key != "raw_message"}
        args["action"] = action
        args["entity"] = self.entity_type
        return args

    def disambiguation_question(self, candidates: list[Candidate], language: str) -> str:
        options = "\n".join(f"{index}. {candidate.display}" for index, candidate in enumerate(candidates, start=1))
        if language == "he":
            entity = ENTITY_NAMES_HE.get(self.entity_type, self.entity_type)
            return f"מצאתי כמה {entity}:\n{options}\n\nאיזה התכוונת?"
        entity = self.entity_type.replace("_", " ")
        return f"I found multiple {entity}s:\n{options}\n\nWhich {entity} did you mean?"

    @staticmethod
    def pick_candidate(candidates: list[Candidate], answer: str) -> Candidate | None:
        answer = answer.strip()
        digits = re.match(r"^(\d+)", answer)
        if digits:
            index = int(digits.group(1)) - 1
            if 0 <= index < len(candidates):
                return candidates[index]
        lowered = answer.casefold()
        for candidate in candidates:
            if candidate.display.casefold() == lowered:
                return candidate
        for candidate in candidates:
            if lowered and lowered in candidate.display.casefold():
                return candidate
        return None

    async def resolve(self, step: PlanStep, state: ConversationState) -> ExecuteResult | ClarifyResult:
        action = self.effective_action(step)
        language = state.user.language
        raw = str(step.constraints.get("raw_message") or state.input.text)

        constraints: dict[str, Any] = self.extract_constraints(step, action, raw)
        constraints.update({key: value for key, value in step.constraints.items() if value not in (None, "")})
        constraints.update(await self.classify_constraints(step, action, state))

        for key in self.required.get(action, ()):
            answer = self.find_clarification(state, step, mode=f"{FILL_MODE_PREFIX}{key}")
            if answer is not None and not constraints.get(key):
                constraints[key] = answer.raw.strip()

        missing = self.missing(action, constraints)
        if missing:
            error = ValidationError(step.id, missing)
            self._logger.info("%s; asking the user", error)
            return ClarifyResult(
                step_id=step.id,
                question=self.question_for(missing[0], language),
                mode=f"{FILL_MODE_PREFIX}{missing[0]}",
            )

        if action in self.targeted_actions and self.lookup is not None and not constraints.get("target_id"):
            candidates = self.lookup.find(self.entity_type, str(constraints.get("text", "")))
            if len(candidates) == 1:
                constraints["target_id"] = candidates[0].id
            elif len(candidates) > 1:
                selection = self.find_clarification(state, step)
                chosen = self.pick_candidate(candidates, selection.raw) if selection else None
                if chosen is None:
                    return ClarifyResult(
                        step_id=step.id,
                        question=self.disambiguation_question(candidates, language),
                        options=tuple(candidate.display for candidate in candidates),
                    )
                constraints["target_id"] = chosen.id

        return ExecuteResult(step_id=step.id, args=self.build_args(action, constraints))
