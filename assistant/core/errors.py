"""Exception taxonomy and HTTP exception handling utilities."""

from __future__ import annotations

import logging

from fastapi import Request
from fastapi.responses import JSONResponse

logger = logging.getLogger("assistant.errors")


class AssistantError(Exception):
    """Base class for every error raised by the orchestration core."""

    user_message = "Something went wrong while handling your request. Could you rephrase it?"


class ValidationError(AssistantError):
    """A plan step is missing constraints its action requires."""

    def __init__(self, step_id: str, missing: list[str]) -> None:
        self.step_id = step_id
        self.missing = list(missing)
        super().__init__(f"Step {step_id} is missing required constraints: {', '.join(self.missing)}")


class HandlerError(AssistantError):
    """A resolver, or a classifier/adapter call it made, failed."""

    def __init__(self, handler: str, step_id: str, cause: BaseException | str) -> None:
        self.handler = handler
        self.step_id = step_id
        self.cause = cause
        super().__init__(f"Resolver error in {handler} for step {step_id}: {cause}")


class InterruptTimeoutError(AssistantError):
    """A resume arrived after the clarification window closed."""

    user_message = "This request has expired. Please send it again."


class InterruptMismatchError(AssistantError):
    """A resume does not answer the clarification that is pending."""

    user_message = "That reply doesn't match the question I asked. Could you answer it again?"


class UnknownCapabilityError(AssistantError):
    """No registered resolver accepts a plan step's capability and action."""

    def __init__(self, capability: str, action: str) -> None:
        self.capability = capability
        self.action = action
        super().__init__(f"No resolver found for {capability}:{action}")


class ClassificationError(AssistantError):
    """The natural-language classifier failed or returned an unusable payload."""


class AdapterError(AssistantError):
    """A domain adapter failed while executing an operation."""


class TransientDeliveryError(AssistantError):
    """A delivery failure worth retrying (network blips, upstream 5xx)."""


class UnknownStateFieldError(AssistantError, KeyError):
    """A state update names a field that has no merge policy."""


class PendingInterruptConflictError(AssistantError):
    """A second clarification was stored while another one is still pending."""


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:  # noqa: D401
    """Return a generic JSON error response while logging the exception."""

    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content={
            "error": "internal_error",
            "message": "Something unexpected happened. Please try again later.",
        },
    )
