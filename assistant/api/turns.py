"""API routes for conversation turns, resumes and thread inspection."""

from __future__ import annotations

from typing import Any, Literal

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from assistant.engine import ConversationEngine, TurnResult
from assistant.registry.schemas import match_patterns
from assistant.state.models import CapabilityFlags, ReturnTo, TriggerType, UserContext


class ReplyTo(BaseModel):
    step_id: str
    mode: str = "continue"


class UserPayload(BaseModel):
    user_id: str | None = None
    timezone: str | None = None
    language: Literal["he", "en", "other"] | None = None
    plan_tier: str = "free"
    user_name: str | None = None
    calendar: bool = False
    gmail: bool = False


class ChatRequest(BaseModel):
    thread_id: str | None = None
    content: str | None = None
    trigger_type: TriggerType = TriggerType.USER
    reply_to: ReplyTo | None = None
    message_id: str | None = None
    user: UserPayload | None = None


class ResumeRequest(BaseModel):
    thread_id: str | None = None
    step_id: str | None = None
    mode: str = Field(default="continue", description="Echo pending.return_to.mode from the chat response.")
    content: str | None = None


class RetryRequest(BaseModel):
    thread_id: str | None = None


def serialize_turn(result: TurnResult) -> dict[str, Any]:
    pending = None
    if result.pending is not None:
        pending = result.pending.to_payload() | {"hitl_id": result.pending.hitl_id}
    return {
        "thread_id": result.thread_id,
        "status": result.status,
        "message": result.message,
        "pending": pending,
        "error": result.error,
        "resume_outcome": result.resume_outcome.value if result.resume_outcome else None,
        "retryable": result.retryable,
        "results": {
            step_id: {
                "success": execution.success,
                "data": execution.data or {},
                "error": execution.error,
                "already_committed": execution.already_committed,
                "duration_ms": round(execution.duration_ms, 2),
            }
            for step_id, execution in result.results.items()
        },
    }


def create_turns_router(engine: ConversationEngine) -> APIRouter:
    router = APIRouter(tags=["chat"])

    def build_user(thread_id: str, payload: UserPayload | None) -> UserContext | None:
        if payload is None:
            return None
        user = engine.default_user(payload.user_id or thread_id)
        user.timezone = payload.timezone or user.timezone
        user.language = payload.language or user.language
        user.plan_tier = payload.plan_tier
        user.user_name = payload.user_name
        user.capabilities = CapabilityFlags(calendar=payload.calendar, gmail=payload.gmail)
        return user

    @router.post("/chat")
    async def chat(payload: ChatRequest) -> dict[str, Any]:
        """Run one conversation turn, or answer the pending clarification."""

        if not payload.thread_id or not payload.content or not payload.content.strip():
            raise HTTPException(status_code=400, detail="thread_id and content are required")

        reply_to = None
        if payload.reply_to is not None:
            reply_to = ReturnTo(step_id=payload.reply_to.step_id, mode=payload.reply_to.mode)

        result = await engine.handle_message(
            payload.thread_id,
            payload.content.strip(),
            trigger_type=payload.trigger_type,
            reply_to=reply_to,
            user=build_user(payload.thread_id, payload.user),
            message_id=payload.message_id,
        )
        if result.status == "busy":
            raise HTTPException(status_code=409, detail=result.message)
        return serialize_turn(result)

    @router.post("/resume")
    async def resume(payload: ResumeRequest) -> dict[str, Any]:
        """Answer a pending clarification explicitly."""

        if not payload.thread_id or not payload.step_id or not payload.content:
            raise HTTPException(status_code=400, detail="thread_id, step_id and content are required")

        result = await engine.resume(
            payload.thread_id,
            ReturnTo(step_id=payload.step_id, mode=payload.mode),
            payload.content.strip(),
        )
        if result.status == "busy":
            raise HTTPException(status_code=409, detail=result.message)
        return serialize_turn(result)

    @router.post("/retry")
    async def retry(payload: RetryRequest) -> dict[str, Any]:
        """Re-run the last turn of a thread that ended with failed steps."""

        if not payload.thread_id:
            raise HTTPException(status_code=400, detail="thread_id is required")

        result = await engine.retry(payload.thread_id)
        if result.status == "busy":
            raise HTTPException(status_code=409, detail=result.message)
        return serialize_turn(result)

    @router.get("/threads", tags=["threads"])
    async def list_threads() -> list[str]:
        """List known thread identifiers (development helper)."""

        return list(engine.store.iter_threads())

    @router.get("/threads/{thread_id}", tags=["threads"])
    async def get_thread(thread_id: str) -> dict[str, Any]:
        status = engine.poll(thread_id)
        suspended = engine.store.load_suspended(thread_id)
        memory = engine.store.load_memory(thread_id)
        if suspended is None and memory is None:
            raise HTTPException(status_code=404, detail="thread not found")

        pending = suspended.pending_hitl if suspended is not None else None
        return {
            "thread_id": thread_id,
            "status": status.value if status else "idle",
            "pending": pending.to_payload() if pending else None,
            "recent_messages": [
                {"role": message.role, "content": message.content}
                for message in (memory.recent_messages if memory else ())
            ],
            "executed_operations": len(memory.executed_operations) if memory else 0,
        }

    @router.delete("/threads/{thread_id}", tags=["threads"])
    async def reset_thread(thread_id: str) -> dict[str, str]:
        engine.store.reset(thread_id)
        return {"thread_id": thread_id, "status": "reset"}

    @router.get("/capabilities/match", tags=["capabilities"])
    async def capability_match(query: str | None = None) -> dict[str, Any]:
        if not query:
            raise HTTPException(status_code=400, detail="query parameter is required")
        matches = match_patterns(query)
        return {
            "query": query,
            "matches": [
                {
                    "resolver_name": match.schema.name,
                    "capability": match.schema.capability.value,
                    "score": match.score,
                    "matched_patterns": list(match.matched_patterns),
                }
                for match in matches
            ],
        }

    return router
