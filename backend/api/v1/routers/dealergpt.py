"""
DealerGPT Router — conversation, memory, insights and diagnostics.

Conversation and greeting replies always return 200. Fallback answers carry
``degraded: true`` plus a ``degradedReason``.
"""

import asyncio
from datetime import datetime
from typing import Any

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status
from pydantic import Field, field_validator

from api.deps import (
    get_aggregator,
    get_conversation_service,
    get_current_user,
    get_memory_store,
    require_admin,
)
from core.config import Settings, get_settings
from db.models import MEMORY_PRIORITIES, MEMORY_TYPES
from dealergpt.aggregator import SLICE_ENTITIES, AggregationError, DealershipAggregator
from dealergpt.memory import MemoryStore
from dealergpt.schemas import (
    CamelModel,
    ConversationOut,
    ConversationResult,
    DealerGPTResponse,
    InsightOut,
    MemoryOut,
)

router = APIRouter(prefix="/api/dealergpt", tags=["dealergpt"])
logger = structlog.get_logger()

DISCONNECT_POLL_SECONDS = 0.5
CLIENT_CLOSED_REQUEST = 499

CAPABILITIES = {
    "name": "DealerGPT",
    "description": "Conversational assistant over live dealership data",
    "data_access": [
        "vehicles",
        "customers",
        "leads",
        "sales",
        "financial",
        "inventory",
        "operations",
        "documents",
        "staff",
    ],
    "features": [
        "conversation",
        "startup_greeting",
        "conversation_history",
        "proactive_insights",
        "memory",
        "feedback",
        "data_slices",
        "health_check",
    ],
    "slice_entities": list(SLICE_ENTITIES),
    "degraded_reasons": ["data_unavailable", "data_timeout", "llm_unavailable", "llm_timeout"],
}


# ─── Schemas ────────────────────────────────────────────────────────────────


class ConversationRequest(CamelModel):
    message: str = Field(..., max_length=4000)
    session_id: str | None = Field(None, max_length=64)
    context: dict[str, Any] | None = None


class ConversationReply(DealerGPTResponse):
    degraded: bool = False
    degraded_reason: str | None = None


class MemoryCreate(CamelModel):
    key: str = Field(..., min_length=1, max_length=255)
    data: Any
    memory_type: str
    entity_type: str | None = None
    entity_id: int | None = None
    priority: str = "normal"
    tags: list[str] = Field(default_factory=list)
    relevance_score: float = Field(1.0, ge=0)
    expires_at: datetime | None = None

    @field_validator("memory_type")
    @classmethod
    def known_memory_type(cls, value: str) -> str:
        if value not in MEMORY_TYPES:
            raise ValueError(f"memory_type must be one of {', '.join(MEMORY_TYPES)}")
        return value

    @field_validator("priority")
    @classmethod
    def known_priority(cls, value: str) -> str:
        if value not in MEMORY_PRIORITIES:
            raise ValueError(f"priority must be one of {', '.join(MEMORY_PRIORITIES)}")
        return value


class PruneRequest(CamelModel):
    days: int | None = Field(None, ge=1)


class FeedbackRequest(CamelModel):
    conversation_id: int
    feedback: str = Field(..., min_length=1, max_length=2000)


def _reply(result: ConversationResult) -> ConversationReply:
    return ConversationReply(
        **result.response.model_dump(),
        degraded=result.degraded,
        degraded_reason=result.degraded_reason.value if result.degraded_reason else None,
    )


async def _run_until_disconnect(request: Request, coro):
    """Await ``coro``; cancel it if the client goes away first. Returns None on disconnect."""
    task = asyncio.create_task(coro)
    try:
        while True:
            done, _ = await asyncio.wait({task}, timeout=DISCONNECT_POLL_SECONDS)
            if done:
                return task.result()
            if await request.is_disconnected():
                return None
    finally:
        if not task.done():
            task.cancel()


# ─── Conversation ───────────────────────────────────────────────────────────


@router.get("/greeting", response_model=ConversationReply)
async def greeting(
    user: dict = Depends(get_current_user),
    service=Depends(get_conversation_service),
):
    result = await service.get_startup_greeting(user["id"], user.get("first_name"))
    return _reply(result)


@router.post("/conversation", response_model=ConversationReply)
async def conversation(
    body: ConversationRequest,
    request: Request,
    user: dict = Depends(get_current_user),
    service=Depends(get_conversation_service),
):
    """Answer a message against the current dealership snapshot."""
    message = body.message.strip()
    if not message:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Message is required",
        )

    result = await _run_until_disconnect(
        request,
        service.process_conversation(message, user["id"], body.session_id),
    )
    if result is None:
        logger.info("dealergpt.conversation.cancelled", user_id=user["id"], session_id=body.session_id)
        return Response(status_code=CLIENT_CLOSED_REQUEST)
    return _reply(result)


@router.get("/history", response_model=list[ConversationOut])
async def history(
    session_id: str | None = Query(None, alias="sessionId"),
    limit: int = Query(50, ge=1, le=200),
    user: dict = Depends(get_current_user),
    memory: MemoryStore = Depends(get_memory_store),
):
    return await memory.get_conversation_history(user["id"], session_id, limit)


@router.post("/feedback")
async def feedback(
    body: FeedbackRequest,
    user: dict = Depends(get_current_user),
    memory: MemoryStore = Depends(get_memory_store),
):
    saved = await memory.save_feedback(body.conversation_id, user["id"], body.feedback)
    if not saved:
        raise HTTPException(status_code=404, detail="Conversation not found")
    return {"status": "saved", "conversationId": body.conversation_id}


# ─── Insights ───────────────────────────────────────────────────────────────


@router.get("/insights", response_model=list[InsightOut])
async def list_insights(
    limit: int = Query(10, ge=1, le=100),
    user: dict = Depends(get_current_user),
    memory: MemoryStore = Depends(get_memory_store),
):
    return await memory.get_active_insights(user["id"], limit)


@router.post("/insights/{insight_id}/acknowledge")
async def acknowledge_insight(
    insight_id: int,
    user: dict = Depends(get_current_user),
    memory: MemoryStore = Depends(get_memory_store),
):
    found = await memory.acknowledge_insight(insight_id, user["id"])
    if not found:
        raise HTTPException(status_code=404, detail="Insight not found")
    return {"status": "acknowledged", "insightId": insight_id}


# ─── Memory ─────────────────────────────────────────────────────────────────


@router.get("/memory", response_model=list[MemoryOut])
async def list_memory(
    memory_type: str | None = Query(None, alias="type"),
    limit: int = Query(20, ge=1, le=100),
    user: dict = Depends(get_current_user),
    memory: MemoryStore = Depends(get_memory_store),
):
    """Entries of one type, or the current user's entries when no type is given."""
    if memory_type:
        return await memory.get_by_type(memory_type, limit)
    return await memory.get_by_user(user["id"], limit)


@router.post("/memory", status_code=201)
async def save_memory(
    body: MemoryCreate,
    user: dict = Depends(get_current_user),
    memory: MemoryStore = Depends(get_memory_store),
):
    await memory.save({**body.model_dump(), "user_id": user["id"]})
    return {"status": "saved", "key": body.key}


@router.get("/memory/search", response_model=list[MemoryOut])
async def search_memory(
    query: str = Query(..., min_length=1, max_length=200),
    limit: int = Query(10, ge=1, le=100),
    user: dict = Depends(get_current_user),
    memory: MemoryStore = Depends(get_memory_store),
):
    return await memory.search(query, limit)


@router.post("/memory/prune")
async def prune_memory(
    body: PruneRequest,
    admin: dict = Depends(require_admin),
    memory: MemoryStore = Depends(get_memory_store),
    settings: Settings = Depends(get_settings),
):
    days = body.days or settings.memory_retention_days
    deleted = await memory.prune(days)
    logger.info("dealergpt.memory.prune_requested", user_id=admin["id"], days=days)
    return {"status": "pruned", "days": days, "deleted": deleted}


# ─── Diagnostics ────────────────────────────────────────────────────────────


@router.get("/health")
async def health(
    user: dict = Depends(get_current_user),
    service=Depends(get_conversation_service),
):
    return await service.perform_health_check()


@router.get("/data-status")
async def data_status(
    user: dict = Depends(get_current_user),
    service=Depends(get_conversation_service),
):
    try:
        return await service.data_status()
    except AggregationError as exc:
        logger.error("dealergpt.data_status.failed", error=str(exc))
        raise HTTPException(status_code=503, detail="Dealership data unavailable") from exc


@router.get("/capabilities")
async def capabilities(user: dict = Depends(get_current_user)):
    return CAPABILITIES


@router.get("/slice/{entity}")
async def data_slice(
    entity: str,
    request: Request,
    user: dict = Depends(get_current_user),
    aggregator: DealershipAggregator = Depends(get_aggregator),
):
    """One entity's data; remaining query parameters are passed through as filters."""
    filters: dict[str, Any] = {}
    for key, value in request.query_params.items():
        lowered = value.lower()
        filters[key] = lowered == "true" if lowered in ("true", "false") else value

    try:
        data = await aggregator.get_data_slice(entity, filters)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except AggregationError as exc:
        raise HTTPException(status_code=503, detail="Dealership data unavailable") from exc
    return {"entity": entity.lower(), "filters": filters, "data": data}
