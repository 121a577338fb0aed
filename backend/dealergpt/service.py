"""
DealerGPT Conversation Service

Pipeline per message:
    start -> aggregate -> build prompt -> call LLM -> persist -> respond

Two variants share the pipeline:
  - SimpleConversationService: snapshot plus the message, no memory. Any
    aggregation or LLM failure returns the 3-suggestion fallback.
  - ConversationService: adds user memory, history and proactive insights.
    Aggregation failure continues on an empty snapshot; LLM failure returns
    the 4-suggestion fallback.

Neither variant raises for aggregation or LLM failures. Fallback answers
carry a ``DegradedReason`` so callers can tell them apart.
"""

import asyncio
import time
import uuid
from datetime import datetime
from typing import Any

import structlog

from db import storage
from dealergpt.aggregator import AggregationTimeout, DealershipAggregator
from dealergpt.insights import run_insight_pipeline
from dealergpt.llm import ChatClient, LLMTimeout, OpenAIChatClient
from dealergpt.memory import MemoryStore
from dealergpt.prompts import (
    build_conversation_history,
    build_greeting,
    build_messages,
    build_simple_greeting,
    build_system_prompt,
)
from dealergpt.schemas import ConversationResult, DealerGPTResponse, DegradedReason
from dealergpt.suggestions import (
    FULL_FALLBACK_SUGGESTIONS,
    GREETING_SUGGESTIONS,
    SIMPLE_FALLBACK_SUGGESTIONS,
    SIMPLE_GREETING_SUGGESTIONS,
    contextual_suggestions,
    extract_context_used,
    extract_simple_context_used,
    snapshot_suggestions,
)

logger = structlog.get_logger()

FULL_FALLBACK_MESSAGE = (
    "I apologize, but I'm experiencing some technical difficulties. Could you please rephrase your "
    "question or try asking about current inventory, sales, or customer information?"
)
SIMPLE_FALLBACK_MESSAGE = (
    "I apologize, but I'm experiencing some technical difficulties. Could you please try asking about "
    "our current inventory, sales, or customer information?"
)
FALLBACK_GREETING = (
    "Hello! I'm DealerGPT, your dealership assistant. I can help you with inventory management, "
    "sales analysis, customer insights, and business intelligence. What would you like to know?"
)

GREETING_CONTEXT = ["dashboard_stats", "inventory_data", "user_context"]
SIMPLE_GREETING_CONTEXT = ["dashboard_stats", "vehicle_data", "sales_data", "leads_data"]


def _elapsed_ms(started: float) -> int:
    return max(int((time.perf_counter() - started) * 1000), 0)


def _llm_reason(exc: Exception) -> DegradedReason:
    return DegradedReason.LLM_TIMEOUT if isinstance(exc, LLMTimeout) else DegradedReason.LLM_UNAVAILABLE


def _aggregation_reason(exc: Exception) -> DegradedReason:
    if isinstance(exc, AggregationTimeout):
        return DegradedReason.DATA_TIMEOUT
    return DegradedReason.DATA_UNAVAILABLE


def validate_records(records: list[dict], data_type: str) -> dict[str, Any]:
    """Check entity lists for missing identifiers and names."""
    issues = []
    for index, record in enumerate(records):
        if not record.get("id"):
            issues.append(f"{data_type} {index}: missing ID")
        if data_type == "vehicles":
            if not record.get("make"):
                issues.append(f"vehicles {index}: missing make")
            if not record.get("model"):
                issues.append(f"vehicles {index}: missing model")
        elif data_type == "customers":
            if not record.get("first_name") and not record.get("last_name"):
                issues.append(f"customers {index}: missing name")
    return {"valid": not issues, "issues": issues}


class BaseConversationService:
    """Health and data-status checks shared by both variants."""

    memory: MemoryStore | None = None

    def __init__(self, aggregator: DealershipAggregator, llm: ChatClient, settings):
        self.aggregator = aggregator
        self.llm = llm
        self.settings = settings

    async def _probe(self, probe) -> dict[str, Any]:
        started = time.perf_counter()
        try:
            result = await asyncio.wait_for(probe(), timeout=self.aggregator.timeout_seconds)
        except Exception as exc:
            return {
                "healthy": False,
                "error": str(exc) or type(exc).__name__,
                "response_time": _elapsed_ms(started),
                "last_check": datetime.utcnow(),
            }
        if isinstance(result, list):
            count = len(result)
        else:
            count = 1 if result else 0
        return {
            "healthy": True,
            "response_time": _elapsed_ms(started),
            "data_count": count,
            "last_check": datetime.utcnow(),
        }

    async def perform_health_check(self) -> dict[str, Any]:
        """Probe each data source individually."""
        probes = {
            "vehicles": lambda: self.aggregator.read(storage.get_vehicles),
            "customers": lambda: self.aggregator.read(storage.get_customers),
            "leads": lambda: self.aggregator.read(storage.get_leads),
            "dashboard": lambda: self.aggregator.read(storage.get_dashboard_stats),
        }
        if self.memory is not None:
            probes["ai_memory"] = lambda: self.memory.search("test", 1)

        names = list(probes)
        results = await asyncio.gather(*(self._probe(probes[name]) for name in names))
        endpoints = dict(zip(names, results))

        failed = [name for name, status in endpoints.items() if not status["healthy"]]
        health = {
            "overall_status": "degraded" if failed else "healthy",
            "timestamp": datetime.utcnow(),
            "endpoints": endpoints,
            "issues": [],
            "recommendations": [],
        }
        if failed:
            health["issues"].append(f"Failed endpoints: {', '.join(failed)}")
            health["recommendations"].append("Check database connectivity and endpoint configurations")
        logger.info("dealergpt.health.checked", overall_status=health["overall_status"], failed=failed)
        return health

    async def data_status(self) -> dict[str, Any]:
        """Fetch a snapshot and validate its integrity. Raises ``AggregationError``."""
        started = time.perf_counter()
        snapshot = await self.aggregator.fetch_snapshot()
        fetch_time = _elapsed_ms(started)

        validation = {
            "vehicles": validate_records(snapshot["vehicles"]["all_vehicles"], "vehicles"),
            "customers": validate_records(snapshot["customers"]["all_customers"], "customers"),
        }
        total_issues = sum(len(result["issues"]) for result in validation.values())
        if total_issues:
            logger.warning("dealergpt.data.validation_issues", total_issues=total_issues)
        return {
            "status": "success",
            "data_integrity": "valid" if total_issues == 0 else "issues_detected",
            "fetch_time": fetch_time,
            "validation_results": validation,
            "timestamp": datetime.utcnow(),
        }


class SimpleConversationService(BaseConversationService):
    """Stateless variant: snapshot plus the current message."""

    def _fallback(self, session_id: str, started: float, reason: DegradedReason) -> ConversationResult:
        response = DealerGPTResponse(
            message=SIMPLE_FALLBACK_MESSAGE,
            context_used=[],
            suggestions=list(SIMPLE_FALLBACK_SUGGESTIONS),
            session_id=session_id,
            response_time=_elapsed_ms(started),
        )
        return ConversationResult(response=response, degraded_reason=reason)

    async def process_conversation(
        self, message: str, user_id: int, session_id: str | None = None
    ) -> ConversationResult:
        started = time.perf_counter()
        session_id = session_id or str(uuid.uuid4())
        log = logger.bind(user_id=user_id, session_id=session_id, mode="simple")

        try:
            snapshot = await self.aggregator.fetch_snapshot()
        except Exception as exc:
            log.warning("dealergpt.conversation.data_failed", error=str(exc))
            return self._fallback(session_id, started, _aggregation_reason(exc))

        system_prompt = build_system_prompt(snapshot, now=datetime.utcnow())
        messages = build_messages(system_prompt, [], message, max_chars=self.settings.prompt_max_chars)
        try:
            answer = await self.llm.complete(messages, max_tokens=self.settings.openai_simple_max_tokens)
        except Exception as exc:
            log.warning("dealergpt.conversation.llm_failed", error=str(exc))
            return self._fallback(session_id, started, _llm_reason(exc))

        response = DealerGPTResponse(
            message=answer,
            context_used=extract_simple_context_used(message),
            suggestions=snapshot_suggestions(snapshot),
            session_id=session_id,
            response_time=_elapsed_ms(started),
        )
        log.info("dealergpt.conversation.completed", response_time=response.response_time)
        return ConversationResult(response=response)

    async def get_startup_greeting(self, user_id: int, user_name: str | None = None) -> ConversationResult:
        started = time.perf_counter()
        session_id = str(uuid.uuid4())
        try:
            snapshot = await self.aggregator.fetch_snapshot()
        except Exception as exc:
            logger.warning("dealergpt.greeting.data_failed", user_id=user_id, error=str(exc))
            response = DealerGPTResponse(
                message=FALLBACK_GREETING,
                context_used=[],
                suggestions=list(SIMPLE_FALLBACK_SUGGESTIONS),
                session_id=session_id,
                response_time=_elapsed_ms(started),
            )
            return ConversationResult(response=response, degraded_reason=_aggregation_reason(exc))

        response = DealerGPTResponse(
            message=build_simple_greeting(snapshot),
            context_used=list(SIMPLE_GREETING_CONTEXT),
            suggestions=list(SIMPLE_GREETING_SUGGESTIONS),
            session_id=session_id,
            response_time=_elapsed_ms(started),
        )
        return ConversationResult(response=response)


class ConversationService(BaseConversationService):
    """Memory-backed variant with history, preferences and proactive insights."""

    def __init__(self, aggregator: DealershipAggregator, llm: ChatClient, settings, memory: MemoryStore):
        super().__init__(aggregator, llm, settings)
        self.memory = memory

    async def build_user_context(self, user_id: int) -> dict[str, Any]:
        """Recent turns, preferences, memories and insights; empty on failure."""
        try:
            recent, preferences = await asyncio.gather(
                self.memory.get_recent_user_context(user_id, limit=self.settings.history_max_turns),
                self.memory.get_by_type("user_preference", limit=20),
            )
        except Exception as exc:
            logger.warning("dealergpt.user_context.failed", user_id=user_id, error=str(exc))
            return {"user_id": user_id, "preferences": [], "memories": [], "conversations": [], "insights": []}
        return {
            "user_id": user_id,
            "preferences": [p for p in preferences if p.get("user_id") == user_id],
            "memories": recent["memories"],
            "conversations": recent["conversations"],
            "insights": recent["insights"],
        }

    async def _generate_insights(self, snapshot: dict, user_id: int) -> list[dict]:
        try:
            result = await run_insight_pipeline(
                self.memory,
                snapshot,
                ttl_hours=self.settings.insight_ttl_hours,
                target_users=[user_id],
            )
        except Exception as exc:
            logger.warning("dealergpt.insights.failed", user_id=user_id, error=str(exc))
            return []
        return result["insights"]

    async def _active_insights(self, user_id: int) -> list[dict]:
        try:
            return await self.memory.get_active_insights(user_id)
        except Exception as exc:
            logger.warning("dealergpt.insights.read_failed", user_id=user_id, error=str(exc))
            return []

    async def _persist(self, message: str, response: DealerGPTResponse, user_id: int) -> None:
        """Save the turn and an interaction memory; failures are logged and discarded."""
        try:
            await self.memory.save_conversation(
                {
                    "user_id": user_id,
                    "session_id": response.session_id,
                    "message": message,
                    "response": response.message,
                    "context_used": response.context_used,
                    "response_time": response.response_time,
                }
            )
            await self.memory.save(
                {
                    "key": f"user_interaction@{user_id}@{uuid.uuid4().hex}",
                    "data": {
                        "message": message,
                        "response": response.message,
                        "timestamp": datetime.utcnow().isoformat(),
                        "session_id": response.session_id,
                    },
                    "memory_type": "interaction",
                    "entity_type": "user",
                    "entity_id": user_id,
                    "user_id": user_id,
                    "priority": "normal",
                    "tags": ["conversation", "user_interaction"],
                }
            )
        except Exception as exc:
            logger.error("dealergpt.persist.failed", user_id=user_id, session_id=response.session_id, error=str(exc))

    async def process_conversation(
        self, message: str, user_id: int, session_id: str | None = None
    ) -> ConversationResult:
        started = time.perf_counter()
        session_id = session_id or str(uuid.uuid4())
        log = logger.bind(user_id=user_id, session_id=session_id, mode="full")

        user_context = await self.build_user_context(user_id)
        snapshot, degraded_reason = await self.aggregator.fetch_snapshot_or_default()
        if degraded_reason is not None:
            log.warning("dealergpt.conversation.data_degraded", reason=degraded_reason.value)

        insights = await self._generate_insights(snapshot, user_id)
        system_prompt = build_system_prompt(
            snapshot,
            now=datetime.utcnow(),
            user_context=user_context,
            insights=insights,
        )
        history = build_conversation_history(
            user_context["conversations"],
            max_turns=self.settings.history_max_turns,
            max_chars=self.settings.prompt_max_chars,
        )
        messages = build_messages(system_prompt, history, message, max_chars=self.settings.prompt_max_chars)

        try:
            answer = await self.llm.complete(messages, max_tokens=self.settings.openai_max_tokens)
        except Exception as exc:
            log.warning("dealergpt.conversation.llm_failed", error=str(exc))
            response = DealerGPTResponse(
                message=FULL_FALLBACK_MESSAGE,
                context_used=[],
                suggestions=list(FULL_FALLBACK_SUGGESTIONS),
                session_id=session_id,
                response_time=_elapsed_ms(started),
            )
            return ConversationResult(response=response, degraded_reason=_llm_reason(exc))

        response = DealerGPTResponse(
            message=answer,
            context_used=extract_context_used(message, user_context),
            suggestions=contextual_suggestions(message, insights),
            session_id=session_id,
            response_time=_elapsed_ms(started),
            insights=insights,
        )
        await self._persist(message, response, user_id)
        response.proactive_alerts = await self._active_insights(user_id)

        log.info(
            "dealergpt.conversation.completed",
            response_time=response.response_time,
            history_messages=len(history),
            insights=len(insights),
            degraded_reason=degraded_reason.value if degraded_reason else None,
        )
        return ConversationResult(response=response, degraded_reason=degraded_reason)

    async def get_startup_greeting(self, user_id: int, user_name: str | None = None) -> ConversationResult:
        started = time.perf_counter()
        session_id = str(uuid.uuid4())
        user_context = await self.build_user_context(user_id)
        try:
            snapshot = await self.aggregator.fetch_snapshot()
        except Exception as exc:
            logger.warning("dealergpt.greeting.data_failed", user_id=user_id, error=str(exc))
            response = DealerGPTResponse(
                message=FALLBACK_GREETING,
                context_used=[],
                suggestions=list(FULL_FALLBACK_SUGGESTIONS),
                session_id=session_id,
                response_time=_elapsed_ms(started),
            )
            return ConversationResult(response=response, degraded_reason=_aggregation_reason(exc))

        insights = await self._active_insights(user_id)
        preferred = next(
            (p["data"].get("name") for p in user_context["preferences"] if isinstance(p.get("data"), dict)),
            None,
        )
        message = build_greeting(
            snapshot,
            user_name=preferred or user_name,
            returning=bool(user_context["conversations"]),
            insights=insights,
        )
        response = DealerGPTResponse(
            message=message,
            context_used=list(GREETING_CONTEXT),
            suggestions=list(GREETING_SUGGESTIONS),
            session_id=session_id,
            response_time=_elapsed_ms(started),
            insights=insights,
            proactive_alerts=insights,
        )
        return ConversationResult(response=response)


def create_conversation_service(settings, session_factory, llm: ChatClient | None = None):
    """Build the configured variant (``settings.dealergpt_mode``)."""
    aggregator = DealershipAggregator(session_factory, timeout_seconds=settings.aggregation_timeout_seconds)
    llm = llm or OpenAIChatClient.from_settings(settings)
    if settings.dealergpt_mode == "simple":
        return SimpleConversationService(aggregator, llm, settings)
    return ConversationService(aggregator, llm, settings, MemoryStore(session_factory))
