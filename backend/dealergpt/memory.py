"""
DealerGPT Memory / Insight Store

Persists conversation turns, keyed memory entries and acknowledgeable
insights. Each operation opens its own session from the factory, so the
store is safe to share across concurrent requests.

Retention (``prune``):
  - ai_memory: only ``low`` priority rows older than the cutoff
  - ai_conversations: every row older than the cutoff
  - ai_insights: acknowledged rows older than the cutoff
"""

import asyncio
from datetime import datetime, timedelta
from typing import Any

import structlog
from sqlalchemy import String, and_, case, cast, delete, func, or_, select
from sqlalchemy.exc import IntegrityError

from db.models import AIConversation, AIInsight, AIMemory
from db.storage import row_to_dict

logger = structlog.get_logger()

MEMORY_FIELDS = (
    "data",
    "memory_type",
    "entity_type",
    "entity_id",
    "user_id",
    "priority",
    "tags",
    "relevance_score",
    "expires_at",
)

INSIGHT_PRIORITY_RANK = {"urgent": 0, "high": 1, "medium": 2, "low": 3}


def _memory_values(entry: dict) -> dict:
    values = {field: entry.get(field) for field in MEMORY_FIELDS}
    values["priority"] = entry.get("priority") or "normal"
    values["tags"] = list(entry.get("tags") or [])
    score = entry.get("relevance_score")
    values["relevance_score"] = 1.0 if score is None else score
    return values


def _like_pattern(term: str) -> str:
    """Substring LIKE pattern with ``%``, ``_`` and the escape character taken literally."""
    escaped = term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


class MemoryStore:
    """Async store over ai_memory, ai_conversations and ai_insights."""

    def __init__(self, session_factory):
        self.session_factory = session_factory

    # ─── Memory entries ─────────────────────────────────────────────────

    async def save(self, entry: dict) -> None:
        """Insert a memory entry, or update the existing row with the same key."""
        values = _memory_values(entry)
        for attempt in range(2):
            async with self.session_factory() as session:
                existing = (
                    await session.execute(select(AIMemory).where(AIMemory.key == entry["key"]))
                ).scalar_one_or_none()
                if existing is None:
                    session.add(AIMemory(key=entry["key"], **values))
                else:
                    for field, value in values.items():
                        setattr(existing, field, value)
                    existing.updated_at = datetime.utcnow()
                try:
                    await session.commit()
                    return
                except IntegrityError:
                    # concurrent insert of the same key; retry as an update
                    await session.rollback()
                    if attempt:
                        raise

    def _unexpired(self, now: datetime):
        return or_(AIMemory.expires_at.is_(None), AIMemory.expires_at > now)

    async def search(self, query: str, limit: int = 10, now: datetime | None = None) -> list[dict]:
        """Case-insensitive match of any whitespace term against key, entity type or tags."""
        terms = [term for term in query.lower().split() if term]
        if not terms:
            return []
        now = now or datetime.utcnow()
        matches = []
        for term in terms:
            pattern = _like_pattern(term)
            matches.append(
                or_(
                    func.lower(AIMemory.key).like(pattern, escape="\\"),
                    func.lower(AIMemory.entity_type).like(pattern, escape="\\"),
                    func.lower(cast(AIMemory.tags, String)).like(pattern, escape="\\"),
                )
            )
        stmt = (
            select(AIMemory)
            .where(or_(*matches), self._unexpired(now))
            .order_by(AIMemory.relevance_score.desc(), AIMemory.created_at.desc(), AIMemory.id.desc())
            .limit(limit)
        )
        async with self.session_factory() as session:
            rows = (await session.execute(stmt)).scalars().all()
        return [row_to_dict(row) for row in rows]

    async def _list_memory(self, condition, limit: int, now: datetime | None) -> list[dict]:
        now = now or datetime.utcnow()
        stmt = (
            select(AIMemory)
            .where(condition, self._unexpired(now))
            .order_by(AIMemory.relevance_score.desc(), AIMemory.created_at.desc(), AIMemory.id.desc())
            .limit(limit)
        )
        async with self.session_factory() as session:
            rows = (await session.execute(stmt)).scalars().all()
        return [row_to_dict(row) for row in rows]

    async def get_by_type(self, memory_type: str, limit: int = 20, now: datetime | None = None) -> list[dict]:
        return await self._list_memory(AIMemory.memory_type == memory_type, limit, now)

    async def get_by_user(self, user_id: int, limit: int = 20, now: datetime | None = None) -> list[dict]:
        return await self._list_memory(AIMemory.user_id == user_id, limit, now)

    # ─── Conversations ──────────────────────────────────────────────────

    async def save_conversation(self, entry: dict) -> int:
        conversation = AIConversation(
            user_id=entry["user_id"],
            session_id=entry["session_id"],
            message=entry["message"],
            response=entry["response"],
            context_used=list(entry.get("context_used") or []),
            response_time=entry.get("response_time"),
            feedback=entry.get("feedback"),
        )
        async with self.session_factory() as session:
            session.add(conversation)
            await session.flush()
            conversation_id = conversation.id
            await session.commit()
        return conversation_id

    async def get_conversation_history(
        self, user_id: int, session_id: str | None = None, limit: int = 50
    ) -> list[dict]:
        """Turns for a user, newest first, optionally limited to one session."""
        stmt = select(AIConversation).where(AIConversation.user_id == user_id)
        if session_id:
            stmt = stmt.where(AIConversation.session_id == session_id)
        stmt = stmt.order_by(AIConversation.created_at.desc(), AIConversation.id.desc()).limit(limit)
        async with self.session_factory() as session:
            rows = (await session.execute(stmt)).scalars().all()
        return [row_to_dict(row) for row in rows]

    async def save_feedback(self, conversation_id: int, user_id: int, feedback: str) -> bool:
        """Attach feedback to the user's conversation row and keep it as a memory entry.

        Returns whether the conversation belongs to the user.
        """
        async with self.session_factory() as session:
            conversation = (
                await session.execute(
                    select(AIConversation).where(
                        AIConversation.id == conversation_id,
                        AIConversation.user_id == user_id,
                    )
                )
            ).scalar_one_or_none()
            if conversation is None:
                return False
            conversation.feedback = feedback
            await session.commit()

        await self.save(
            {
                "key": f"feedback@{conversation_id}",
                "data": {
                    "conversation_id": conversation_id,
                    "feedback": feedback,
                    "user_id": user_id,
                    "timestamp": datetime.utcnow().isoformat(),
                },
                "memory_type": "interaction",
                "entity_type": "conversation",
                "entity_id": conversation_id,
                "user_id": user_id,
                "priority": "normal",
                "tags": ["feedback", "conversation_quality"],
            }
        )
        return True

    # ─── Insights ───────────────────────────────────────────────────────

    async def create_insight(self, entry: dict) -> int:
        insight = AIInsight(
            insight_type=entry["insight_type"],
            title=entry["title"],
            description=entry["description"],
            data=entry.get("data"),
            priority=entry.get("priority") or "medium",
            category=entry["category"],
            target_users=list(entry["target_users"]) if entry.get("target_users") else None,
            conditions=entry.get("conditions"),
            expires_at=entry.get("expires_at"),
        )
        async with self.session_factory() as session:
            session.add(insight)
            await session.flush()
            insight_id = insight.id
            await session.commit()
        return insight_id

    async def get_active_insights(
        self, user_id: int | None = None, limit: int = 10, now: datetime | None = None
    ) -> list[dict]:
        """Active, unacknowledged, unexpired insights; urgent first, then newest.

        With ``user_id``, only insights targeted at everyone or at that user.
        """
        now = now or datetime.utcnow()
        rank = case(INSIGHT_PRIORITY_RANK, value=AIInsight.priority, else_=len(INSIGHT_PRIORITY_RANK))
        stmt = (
            select(AIInsight)
            .where(
                AIInsight.is_active.is_(True),
                AIInsight.is_acknowledged.is_(False),
                or_(AIInsight.expires_at.is_(None), AIInsight.expires_at > now),
            )
            .order_by(rank, AIInsight.created_at.desc(), AIInsight.id.desc())
        )
        async with self.session_factory() as session:
            rows = (await session.execute(stmt)).scalars().all()

        visible = []
        for row in rows:
            if user_id is not None and row.target_users and user_id not in row.target_users:
                continue
            visible.append(row_to_dict(row))
            if len(visible) >= limit:
                break
        return visible

    async def acknowledge_insight(self, insight_id: int, user_id: int) -> bool:
        """Mark an insight acknowledged. Repeat calls keep the first acknowledgement.

        Returns whether the insight exists.
        """
        async with self.session_factory() as session:
            insight = await session.get(AIInsight, insight_id)
            if insight is None:
                return False
            if insight.is_acknowledged:
                return True
            insight.is_acknowledged = True
            insight.acknowledged_by = user_id
            insight.acknowledged_at = datetime.utcnow()
            await session.commit()
        logger.info("dealergpt.insight.acknowledged", insight_id=insight_id, user_id=user_id)
        return True

    # ─── Maintenance ────────────────────────────────────────────────────

    async def prune(self, days_old: int = 90, now: datetime | None = None) -> dict[str, int]:
        """Delete rows older than ``days_old`` days; returns per-table counts."""
        cutoff = (now or datetime.utcnow()) - timedelta(days=days_old)
        async with self.session_factory() as session:
            memory = await session.execute(
                delete(AIMemory).where(AIMemory.created_at < cutoff, AIMemory.priority == "low")
            )
            conversations = await session.execute(
                delete(AIConversation).where(AIConversation.created_at < cutoff)
            )
            insights = await session.execute(
                delete(AIInsight).where(
                    and_(AIInsight.created_at < cutoff, AIInsight.is_acknowledged.is_(True))
                )
            )
            await session.commit()

        counts = {
            "memory": memory.rowcount or 0,
            "conversations": conversations.rowcount or 0,
            "insights": insights.rowcount or 0,
        }
        logger.info("dealergpt.memory.pruned", days_old=days_old, **counts)
        return counts

    async def get_recent_user_context(self, user_id: int, limit: int = 10) -> dict[str, Any]:
        memories, conversations, insights = await asyncio.gather(
            self.get_by_user(user_id, limit),
            self.get_conversation_history(user_id, None, limit),
            self.get_active_insights(user_id, limit),
        )
        return {
            "memories": memories,
            "conversations": conversations,
            "insights": insights,
            "summary": {
                "total_memories": len(memories),
                "total_conversations": len(conversations),
                "active_insights": len(insights),
            },
        }
