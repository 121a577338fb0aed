"""
DealerGPT Workers — memory retention and proactive insights.

  1. prune_memory: apply the retention window to memory, conversations and
     acknowledged insights.
  2. generate_insights: snapshot -> insight rules -> dedupe -> persist,
     visible to every user.

Schedule: See celery_app.py beat_schedule
"""

import asyncio
from datetime import datetime

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from db.session import build_engine
from dealergpt.aggregator import DealershipAggregator
from dealergpt.insights import run_insight_pipeline
from dealergpt.memory import MemoryStore
from workers.celery_app import celery_app

logger = structlog.get_logger()


async def prune_memory_async(session_factory, days_old: int) -> dict:
    deleted = await MemoryStore(session_factory).prune(days_old)
    return {
        "status": "success",
        "days_old": days_old,
        "deleted": deleted,
        "completed_at": datetime.utcnow().isoformat(),
    }


async def generate_insights_async(session_factory, *, timeout_seconds: float, ttl_hours: int) -> dict:
    """Raises ``AggregationError`` when the snapshot cannot be fetched."""
    aggregator = DealershipAggregator(session_factory, timeout_seconds=timeout_seconds)
    snapshot = await aggregator.fetch_snapshot()
    result = await run_insight_pipeline(
        MemoryStore(session_factory),
        snapshot,
        ttl_hours=ttl_hours,
        target_users=None,
    )
    return {
        "status": "success",
        "generated": result["generated"],
        "stored": result["stored"],
        "titles": [insight["title"] for insight in result["insights"]],
        "completed_at": datetime.utcnow().isoformat(),
    }


@celery_app.task(
    name="workers.dealergpt.prune_memory",
    bind=True,
    max_retries=2,
    default_retry_delay=300,
    acks_late=True,
)
def prune_memory(self, days_old: int | None = None):
    """Daily job: delete memory rows past the retention window."""
    run_id = self.request.id or "manual"

    async def _prune():
        from core.config import get_settings

        settings = get_settings()
        engine = build_engine(settings.database_url)
        try:
            session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
            return await prune_memory_async(session_factory, days_old or settings.memory_retention_days)
        finally:
            await engine.dispose()

    logger.info("dealergpt.prune.started", run_id=run_id)
    try:
        return asyncio.run(_prune())
    except Exception as exc:
        logger.error("dealergpt.prune.failed", run_id=run_id, error=str(exc), exc_info=True)
        raise self.retry(exc=exc)


@celery_app.task(
    name="workers.dealergpt.generate_insights",
    bind=True,
    max_retries=2,
    default_retry_delay=120,
    acks_late=True,
)
def generate_insights(self):
    """Hourly job: run the insight rules against a fresh snapshot."""
    run_id = self.request.id or "manual"

    async def _generate():
        from core.config import get_settings

        settings = get_settings()
        engine = build_engine(settings.database_url)
        try:
            session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
            return await generate_insights_async(
                session_factory,
                timeout_seconds=settings.aggregation_timeout_seconds,
                ttl_hours=settings.insight_ttl_hours,
            )
        finally:
            await engine.dispose()

    logger.info("dealergpt.insights_job.started", run_id=run_id)
    try:
        return asyncio.run(_generate())
    except Exception as exc:
        logger.error("dealergpt.insights_job.failed", run_id=run_id, error=str(exc), exc_info=True)
        raise self.retry(exc=exc)
