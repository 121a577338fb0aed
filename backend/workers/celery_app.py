"""
Celery Application Configuration
"""

from celery import Celery
from celery.schedules import crontab

from core.config import get_settings

settings = get_settings()

celery_app = Celery(
    "dealerdesk",
    broker=settings.redis_url,
    backend=settings.redis_url,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    worker_prefetch_multiplier=1,
    task_routes={
        "workers.dealergpt.*": {"queue": "dealergpt"},
    },
    # ── Celery Beat Schedule ─────────────────────────────────────────
    beat_schedule={
        # ── DealerGPT Maintenance ──────────────────────────────────
        "dealergpt-prune-memory-daily": {
            "task": "workers.dealergpt.prune_memory",
            "schedule": crontab(hour=3, minute=0),
            "options": {"queue": "dealergpt"},
        },
        # ── Proactive Insights ─────────────────────────────────────
        "dealergpt-generate-insights-hourly": {
            "task": "workers.dealergpt.generate_insights",
            "schedule": crontab(minute=0),
            "options": {"queue": "dealergpt"},
        },
    },
)

# Auto-discover tasks
celery_app.autodiscover_tasks(["workers"], related_name="dealergpt")
