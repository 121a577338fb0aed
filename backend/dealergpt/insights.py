"""
Proactive Insights — rule-based findings derived from a snapshot.

Rules:
  - Long-term Stock Alert: oldest stock vehicle past 60 days
  - Sales Performance Dip: this week's sales below last week's
  - Low Conversion Rate: lead conversion under 20%
  - Overdue Lead Follow-ups: open leads past their follow-up date

Insights are deduplicated by title against the currently active ones before
they are stored.
"""

from datetime import datetime, timedelta
from typing import Any

import structlog

logger = structlog.get_logger()

LONG_TERM_STOCK_DAYS = 60
LOW_CONVERSION_RATE = 20.0


def _iso(value: Any) -> Any:
    return value.isoformat() if isinstance(value, datetime) else value


def detect_long_term_stock(snapshot: dict) -> dict | None:
    details = snapshot["vehicles"]["stock_age_details"]
    if not details:
        return None
    oldest = max(details, key=lambda d: d["days_in_stock"])
    if oldest["days_in_stock"] <= LONG_TERM_STOCK_DAYS:
        return None
    return {
        "insight_type": "alert",
        "priority": "high",
        "category": "inventory",
        "title": "Long-term Stock Alert",
        "description": (
            f"Vehicle {oldest.get('stock_number') or oldest.get('id')} ({oldest.get('make')} {oldest.get('model')}) "
            f"has been in stock for {oldest['days_in_stock']} days"
        ),
        "data": {
            "vehicle_id": oldest.get("id"),
            "stock_number": oldest.get("stock_number"),
            "days_in_stock": oldest["days_in_stock"],
            "purchase_invoice_date": _iso(oldest.get("purchase_invoice_date")),
            "recommendation": "Consider price adjustment or marketing campaign",
        },
    }


def detect_sales_dip(snapshot: dict) -> dict | None:
    weekly = snapshot["sales"]["weekly_sales"]
    if weekly["this_week"] >= weekly["last_week"]:
        return None
    return {
        "insight_type": "recommendation",
        "priority": "medium",
        "category": "sales",
        "title": "Sales Performance Dip",
        "description": (
            f"This week's sales ({weekly['this_week']}) are below last week's ({weekly['last_week']})"
        ),
        "data": {
            "this_week": weekly["this_week"],
            "last_week": weekly["last_week"],
            "recommendation": "Review lead conversion and follow-up activities",
        },
    }


def detect_low_conversion(snapshot: dict) -> dict | None:
    funnel = snapshot["leads"]["conversion_funnel"]
    if not funnel.get("total_leads"):
        return None
    rate = funnel.get("conversion_rate", 0.0)
    if rate >= LOW_CONVERSION_RATE:
        return None
    return {
        "insight_type": "recommendation",
        "priority": "medium",
        "category": "customers",
        "title": "Low Conversion Rate",
        "description": f"Lead conversion rate is {rate:.1f}%, below the {LOW_CONVERSION_RATE:.0f}% target",
        "data": {
            "conversion_rate": rate,
            "total_leads": funnel["total_leads"],
            "recommendation": "Review lead qualification and follow-up processes",
        },
    }


def detect_overdue_followups(snapshot: dict) -> dict | None:
    overdue = snapshot["analytics"]["alerts"]["overdue_followups"]
    if not overdue:
        return None
    return {
        "insight_type": "alert",
        "priority": "high" if len(overdue) > 5 else "medium",
        "category": "leads",
        "title": "Overdue Lead Follow-ups",
        "description": f"{len(overdue)} open leads are past their follow-up date",
        "data": {
            "lead_ids": [lead.get("id") for lead in overdue[:20]],
            "count": len(overdue),
            "recommendation": "Contact these leads today or reschedule their follow-ups",
        },
    }


INSIGHT_RULES = (
    detect_long_term_stock,
    detect_sales_dip,
    detect_low_conversion,
    detect_overdue_followups,
)


def generate_insights(snapshot: dict) -> list[dict]:
    """Run every rule against the snapshot. Empty snapshots yield nothing."""
    if not snapshot["system_status"].get("database_connected"):
        return []
    insights = []
    for rule in INSIGHT_RULES:
        insight = rule(snapshot)
        if insight is not None:
            insights.append(insight)
    return insights


def deduplicate_insights(new_insights: list[dict], active_insights: list[dict]) -> list[dict]:
    """Drop insights whose title is already active (or repeated within the batch)."""
    seen = {insight["title"] for insight in active_insights}
    unique = []
    for insight in new_insights:
        if insight["title"] in seen:
            continue
        seen.add(insight["title"])
        unique.append(insight)
    return unique


async def _visible_insights(memory, target_users: list[int] | None, now: datetime) -> list[dict]:
    """Active insights every target already sees; broadcast runs only compare with broadcasts."""
    if not target_users:
        active = await memory.get_active_insights(limit=100, now=now)
        return [insight for insight in active if not insight.get("target_users")]

    shared: set[str] | None = None
    for user_id in target_users:
        titles = {insight["title"] for insight in await memory.get_active_insights(user_id, limit=100, now=now)}
        shared = titles if shared is None else shared & titles
    return [{"title": title} for title in sorted(shared or ())]


async def run_insight_pipeline(
    memory,
    snapshot: dict,
    *,
    now: datetime | None = None,
    ttl_hours: int = 24,
    target_users: list[int] | None = None,
) -> dict[str, Any]:
    """
    Generate, deduplicate and persist insights.

    ``target_users=None`` makes the insights visible to everyone.
    Returns counts plus the stored insights.
    """
    now = now or datetime.utcnow()
    generated = generate_insights(snapshot)
    active = await _visible_insights(memory, target_users, now)
    fresh = deduplicate_insights(generated, active)

    stored = []
    for insight in fresh:
        entry = {
            **insight,
            "target_users": target_users,
            "expires_at": now + timedelta(hours=ttl_hours),
        }
        entry["id"] = await memory.create_insight(entry)
        stored.append(entry)

    logger.info(
        "dealergpt.insights.generated",
        generated=len(generated),
        duplicates=len(generated) - len(fresh),
        stored=len(stored),
    )
    return {"generated": len(generated), "stored": len(stored), "insights": stored}
