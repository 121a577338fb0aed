"""
Context tags and follow-up suggestions.

Tags are keyword annotations over the user's message; they describe which
areas the question touched, not which data the model actually used.
"""

from collections.abc import Sequence

FULL_FALLBACK_SUGGESTIONS = (
    "What's our current inventory status?",
    "Show me today's sales performance",
    "How many leads do we have?",
    "What vehicles need attention?",
)
SIMPLE_FALLBACK_SUGGESTIONS = FULL_FALLBACK_SUGGESTIONS[:3]

GREETING_SUGGESTIONS = (
    "What needs my attention today?",
    "Show me sales performance",
    "What vehicles should I focus on?",
    "Review customer opportunities",
)
SIMPLE_GREETING_SUGGESTIONS = (
    "What's our best performing vehicle make this month?",
    "Show me vehicles that have been in stock longest",
    "What's our profit margin looking like?",
    "Which customers are due for follow-up?",
)

STRATEGIC_QUESTIONS = (
    "Which vehicle makes are most profitable for us?",
    "Show me our top performing salespeople this month",
    "What's our cash flow position for this quarter?",
    "Which customers are due for follow-up today?",
    "How does this month compare to the same month last year?",
    "What inventory should we focus on moving quickly?",
)

# keyword groups -> tags, simple variant
SIMPLE_TAG_RULES = (
    (("inventory", "stock", "vehicle"), ("inventory_data",)),
    (("sales", "sold", "revenue"), ("sales_data", "financial_data")),
    (("customer", "lead", "crm"), ("customer_data", "leads_data", "crm_data")),
    (("profit", "finance", "money"), ("financial_data", "analytics_data")),
    (("job", "appointment", "task"), ("operations_data", "schedule_data")),
    (("performance", "kpi", "metric"), ("analytics_data", "business_intelligence")),
)

FULL_TAG_RULES = (
    (("inventory", "stock"), "inventory_data"),
    (("sales", "sold"), "sales_data"),
    (("customer",), "customer_data"),
    (("lead",), "lead_data"),
)


def _mentions(text: str, keywords: Sequence[str]) -> bool:
    return any(keyword in text for keyword in keywords)


def extract_context_used(message: str, user_context: dict | None = None) -> list[str]:
    """Tags for the memory-backed service."""
    text = message.lower()
    tags = [tag for keywords, tag in FULL_TAG_RULES if _mentions(text, keywords)]
    if user_context:
        if user_context.get("conversations"):
            tags.append("conversation_history")
        if user_context.get("preferences"):
            tags.append("user_preferences")
    return tags


def extract_simple_context_used(message: str) -> list[str]:
    """Tags for the simple service; defaults to ``comprehensive_data_access``."""
    text = message.lower()
    tags: list[str] = []
    for keywords, rule_tags in SIMPLE_TAG_RULES:
        if _mentions(text, keywords):
            tags.extend(tag for tag in rule_tags if tag not in tags)
    return tags or ["comprehensive_data_access"]


def contextual_suggestions(message: str, insights: Sequence[dict] = ()) -> list[str]:
    """Three follow-ups for the memory-backed service, keyed on the message topic."""
    text = message.lower()
    if _mentions(text, ("inventory", "stock")):
        suggestions = [
            "What vehicles have been in stock longest?",
            "Show me our most profitable makes",
            "Which vehicles should we prioritize for sale?",
        ]
    elif _mentions(text, ("sales", "performance")):
        suggestions = [
            "How does this month compare to last month?",
            "What's our lead conversion rate?",
            "Show me our top performing salesperson",
        ]
    elif "customer" in text:
        suggestions = [
            "Who are our highest value customers?",
            "What's our customer satisfaction trend?",
            "Which customers need follow-up?",
        ]
    else:
        suggestions = []
        if insights:
            suggestions.append(f"Tell me about the {insights[0]['title'].lower()}")
        suggestions += [
            "What opportunities should we focus on today?",
            "Give me a business performance summary",
            "What actions should I prioritize?",
        ]
    return suggestions[:3]


def snapshot_suggestions(snapshot: dict, limit: int = 4) -> list[str]:
    """Data-driven follow-ups for the simple service, topped up with strategic questions."""
    analytics = snapshot["analytics"]
    slow_moving = len(analytics["alerts"]["slow_moving_stock"])
    hot_leads = len(snapshot["leads"]["hot_leads"])
    overdue_jobs = len(snapshot["operations"]["jobs"]["overdue"])
    gross_margin = snapshot["financial"]["profit_margins"]["gross_margin"]

    suggestions = []
    if slow_moving > 5:
        suggestions.append(f"What should we do about the {slow_moving} vehicles that have been in stock over 90 days?")
    if hot_leads:
        suggestions.append(f"Show me details on our {hot_leads} hot leads and their status")
    if snapshot["financial"]["total_sales_revenue"] and gross_margin < 15:
        suggestions.append("How can we improve our gross profit margin which is currently below target?")
    if overdue_jobs:
        suggestions.append(f"Why do we have {overdue_jobs} overdue jobs?")
    if analytics["trends"]["sales_trend"] == "decline":
        suggestions.append("What's causing our sales decline and how can we reverse it?")

    for question in STRATEGIC_QUESTIONS:
        if len(suggestions) >= limit:
            break
        suggestions.append(question)
    return suggestions[:limit]
