"""
DealerGPT prompt construction.

Renders a snapshot (see ``dealergpt.aggregator``) into a deterministic system
prompt, turns stored conversation turns into chat messages, and keeps the
whole message list inside a character budget by dropping the oldest turns.
"""

from collections.abc import Iterable, Sequence
from datetime import date, datetime

MONTH_NAMES = (
    "January",
    "February",
    "March",
    "April",
    "May",
    "June",
    "July",
    "August",
    "September",
    "October",
    "November",
    "December",
)

MAX_RECENT_SALES = 5
MAX_PROMPT_INSIGHTS = 5
MAX_GREETING_INSIGHTS = 2


def format_gbp(value: float | int | None) -> str:
    """``12345`` -> ``£12,345``; pence only when non-zero (``£99.50``)."""
    amount = float(value or 0)
    sign = "-" if amount < 0 else ""
    amount = abs(amount)
    pence = round(amount * 100) % 100
    if pence:
        return f"{sign}£{amount:,.2f}"
    return f"{sign}£{round(amount):,}"


def format_long_date(value: date | datetime) -> str:
    """``19 October 2026``."""
    return f"{value.day} {MONTH_NAMES[value.month - 1]} {value.year}"


def format_month_label(month: str) -> str:
    """``2026-10`` -> ``October 2026``."""
    year, month_num = month.split("-")
    return f"{MONTH_NAMES[int(month_num) - 1]} {year}"


def _pct(value: float | None) -> str:
    return f"{float(value or 0):.1f}%"


def _monthly_lines(monthly: dict[str, dict]) -> list[str]:
    lines = []
    for month in sorted(monthly):
        data = monthly[month]
        lines.append(
            f"- {format_month_label(month)}: {data.get('count', 0)} vehicles sold, "
            f"{format_gbp(data.get('revenue'))} revenue, {format_gbp(data.get('profit'))} gross profit"
        )
    return lines


def _user_context_lines(user_context: dict) -> list[str]:
    return [
        "USER CONTEXT:",
        f"- User ID: {user_context.get('user_id')}",
        f"- Previous conversations: {len(user_context.get('conversations') or [])}",
        f"- Stored preferences: {len(user_context.get('preferences') or [])}",
        f"- Active insights: {len(user_context.get('insights') or [])}",
        "",
    ]


def build_system_prompt(
    snapshot: dict,
    *,
    now: datetime,
    user_context: dict | None = None,
    insights: Sequence[dict] = (),
) -> str:
    """Render the snapshot into the DealerGPT system prompt."""
    vehicles = snapshot["vehicles"]
    financial = snapshot["financial"]
    sales = snapshot["sales"]
    leads = snapshot["leads"]
    customers = snapshot["customers"]
    operations = snapshot["operations"]
    analytics = snapshot["analytics"]
    status = snapshot["system_status"]
    kpis = analytics["kpis"]
    conversion = sales["conversion_metrics"]

    connected = "connected" if status.get("database_connected") else "UNAVAILABLE (figures below are empty)"

    lines = [
        "You are DealerGPT, the assistant embedded in the DealerDesk dealer management system. "
        "Answer questions about inventory, sales, customers, leads and operations using the "
        "figures below.",
        "",
        f"CURRENT DATE: {format_long_date(now)}",
        "",
        "INTEGRATION STATUS:",
        f"- Dealership database: {connected}",
        f"- Records loaded: {status.get('total_records', 0)}",
        f"- Data freshness: {status.get('data_freshness', 'unknown')}",
        "",
    ]

    if user_context:
        lines += _user_context_lines(user_context)

    lines += [
        "INVENTORY:",
        f"- {len(vehicles['stock_vehicles'])} vehicles in stock ({format_gbp(financial['total_stock_value'])} value)",
        f"- {len(vehicles['sold_vehicles'])} vehicles sold",
        f"- {len(vehicles['autolab_vehicles'])} Autolab vehicles",
        f"- {len(vehicles['awaiting_delivery'])} awaiting delivery",
        f"- Average days to sell: {conversion['average_days_to_sell']}",
        f"- Inventory turnover: {kpis['inventory_turnover']:.2f}x",
        "",
        "FINANCIAL PERFORMANCE:",
        f"- Total revenue: {format_gbp(financial['total_sales_revenue'])}",
        f"- Gross profit: {format_gbp(financial['total_gross_profit'])} "
        f"({_pct(financial['profit_margins']['gross_margin'])} margin)",
        f"- Adjusted profit: {format_gbp(financial['total_adjusted_profit'])} "
        f"({_pct(financial['profit_margins']['adjusted_margin'])} margin)",
        f"- Gross ROI: {_pct(kpis['gross_roi'])}",
        f"- Net cash flow: {format_gbp(financial['cash_flow'].get('net'))}",
        "",
        "SALES & PIPELINE:",
        f"- Sales this week: {sales['weekly_sales']['this_week']} (last week {sales['weekly_sales']['last_week']})",
        f"- Sales this month: {sales['monthly_sales']['this_month']} "
        f"(last month {sales['monthly_sales']['last_month']})",
        f"- {len(leads['active_leads'])} active leads, {len(leads['hot_leads'])} hot",
        f"- {len(leads['follow_ups_due'])} follow-ups due",
        f"- Lead to sale: {_pct(conversion['lead_to_sale'])}",
        f"- Average sale price: {format_gbp(conversion['average_sale_price'])}",
        f"- {len(customers['all_customers'])} customers, {len(customers['active_customers'])} active",
        "",
        "OPERATIONS:",
        f"- {len(operations['appointments']['today'])} appointments today, "
        f"{len(operations['appointments']['upcoming'])} upcoming",
        f"- {len(operations['jobs']['active_jobs'])} active jobs, {len(operations['jobs']['overdue'])} overdue",
        f"- {len(operations['tasks']['pending'])} pending tasks, {len(operations['tasks']['overdue'])} overdue",
        "",
        "MONTHLY SALES:",
    ]
    lines += _monthly_lines(financial["monthly_breakdown"]) or ["- No sales recorded"]

    recent = sales["recent_sales"][-MAX_RECENT_SALES:]
    lines += ["", "RECENT SALES:"]
    lines += [
        f"- {v.get('stock_number') or 'N/A'}: {v.get('make') or ''} {v.get('model') or ''} "
        f"({format_gbp(v.get('total_sale_price'))})"
        for v in reversed(recent)
    ] or ["- No recent sales"]

    alerts = analytics["alerts"]
    trends = analytics["trends"]
    lines += [
        "",
        "BUSINESS ALERTS:",
        f"- {len(alerts['slow_moving_stock'])} slow-moving vehicles (over 90 days)",
        f"- {len(alerts['overdue_followups'])} overdue follow-ups",
        f"- Sales trend: {trends['sales_trend']}",
        f"- Profit trend: {trends['profit_trend']}",
        f"- Customer trend: {trends['customer_trend']}",
    ]

    if insights:
        lines += ["", "PROACTIVE INSIGHTS:"]
        lines += [f"- {i['title']}: {i['description']}" for i in list(insights)[:MAX_PROMPT_INSIGHTS]]

    lines += [
        "",
        "RESPONSE GUIDELINES:",
        "1. Cite the specific figures above that support each answer.",
        "2. Use the MONTHLY SALES section for questions about a particular month.",
        "3. If the figures needed are not listed, say so rather than estimating.",
        "4. Give actionable recommendations grounded in the data.",
        "5. Use British English and pounds sterling.",
        "6. Be concise, professional and data-driven.",
    ]
    return "\n".join(lines)


def _turn_chars(conversation: dict) -> int:
    return len(conversation.get("message") or "") + len(conversation.get("response") or "")


def build_conversation_history(
    conversations: Sequence[dict],
    *,
    max_turns: int = 10,
    max_chars: int | None = None,
) -> list[dict]:
    """Render stored turns (newest first) as chat messages, oldest first.

    Keeps at most ``max_turns`` of the newest turns and drops the oldest ones
    once ``max_chars`` is exhausted.
    """
    kept = []
    used = 0
    for conversation in list(conversations)[:max_turns]:
        size = _turn_chars(conversation)
        if max_chars is not None and used + size > max_chars:
            break
        kept.append(conversation)
        used += size

    messages = []
    for conversation in reversed(kept):
        messages.append({"role": "user", "content": conversation.get("message") or ""})
        messages.append({"role": "assistant", "content": conversation.get("response") or ""})
    return messages


def build_messages(system_prompt: str, history: Sequence[dict], message: str, *, max_chars: int) -> list[dict]:
    """Final chat message list with history trimmed to the remaining budget."""
    budget = max_chars - len(system_prompt) - len(message)
    history = list(history)
    while history and sum(len(m["content"]) for m in history) > budget:
        # drop the oldest user/assistant pair
        history = history[2:]
    return [
        {"role": "system", "content": system_prompt},
        *history,
        {"role": "user", "content": message},
    ]


def build_greeting(
    snapshot: dict,
    *,
    user_name: str | None = None,
    returning: bool = False,
    insights: Iterable[dict] = (),
) -> str:
    """Memory-aware KPI greeting."""
    greeting = f"Hello {user_name or 'there'}! I'm DealerGPT, your dealership assistant. "
    if returning:
        greeting += "Welcome back! I remember our previous conversations. "

    stock = snapshot["vehicles"]["stock_summary"]
    lines = [
        greeting + "Here's your current dealership overview:",
        "",
        "**Current Status:**",
        f"- {stock['total_vehicles']} vehicles in stock ({format_gbp(stock['total_value'])})",
        f"- {snapshot['sales']['weekly_sales']['this_week']} sales this week",
        f"- {len(snapshot['leads']['active_leads'])} active leads",
    ]

    shown = list(insights)[:MAX_GREETING_INSIGHTS]
    if shown:
        lines += ["", "**Insights & Alerts:**"]
        lines += [f"- {i['title']}: {i['description']}" for i in shown]

    lines += ["", "How can I help you today?"]
    return "\n".join(lines)


def build_simple_greeting(snapshot: dict) -> str:
    """KPI greeting without user memory."""
    vehicles = snapshot["vehicles"]
    financial = snapshot["financial"]
    operations = snapshot["operations"]
    return "\n".join(
        [
            "Hello! I'm DealerGPT, your dealership assistant.",
            "",
            "**Current Business Overview:**",
            f"- {len(vehicles['stock_vehicles'])} vehicles in stock ({format_gbp(financial['total_stock_value'])})",
            f"- {len(vehicles['sold_vehicles'])} vehicles sold to date",
            f"- {len(snapshot['leads']['active_leads'])} active leads in pipeline",
            f"- {len(snapshot['customers']['all_customers'])} total customers",
            "",
            "**Financial Performance:**",
            f"- Total revenue: {format_gbp(financial['total_sales_revenue'])}",
            f"- Gross profit: {format_gbp(financial['total_gross_profit'])} "
            f"({_pct(financial['profit_margins']['gross_margin'])} margin)",
            f"- Inventory turnover: {snapshot['analytics']['kpis']['inventory_turnover']:.2f}x",
            "",
            "**Today's Operations:**",
            f"- {len(operations['appointments']['today'])} appointments scheduled",
            f"- {len(operations['jobs']['active_jobs'])} active jobs in progress",
            f"- {len(snapshot['leads']['follow_ups_due'])} follow-ups due",
            "",
            "How can I help you today?",
        ]
    )
