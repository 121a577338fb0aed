"""
DealerDesk Storage Accessor

Async read functions over the dealership schema. Every function takes an
``AsyncSession`` and returns plain dicts so callers (DealerGPT aggregation,
API slices, workers) never hold ORM instances across sessions.

Password hashes never leave this module.
"""

from datetime import datetime, timedelta

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from db.models import (
    CLOSED_PIPELINE_STAGES,
    PIPELINE_STAGES,
    Appointment,
    Customer,
    Interaction,
    Job,
    Lead,
    PurchaseInvoice,
    SalesInvoice,
    Task,
    User,
    Vehicle,
)

STOCK_AGE_BUCKETS = (
    ("0-30", 0, 30),
    ("31-60", 31, 60),
    ("61-90", 61, 90),
    ("90+", 91, None),
)

# 0.08% of purchase price per day, roughly 30% a year
DAILY_CARRYING_COST_RATE = 0.0008


def row_to_dict(row, exclude: tuple[str, ...] = ()) -> dict:
    return {c.key: getattr(row, c.key) for c in row.__table__.columns if c.key not in exclude}


async def _all(session: AsyncSession, model, *order_by, exclude: tuple[str, ...] = ()) -> list[dict]:
    query = select(model).order_by(*(order_by or (model.id,)))
    result = await session.execute(query)
    return [row_to_dict(row, exclude) for row in result.scalars().all()]


def _is_stock():
    return func.lower(Vehicle.sales_status) == "stock"


def _is_sold():
    return func.lower(Vehicle.sales_status) == "sold"


def _month_start(value: datetime) -> datetime:
    return datetime(value.year, value.month, 1)


def _shift_month(value: datetime, months: int) -> datetime:
    index = value.year * 12 + (value.month - 1) + months
    return datetime(index // 12, index % 12 + 1, 1)


def _week_start(value: datetime) -> datetime:
    """Start of the week containing ``value``; weeks start on Sunday."""
    days_since_sunday = (value.weekday() + 1) % 7
    day = value - timedelta(days=days_since_sunday)
    return datetime(day.year, day.month, day.day)


def _financial_year_start(value: datetime) -> datetime:
    """UK financial year runs April to March."""
    year = value.year if value.month >= 4 else value.year - 1
    return datetime(year, 4, 1)


def parse_month(month: str) -> tuple[datetime, datetime]:
    """Parse ``YYYY-MM`` into a half-open ``[start, end)`` datetime range."""
    try:
        year_str, month_str = month.split("-")
        start = datetime(int(year_str), int(month_str), 1)
    except (ValueError, AttributeError) as exc:
        raise ValueError(f"Invalid month '{month}', expected YYYY-MM") from exc
    return start, _shift_month(start, 1)


# ─── Entity lists ───────────────────────────────────────────────────────────


async def get_vehicles(session: AsyncSession) -> list[dict]:
    return await _all(session, Vehicle)


async def get_customers(session: AsyncSession) -> list[dict]:
    return await _all(session, Customer)


async def get_leads(session: AsyncSession) -> list[dict]:
    return await _all(session, Lead)


async def get_interactions(session: AsyncSession) -> list[dict]:
    return await _all(session, Interaction, Interaction.created_at.desc(), Interaction.id.desc())


async def get_appointments(session: AsyncSession) -> list[dict]:
    return await _all(session, Appointment, Appointment.appointment_date, Appointment.id)


async def get_tasks(session: AsyncSession) -> list[dict]:
    return await _all(session, Task)


async def get_jobs(session: AsyncSession) -> list[dict]:
    return await _all(session, Job)


async def get_users(session: AsyncSession) -> list[dict]:
    """All staff accounts, without password hashes."""
    return await _all(session, User, exclude=("password",))


async def get_purchase_invoices(session: AsyncSession) -> list[dict]:
    return await _all(session, PurchaseInvoice, PurchaseInvoice.created_at.desc(), PurchaseInvoice.id.desc())


async def get_sales_invoices(session: AsyncSession) -> list[dict]:
    return await _all(session, SalesInvoice, SalesInvoice.created_at.desc(), SalesInvoice.id.desc())


# ─── Statistics ─────────────────────────────────────────────────────────────


async def _sales_between(session: AsyncSession, start: datetime, end: datetime) -> tuple[int, float, float]:
    query = select(
        func.count(Vehicle.id),
        func.coalesce(func.sum(Vehicle.total_sale_price), 0),
        func.coalesce(func.sum(Vehicle.total_gp), 0),
    ).where(Vehicle.sale_date >= start, Vehicle.sale_date < end)
    count, value, gross = (await session.execute(query)).one()
    return int(count or 0), float(value or 0), float(gross or 0)


async def get_dashboard_stats(session: AsyncSession, now: datetime | None = None) -> dict:
    """Stock summary plus weekly and monthly sales counts keyed on sale_date."""
    now = now or datetime.utcnow()

    stock_q = select(
        func.count(Vehicle.id),
        func.coalesce(func.sum(Vehicle.purchase_price_total), 0),
        func.count(func.distinct(Vehicle.make)),
    ).where(_is_stock())
    stock_count, stock_value, stock_makes = (await session.execute(stock_q)).one()

    sold_q = select(
        func.count(Vehicle.id),
        func.coalesce(func.sum(Vehicle.total_sale_price), 0),
    ).where(_is_sold())
    sold_count, total_sales_value = (await session.execute(sold_q)).one()

    awd_q = select(func.count(Vehicle.id)).where(func.lower(Vehicle.collection_status) == "awd")
    awaiting_delivery = (await session.execute(awd_q)).scalar() or 0

    this_week_start = _week_start(now)
    last_week_start = this_week_start - timedelta(days=7)
    this_month_start = _month_start(now)
    last_month_start = _shift_month(this_month_start, -1)
    tomorrow = datetime(now.year, now.month, now.day) + timedelta(days=1)

    this_week, this_week_value, _ = await _sales_between(session, this_week_start, tomorrow)
    last_week, last_week_value, _ = await _sales_between(session, last_week_start, this_week_start)
    this_month, this_month_value, month_gp = await _sales_between(session, this_month_start, tomorrow)
    last_month, last_month_value, _ = await _sales_between(session, last_month_start, this_month_start)

    return {
        "stock_summary": {
            "total_vehicles": int(stock_count or 0),
            "total_value": float(stock_value or 0),
            "total_makes": int(stock_makes or 0),
        },
        "sold_count": int(sold_count or 0),
        "awaiting_delivery": int(awaiting_delivery),
        "weekly_sales": {
            "this_week": this_week,
            "this_week_value": this_week_value,
            "last_week": last_week,
            "last_week_value": last_week_value,
        },
        "monthly_sales": {
            "this_month": this_month,
            "this_month_value": this_month_value,
            "last_month": last_month,
            "last_month_value": last_month_value,
            "gross_profit": month_gp,
        },
        "total_sales_value": float(total_sales_value or 0),
    }


async def get_lead_stats(session: AsyncSession) -> dict:
    """Pipeline counts and conversion rate."""
    stage_q = select(Lead.pipeline_stage, func.count(Lead.id)).group_by(Lead.pipeline_stage)
    stage_rows = (await session.execute(stage_q)).all()
    by_stage = {stage: 0 for stage in PIPELINE_STAGES}
    for stage, count in stage_rows:
        by_stage[stage] = int(count)

    source_q = select(Lead.lead_source, func.count(Lead.id)).group_by(Lead.lead_source)
    by_source = {source: int(count) for source, count in (await session.execute(source_q)).all()}

    hot_q = select(func.count(Lead.id)).where(
        Lead.lead_quality == "hot",
        Lead.pipeline_stage.notin_(CLOSED_PIPELINE_STAGES),
    )
    hot = (await session.execute(hot_q)).scalar() or 0

    total = sum(by_stage.values())
    converted = by_stage["converted"]
    lost = by_stage["lost"]
    return {
        "total_leads": total,
        "active_leads": total - converted - lost,
        "converted_leads": converted,
        "lost_leads": lost,
        "hot_leads": int(hot),
        "by_stage": by_stage,
        "by_source": by_source,
        "conversion_rate": round(converted / total * 100, 1) if total else 0.0,
    }


async def get_customer_stats(session: AsyncSession, now: datetime | None = None) -> dict:
    now = now or datetime.utcnow()
    type_q = select(Customer.customer_type, func.count(Customer.id)).group_by(Customer.customer_type)
    by_type = {ctype: int(count) for ctype, count in (await session.execute(type_q)).all()}

    new_q = select(func.count(Customer.id)).where(Customer.created_at > now - timedelta(days=30))
    new_last_30_days = (await session.execute(new_q)).scalar() or 0

    return {
        "total_customers": sum(by_type.values()),
        "active_customers": by_type.get("active", 0),
        "prospective_customers": by_type.get("prospect", 0),
        "inactive_customers": by_type.get("inactive", 0),
        "new_last_30_days": int(new_last_30_days),
    }


def _depreciation_risk(days_in_stock: int) -> str:
    if days_in_stock > 180:
        return "critical"
    if days_in_stock > 90:
        return "high"
    if days_in_stock > 60:
        return "medium"
    return "low"


async def get_stock_age_analytics(session: AsyncSession, now: datetime | None = None) -> dict:
    """Per-vehicle days in stock, age buckets and carrying cost for current stock."""
    now = now or datetime.utcnow()
    query = (
        select(Vehicle)
        .where(_is_stock(), Vehicle.purchase_invoice_date.is_not(None))
        .order_by(Vehicle.purchase_invoice_date)
    )
    vehicles = (await session.execute(query)).scalars().all()

    details = []
    for v in vehicles:
        days = max((now - v.purchase_invoice_date).days, 0)
        price = float(v.purchase_price_total or 0)
        daily_cost = price * DAILY_CARRYING_COST_RATE
        details.append(
            {
                "id": v.id,
                "stock_number": v.stock_number or "",
                "registration": v.registration or "",
                "make": v.make or "",
                "model": v.model or "",
                "purchase_invoice_date": v.purchase_invoice_date,
                "purchase_price_total": price,
                "days_in_stock": days,
                "carrying_cost_daily": round(daily_cost, 2),
                "total_carrying_cost": round(daily_cost * days, 2),
                "depreciation_risk": _depreciation_risk(days),
            }
        )

    distribution = []
    for label, low, high in STOCK_AGE_BUCKETS:
        bucket = [d for d in details if d["days_in_stock"] >= low and (high is None or d["days_in_stock"] <= high)]
        distribution.append(
            {
                "age_range": label,
                "count": len(bucket),
                "total_value": sum(d["purchase_price_total"] for d in bucket),
                "percentage": round(len(bucket) / len(details) * 100, 1) if details else 0.0,
            }
        )

    total_days = sum(d["days_in_stock"] for d in details)
    return {
        "summary": {
            "total_stock_vehicles": len(details),
            "total_stock_value": sum(d["purchase_price_total"] for d in details),
            "average_age_in_stock": round(total_days / len(details)) if details else 0,
            "slow_moving_stock": sum(1 for d in details if d["days_in_stock"] > 90),
            "fast_moving_stock": sum(1 for d in details if d["days_in_stock"] < 30),
        },
        "age_distribution": distribution,
        "stock_details": details,
    }


async def get_financial_audit(session: AsyncSession, now: datetime | None = None) -> dict:
    """Financial-year revenue and profit, current stock cost and cash flow."""
    now = now or datetime.utcnow()
    fy_start = _financial_year_start(now)
    fy_end = datetime(fy_start.year + 1, 4, 1)

    revenue_q = select(
        func.coalesce(func.sum(Vehicle.total_sale_price), 0),
        func.coalesce(func.sum(Vehicle.cash_payment), 0) + func.coalesce(func.sum(Vehicle.bank_payment), 0),
        func.coalesce(func.sum(Vehicle.finance_payment), 0),
        func.coalesce(func.sum(Vehicle.total_gp), 0),
        func.coalesce(func.sum(Vehicle.adj_gp), 0),
        func.count(Vehicle.id),
    ).where(_is_sold(), Vehicle.sale_date >= fy_start, Vehicle.sale_date < fy_end)
    revenue, cash_revenue, finance_revenue, gross, net, units = (await session.execute(revenue_q)).one()

    stock_q = select(
        func.coalesce(func.sum(Vehicle.purchase_price_total), 0),
        func.count(Vehicle.id),
    ).where(_is_stock())
    stock_cost, stock_count = (await session.execute(stock_q)).one()

    bought_q = select(func.coalesce(func.sum(Vehicle.purchase_price_total), 0)).where(
        Vehicle.purchase_invoice_date >= fy_start,
        Vehicle.purchase_invoice_date < fy_end,
    )
    outflow = float((await session.execute(bought_q)).scalar() or 0)

    revenue = float(revenue or 0)
    gross = float(gross or 0)
    net = float(net or 0)
    stock_cost = float(stock_cost or 0)
    return {
        "period": {"start": fy_start, "end": fy_end},
        "revenue_analysis": {
            "total_revenue": revenue,
            "cash_revenue": float(cash_revenue or 0),
            "finance_revenue": float(finance_revenue or 0),
            "units_sold": int(units or 0),
        },
        "cost_analysis": {
            "total_purchase_cost": stock_cost,
            "average_cost_per_vehicle": stock_cost / stock_count if stock_count else 0.0,
        },
        "profitability_analysis": {
            "gross_profit": gross,
            "net_profit": net,
            "profit_margin": round(gross / revenue * 100, 1) if revenue else 0.0,
        },
        "cash_flow_analysis": {
            "inflow": revenue,
            "outflow": outflow,
            "net": revenue - outflow,
        },
    }


async def get_monthly_data(session: AsyncSession, month: str) -> dict:
    """Sales summary and sales-by-make for one ``YYYY-MM`` month."""
    start, end = parse_month(month)
    window = (_is_sold(), Vehicle.sale_date >= start, Vehicle.sale_date < end)

    summary_q = select(
        func.count(Vehicle.id),
        func.coalesce(func.sum(Vehicle.total_sale_price), 0),
        func.coalesce(func.sum(Vehicle.total_gp), 0),
        func.coalesce(func.sum(Vehicle.adj_gp), 0),
    ).where(*window)
    units, revenue, gross, net = (await session.execute(summary_q)).one()

    revenue_sum = func.coalesce(func.sum(Vehicle.total_sale_price), 0)
    make_q = (
        select(Vehicle.make, revenue_sum, func.count(Vehicle.id))
        .where(*window)
        .group_by(Vehicle.make)
        .order_by(revenue_sum.desc())
    )
    by_make = [
        {
            "make": make or "Unknown",
            "revenue": float(make_revenue or 0),
            "units": int(make_units),
            "avg_price": float(make_revenue or 0) / make_units if make_units else 0.0,
        }
        for make, make_revenue, make_units in (await session.execute(make_q)).all()
    ]

    units = int(units or 0)
    revenue = float(revenue or 0)
    gross = float(gross or 0)
    return {
        "month": month,
        "sales_summary": {
            "total_units_sold": units,
            "total_revenue": revenue,
            "gross_profit": gross,
            "net_profit": float(net or 0),
            "profit_margin": round(gross / revenue * 100, 1) if revenue else 0.0,
            "avg_selling_price": revenue / units if units else 0.0,
        },
        "sales_by_make": by_make,
    }
