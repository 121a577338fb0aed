"""
DealerGPT Data Aggregator

Fans out every independent read over the dealership schema concurrently,
one session per read, then folds the results into a single snapshot dict
with derived KPIs, trend labels and alert lists.

Reads (27 in total):
  - entity lists: vehicles, customers, leads, interactions, appointments,
    tasks, jobs, users, purchase invoices, sales invoices
  - statistics: dashboard, lead, customer, stock age, financial audit
  - monthly sales for the last 12 months

Any failed read fails the whole aggregation. The fan-out is bounded by a
deadline; outstanding reads are cancelled when it expires.
"""

import asyncio
import time
from collections.abc import Callable, Iterable
from datetime import date, datetime, timedelta, timezone
from typing import Any

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from db import storage
from db.models import CLOSED_PIPELINE_STAGES
from dealergpt.schemas import DegradedReason

logger = structlog.get_logger()

SessionFactory = Callable[[], AsyncSession]

MONTHS_OF_HISTORY = 12
RECENT_SALES_WINDOW = 20
SLOW_MOVING_DAYS = 90
HIGH_STOCK_THRESHOLD = 50
ACTIVE_JOB_STATUSES = ("pending", "assigned", "in_progress")
SERVICE_JOB_TYPES = ("service", "mot", "repair")
SLICE_ENTITIES = ("vehicles", "customers", "leads", "sales", "financial", "inventory")


class AggregationError(Exception):
    """One or more reads failed; no snapshot was produced."""


class AggregationTimeout(AggregationError):
    """The fan-out exceeded its deadline."""


# ─── Pure helpers ───────────────────────────────────────────────────────────


def months_to_fetch(now: datetime, count: int = MONTHS_OF_HISTORY) -> list[str]:
    """``YYYY-MM`` keys for the current month and the ``count - 1`` before it, newest first."""
    months = []
    year, month = now.year, now.month
    for _ in range(count):
        months.append(f"{year}-{month:02d}")
        month -= 1
        if month == 0:
            month = 12
            year -= 1
    return months


def group_by(items: Iterable[dict], key: str) -> dict[str, list[dict]]:
    """Group records by ``key``; missing or empty values land under ``"unknown"``."""
    groups: dict[str, list[dict]] = {}
    for item in items:
        value = item.get(key)
        label = str(value) if value not in (None, "") else "unknown"
        groups.setdefault(label, []).append(item)
    return groups


def calculate_inventory_turnover(stock_count: int, sold_count: int) -> float:
    return sold_count / (stock_count or 1)


def calculate_gross_roi(gross_profit: float, stock_value: float) -> float:
    return gross_profit / (stock_value or 1) * 100


def calculate_average_days_to_sell(vehicles: Iterable[dict]) -> int:
    """Mean whole days between purchase and sale, over vehicles with both dates."""
    spans = [
        (v["sale_date"] - v["purchase_invoice_date"]).days
        for v in vehicles
        if v.get("purchase_invoice_date") and v.get("sale_date")
    ]
    if not spans:
        return 0
    return round(sum(spans) / len(spans))


def classify_trend(monthly: dict[str, dict]) -> str:
    """Label month-over-month revenue change of the two latest months."""
    months = sorted(monthly)
    if len(months) < 2:
        return "stable"
    last = monthly[months[-1]].get("revenue") or 0
    previous = monthly[months[-2]].get("revenue") or 0
    if previous == 0:
        return "strong_growth" if last > 0 else "stable"

    change = (last - previous) / previous * 100
    if change > 10:
        return "strong_growth"
    if change > 0:
        return "growth"
    if change > -10:
        return "stable"
    return "decline"


def classify_profit_trend(sold_vehicles: list[dict], window: int = RECENT_SALES_WINDOW) -> str:
    """Compare average gross profit of the latest ``window`` sales with the ``window`` before."""
    recent = sold_vehicles[-window:]
    older = sold_vehicles[-2 * window : -window]
    if not recent or not older:
        return "stable"

    recent_avg = sum(v.get("total_gp") or 0 for v in recent) / len(recent)
    older_avg = sum(v.get("total_gp") or 0 for v in older) / len(older)
    if older_avg == 0:
        return "improving" if recent_avg > 0 else "stable"

    change = (recent_avg - older_avg) / abs(older_avg) * 100
    if change > 10:
        return "improving"
    if change > -10:
        return "stable"
    return "declining"


def classify_customer_trend(customers: Iterable[dict], now: datetime) -> str:
    """New customers in the last 30 days against the 30 days before."""
    thirty_days_ago = now - timedelta(days=30)
    sixty_days_ago = now - timedelta(days=60)
    recent = previous = 0
    for customer in customers:
        created = customer.get("created_at")
        if created is None:
            continue
        if created > thirty_days_ago:
            recent += 1
        elif created > sixty_days_ago:
            previous += 1

    if recent > previous * 1.2:
        return "growing"
    if recent < previous * 0.8:
        return "declining"
    return "stable"


def group_payment_methods(vehicles: Iterable[dict]) -> dict[str, float]:
    methods = {"cash": 0.0, "finance": 0.0, "bank_transfer": 0.0, "part_exchange": 0.0}
    fields = {
        "cash": "cash_payment",
        "finance": "finance_payment",
        "bank_transfer": "bank_payment",
        "part_exchange": "px_value",
    }
    for vehicle in vehicles:
        for method, field in fields.items():
            amount = vehicle.get(field) or 0
            if amount > 0:
                methods[method] += float(amount)
    return methods


def calculate_customer_lifetime_values(customers: Iterable[dict], sold_vehicles: list[dict]) -> list[dict]:
    """Spend per customer, matched to sold vehicles by customer name; highest spend first."""
    values = []
    for customer in customers:
        first = (customer.get("first_name") or "").strip().lower()
        last = (customer.get("last_name") or "").strip().lower()
        purchases = [
            v
            for v in sold_vehicles
            if first
            and last
            and (v.get("customer_first_name") or "").strip().lower() == first
            and (v.get("customer_surname") or "").strip().lower() == last
        ]
        total_spent = sum(float(v.get("total_sale_price") or 0) for v in purchases)
        sale_dates = sorted(v["sale_date"] for v in purchases if v.get("sale_date"))
        values.append(
            {
                "customer_id": customer.get("id"),
                "customer_name": f"{customer.get('first_name') or ''} {customer.get('last_name') or ''}".strip(),
                "total_purchases": len(purchases),
                "total_spent": total_spent,
                "average_purchase": total_spent / len(purchases) if purchases else 0.0,
                "first_purchase": sale_dates[0] if sale_dates else None,
                "last_purchase": sale_dates[-1] if sale_dates else None,
            }
        )
    values.sort(key=lambda item: item["total_spent"], reverse=True)
    return values


def calculate_average_customer_value(lifetime_values: list[dict]) -> float:
    if not lifetime_values:
        return 0.0
    return sum(item["total_spent"] for item in lifetime_values) / len(lifetime_values)


def generate_yearly_breakdown(monthly: dict[str, dict]) -> list[dict]:
    """Roll monthly figures up into calendar years, newest year first."""
    years: dict[str, dict] = {}
    for month, data in monthly.items():
        year = month.split("-")[0]
        bucket = years.setdefault(year, {"year": year, "count": 0, "revenue": 0.0, "profit": 0.0})
        bucket["count"] += data.get("count") or 0
        bucket["revenue"] += data.get("revenue") or 0
        bucket["profit"] += data.get("profit") or 0
    return sorted(years.values(), key=lambda item: item["year"], reverse=True)


def _as_datetime(value: Any) -> datetime | None:
    """Coerce to a naive UTC datetime. Unparseable strings raise ``ValueError``."""
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    else:
        text = str(value).strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def _same_day(value: datetime | None, day: date) -> bool:
    return value is not None and value.date() == day


# ─── Snapshot assembly ──────────────────────────────────────────────────────


def _monthly_breakdown(months: list[str], monthly_results: list[dict]) -> dict[str, dict]:
    breakdown = {}
    for month, data in zip(months, monthly_results):
        summary = (data or {}).get("sales_summary")
        if not summary:
            continue
        breakdown[month] = {
            "count": summary["total_units_sold"],
            "revenue": summary["total_revenue"],
            "profit": summary["gross_profit"],
            "net_profit": summary["net_profit"],
            "profit_margin": summary["profit_margin"],
            "avg_selling_price": summary["avg_selling_price"],
            "sales_by_make": data.get("sales_by_make", []),
        }
    return breakdown


def build_snapshot(raw: dict[str, Any], *, now: datetime, months: list[str]) -> dict:
    """Fold raw read results into the snapshot structure."""
    vehicles = raw["vehicles"]
    customers = raw["customers"]
    leads = raw["leads"]
    interactions = raw["interactions"]
    appointments = raw["appointments"]
    tasks = raw["tasks"]
    jobs = raw["jobs"]
    users = raw["users"]
    purchase_invoices = raw["purchase_invoices"]
    sales_invoices = raw["sales_invoices"]
    dashboard = raw["dashboard_stats"]
    stock_age = raw["stock_age"]
    financial_audit = raw["financial_audit"]

    def status_is(vehicle: dict, status: str) -> bool:
        return (vehicle.get("sales_status") or "").lower() == status

    stock_vehicles = [v for v in vehicles if status_is(v, "stock")]
    sold_vehicles = [v for v in vehicles if status_is(v, "sold")]
    autolab_vehicles = [v for v in vehicles if status_is(v, "autolab")]
    awaiting_delivery = [v for v in vehicles if (v.get("collection_status") or "").lower() == "awd"]

    total_stock_value = financial_audit["cost_analysis"]["total_purchase_cost"]
    total_sales_revenue = financial_audit["revenue_analysis"]["total_revenue"]
    total_gross_profit = financial_audit["profitability_analysis"]["gross_profit"]
    total_adjusted_profit = financial_audit["profitability_analysis"]["net_profit"]

    monthly = _monthly_breakdown(months, raw["monthly"])

    active_leads = [lead for lead in leads if lead.get("pipeline_stage") not in CLOSED_PIPELINE_STAGES]
    hot_leads = [lead for lead in active_leads if lead.get("lead_quality") == "hot"]
    follow_ups_due = [
        lead
        for lead in active_leads
        if lead.get("next_follow_up_date") is not None and lead["next_follow_up_date"] <= now
    ]

    today = now.date()
    active_jobs = [j for j in jobs if j.get("status") in ACTIVE_JOB_STATUSES]
    overdue_jobs = [
        j
        for j in jobs
        if j.get("scheduled_date") is not None and j["scheduled_date"] < now and j.get("status") != "completed"
    ]
    today_appointments = [a for a in appointments if _same_day(a.get("appointment_date"), today)]
    upcoming_appointments = [a for a in appointments if a.get("appointment_date") and a["appointment_date"] > now]
    pending_tasks = [t for t in tasks if t.get("status") == "pending"]
    overdue_tasks = [
        t for t in tasks if t.get("due_date") is not None and t["due_date"] < now and t.get("status") != "completed"
    ]

    lifetime_values = calculate_customer_lifetime_values(customers, sold_vehicles)
    stock_details = stock_age["stock_details"]

    uploads = sorted(
        [*purchase_invoices, *sales_invoices],
        key=lambda doc: doc.get("created_at") or datetime.min,
        reverse=True,
    )

    return {
        "timestamp": now,
        "system_status": {
            "database_connected": True,
            "total_records": len(vehicles) + len(customers) + len(leads) + len(sold_vehicles),
            "data_freshness": "real-time",
        },
        "vehicles": {
            "all_vehicles": vehicles,
            "stock_vehicles": stock_vehicles,
            "sold_vehicles": sold_vehicles,
            "autolab_vehicles": autolab_vehicles,
            "awaiting_delivery": awaiting_delivery,
            "by_status": group_by(vehicles, "sales_status"),
            "by_make": group_by(vehicles, "make"),
            "by_department": group_by(vehicles, "department"),
            "stock_summary": dashboard["stock_summary"],
            "stock_age": stock_age["summary"],
            "stock_age_details": stock_details,
        },
        "financial": {
            "total_stock_value": total_stock_value,
            "total_sales_revenue": total_sales_revenue,
            "total_gross_profit": total_gross_profit,
            "total_adjusted_profit": total_adjusted_profit,
            "profit_margins": {
                "gross_margin": total_gross_profit / total_sales_revenue * 100 if total_sales_revenue else 0.0,
                "adjusted_margin": total_adjusted_profit / total_sales_revenue * 100 if total_sales_revenue else 0.0,
            },
            "cash_flow": financial_audit["cash_flow_analysis"],
            "by_payment_method": group_payment_methods(sold_vehicles),
            "monthly_breakdown": monthly,
            "yearly_breakdown": generate_yearly_breakdown(monthly),
        },
        "sales": {
            "all_sales": sold_vehicles,
            "recent_sales": sold_vehicles[-RECENT_SALES_WINDOW:],
            "sales_by_salesperson": group_by(sold_vehicles, "salesperson"),
            "sales_by_make": group_by(sold_vehicles, "make"),
            "sales_by_month": monthly,
            "weekly_sales": dashboard["weekly_sales"],
            "monthly_sales": dashboard["monthly_sales"],
            "conversion_metrics": {
                "lead_to_sale": len(sold_vehicles) / (len(leads) or 1) * 100,
                "average_days_to_sell": calculate_average_days_to_sell(sold_vehicles),
                "average_sale_price": total_sales_revenue / (len(sold_vehicles) or 1),
            },
        },
        "customers": {
            "all_customers": customers,
            "active_customers": [c for c in customers if c.get("customer_type") == "active"],
            "customer_segments": group_by(customers, "customer_type"),
            "lifetime_values": lifetime_values,
            "interaction_history": interactions,
            "stats": raw["customer_stats"],
        },
        "leads": {
            "all_leads": leads,
            "active_leads": active_leads,
            "by_stage": group_by(leads, "pipeline_stage"),
            "by_source": group_by(leads, "lead_source"),
            "by_salesperson": group_by(leads, "assigned_salesperson_id"),
            "hot_leads": hot_leads,
            "follow_ups_due": follow_ups_due,
            "conversion_funnel": raw["lead_stats"],
        },
        "operations": {
            "jobs": {
                "all_jobs": jobs,
                "active_jobs": active_jobs,
                "by_type": group_by(jobs, "job_type"),
                "by_status": group_by(jobs, "status"),
                "overdue": overdue_jobs,
                "service_history": [j for j in jobs if j.get("job_type") in SERVICE_JOB_TYPES],
            },
            "appointments": {
                "all_appointments": appointments,
                "today": today_appointments,
                "upcoming": upcoming_appointments,
                "by_type": group_by(appointments, "appointment_type"),
            },
            "tasks": {
                "all_tasks": tasks,
                "pending": pending_tasks,
                "overdue": overdue_tasks,
                "by_assignee": group_by(tasks, "assigned_to_id"),
            },
        },
        "analytics": {
            "kpis": {
                "inventory_turnover": calculate_inventory_turnover(len(stock_vehicles), len(sold_vehicles)),
                "gross_roi": calculate_gross_roi(total_gross_profit, total_stock_value),
                "lifetime_customer_value": calculate_average_customer_value(lifetime_values),
                "sales_velocity": len(sold_vehicles) / 30,
            },
            "trends": {
                "sales_trend": classify_trend(monthly),
                "inventory_trend": "high" if len(stock_vehicles) > HIGH_STOCK_THRESHOLD else "normal",
                "profit_trend": classify_profit_trend(sold_vehicles),
                "customer_trend": classify_customer_trend(customers, now),
            },
            "alerts": {
                "slow_moving_stock": [d for d in stock_details if d["days_in_stock"] > SLOW_MOVING_DAYS],
                "overdue_followups": follow_ups_due,
                "overdue_jobs": overdue_jobs,
            },
        },
        "documents": {
            "purchase_invoices": purchase_invoices,
            "sales_invoices": sales_invoices,
            "recent_uploads": uploads[:10],
        },
        "staff": {
            "all_users": users,
            "active_users": [u for u in users if u.get("is_active") is not False],
            "by_role": group_by(users, "role"),
        },
    }


def _empty_raw(months: list[str]) -> dict[str, Any]:
    return {
        "vehicles": [],
        "customers": [],
        "leads": [],
        "interactions": [],
        "appointments": [],
        "tasks": [],
        "jobs": [],
        "users": [],
        "purchase_invoices": [],
        "sales_invoices": [],
        "dashboard_stats": {
            "stock_summary": {"total_vehicles": 0, "total_value": 0.0, "total_makes": 0},
            "sold_count": 0,
            "awaiting_delivery": 0,
            "weekly_sales": {"this_week": 0, "this_week_value": 0.0, "last_week": 0, "last_week_value": 0.0},
            "monthly_sales": {
                "this_month": 0,
                "this_month_value": 0.0,
                "last_month": 0,
                "last_month_value": 0.0,
                "gross_profit": 0.0,
            },
            "total_sales_value": 0.0,
        },
        "lead_stats": {
            "total_leads": 0,
            "active_leads": 0,
            "converted_leads": 0,
            "lost_leads": 0,
            "hot_leads": 0,
            "by_stage": {},
            "by_source": {},
            "conversion_rate": 0.0,
        },
        "customer_stats": {
            "total_customers": 0,
            "active_customers": 0,
            "prospective_customers": 0,
            "inactive_customers": 0,
            "new_last_30_days": 0,
        },
        "stock_age": {
            "summary": {
                "total_stock_vehicles": 0,
                "total_stock_value": 0.0,
                "average_age_in_stock": 0,
                "slow_moving_stock": 0,
                "fast_moving_stock": 0,
            },
            "age_distribution": [],
            "stock_details": [],
        },
        "financial_audit": {
            "revenue_analysis": {"total_revenue": 0.0, "cash_revenue": 0.0, "finance_revenue": 0.0, "units_sold": 0},
            "cost_analysis": {"total_purchase_cost": 0.0, "average_cost_per_vehicle": 0.0},
            "profitability_analysis": {"gross_profit": 0.0, "net_profit": 0.0, "profit_margin": 0.0},
            "cash_flow_analysis": {"inflow": 0.0, "outflow": 0.0, "net": 0.0},
        },
        "monthly": [None] * len(months),
    }


def empty_snapshot(now: datetime | None = None) -> dict:
    """Snapshot with the full shape and zero figures, used when aggregation fails."""
    now = now or datetime.utcnow()
    months = months_to_fetch(now)
    snapshot = build_snapshot(_empty_raw(months), now=now, months=months)
    snapshot["system_status"] = {
        "database_connected": False,
        "total_records": 0,
        "data_freshness": "unavailable",
    }
    return snapshot


# ─── Aggregator ─────────────────────────────────────────────────────────────


class DealershipAggregator:
    """Concurrent reader over the dealership schema."""

    def __init__(self, session_factory: SessionFactory, timeout_seconds: float = 20.0):
        self.session_factory = session_factory
        self.timeout_seconds = timeout_seconds

    async def read(self, reader: Callable[..., Any], *args: Any) -> Any:
        """Run one storage reader on its own session. Database errors raise ``AggregationError``."""
        try:
            async with self.session_factory() as session:
                return await reader(session, *args)
        except SQLAlchemyError as exc:
            raise AggregationError(str(exc)) from exc

    async def fetch_snapshot(self, now: datetime | None = None) -> dict:
        """Fetch everything concurrently and build the snapshot.

        Raises ``AggregationTimeout`` past the deadline and
        ``AggregationError`` when any read fails.
        """
        now = now or datetime.utcnow()
        months = months_to_fetch(now)
        started = time.perf_counter()

        named_reads = {
            "vehicles": (storage.get_vehicles,),
            "customers": (storage.get_customers,),
            "leads": (storage.get_leads,),
            "interactions": (storage.get_interactions,),
            "appointments": (storage.get_appointments,),
            "tasks": (storage.get_tasks,),
            "jobs": (storage.get_jobs,),
            "users": (storage.get_users,),
            "purchase_invoices": (storage.get_purchase_invoices,),
            "sales_invoices": (storage.get_sales_invoices,),
            "dashboard_stats": (storage.get_dashboard_stats, now),
            "lead_stats": (storage.get_lead_stats,),
            "customer_stats": (storage.get_customer_stats, now),
            "stock_age": (storage.get_stock_age_analytics, now),
            "financial_audit": (storage.get_financial_audit, now),
        }
        tasks = [asyncio.ensure_future(self.read(*call)) for call in named_reads.values()]
        tasks += [asyncio.ensure_future(self.read(storage.get_monthly_data, month)) for month in months]

        try:
            results = await asyncio.wait_for(asyncio.gather(*tasks), timeout=self.timeout_seconds)
        except asyncio.TimeoutError as exc:
            logger.warning(
                "dealergpt.aggregate.timeout",
                timeout_seconds=self.timeout_seconds,
                reads=len(tasks),
            )
            raise AggregationTimeout(f"Aggregation exceeded {self.timeout_seconds}s") from exc
        except Exception as exc:
            logger.error("dealergpt.aggregate.failed", error=str(exc), error_type=type(exc).__name__)
            raise AggregationError(str(exc)) from exc
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()

        raw = dict(zip(named_reads, results[: len(named_reads)]))
        raw["monthly"] = list(results[len(named_reads) :])
        try:
            snapshot = build_snapshot(raw, now=now, months=months)
        except Exception as exc:
            logger.error("dealergpt.aggregate.build_failed", error=str(exc), error_type=type(exc).__name__)
            raise AggregationError(str(exc)) from exc

        logger.info(
            "dealergpt.aggregate.completed",
            reads=len(tasks),
            total_records=snapshot["system_status"]["total_records"],
            duration_ms=int((time.perf_counter() - started) * 1000),
        )
        return snapshot

    async def fetch_snapshot_or_default(
        self, now: datetime | None = None
    ) -> tuple[dict, DegradedReason | None]:
        """Like ``fetch_snapshot`` but falls back to ``empty_snapshot`` with a reason."""
        try:
            return await self.fetch_snapshot(now), None
        except AggregationTimeout:
            return empty_snapshot(now), DegradedReason.DATA_TIMEOUT
        except Exception as exc:
            logger.warning("dealergpt.aggregate.defaulted", error=str(exc), error_type=type(exc).__name__)
            return empty_snapshot(now), DegradedReason.DATA_UNAVAILABLE

    async def get_data_slice(self, entity: str, filters: dict | None = None, now: datetime | None = None) -> Any:
        """Return one entity, optionally filtered. Unknown entities raise ``ValueError``."""
        entity = entity.lower()
        if entity not in SLICE_ENTITIES:
            raise ValueError(f"Unknown entity type: {entity}")
        filters = {k: v for k, v in (filters or {}).items() if v is not None}
        now = now or datetime.utcnow()
        logger.info("dealergpt.slice.requested", entity=entity, filters=sorted(filters))

        if entity == "vehicles":
            return filter_vehicles(await self.read(storage.get_vehicles), filters, now)
        if entity == "customers":
            return filter_customers(await self.read(storage.get_customers), filters)
        if entity == "leads":
            return filter_leads(await self.read(storage.get_leads), filters)
        if entity == "sales":
            vehicles = await self.read(storage.get_vehicles)
            sold = [v for v in vehicles if (v.get("sales_status") or "").lower() == "sold"]
            return filter_sales(sold, filters)
        if entity == "financial":
            return await self.read(storage.get_financial_audit, now)
        return await self.read(storage.get_stock_age_analytics, now)


# ─── Slice filters ──────────────────────────────────────────────────────────


def _matches(value: Any, wanted: Any) -> bool:
    return str(value or "").lower() == str(wanted).lower()


def filter_vehicles(vehicles: list[dict], filters: dict, now: datetime) -> list[dict]:
    result = []
    for v in vehicles:
        price = float(v.get("purchase_price_total") or 0)
        if "status" in filters and not _matches(v.get("sales_status"), filters["status"]):
            continue
        if "make" in filters and not _matches(v.get("make"), filters["make"]):
            continue
        if "min_price" in filters and price < float(filters["min_price"]):
            continue
        if "max_price" in filters and price > float(filters["max_price"]):
            continue
        if "days_in_stock" in filters:
            purchased = v.get("purchase_invoice_date")
            days = (now - purchased).days if purchased else 0
            if days < int(filters["days_in_stock"]):
                continue
        result.append(v)
    return result


def filter_customers(customers: list[dict], filters: dict) -> list[dict]:
    result = []
    for c in customers:
        if "type" in filters and c.get("customer_type") != filters["type"]:
            continue
        if "city" in filters and not _matches(c.get("city"), filters["city"]):
            continue
        if filters.get("active_only") and c.get("customer_type") != "active":
            continue
        result.append(c)
    return result


def filter_leads(leads: list[dict], filters: dict) -> list[dict]:
    result = []
    for lead in leads:
        if "stage" in filters and lead.get("pipeline_stage") != filters["stage"]:
            continue
        if "quality" in filters and lead.get("lead_quality") != filters["quality"]:
            continue
        if "assigned_to" in filters and lead.get("assigned_salesperson_id") != int(filters["assigned_to"]):
            continue
        if "source" in filters and lead.get("lead_source") != filters["source"]:
            continue
        result.append(lead)
    return result


def filter_sales(sold_vehicles: list[dict], filters: dict) -> list[dict]:
    start = _as_datetime(filters.get("start_date"))
    end = _as_datetime(filters.get("end_date"))
    result = []
    for sale in sold_vehicles:
        sale_date = _as_datetime(sale.get("sale_date"))
        if start and (sale_date is None or sale_date < start):
            continue
        if end and (sale_date is None or sale_date > end):
            continue
        if "salesperson" in filters and not _matches(sale.get("salesperson"), filters["salesperson"]):
            continue
        result.append(sale)
    return result
