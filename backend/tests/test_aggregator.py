"""
Aggregator tests — pure KPI helpers, the concurrent snapshot fan-out and
filtered data slices.
"""

import asyncio
from datetime import datetime, timedelta

import pytest

from db import storage
from dealergpt.aggregator import (
    AggregationError,
    AggregationTimeout,
    DealershipAggregator,
    calculate_average_days_to_sell,
    calculate_customer_lifetime_values,
    calculate_gross_roi,
    calculate_inventory_turnover,
    classify_customer_trend,
    classify_profit_trend,
    classify_trend,
    empty_snapshot,
    filter_sales,
    generate_yearly_breakdown,
    group_by,
    group_payment_methods,
    months_to_fetch,
)
from dealergpt.schemas import DegradedReason


class TestMonthsToFetch:
    def test_newest_first_across_year_boundary(self):
        assert months_to_fetch(datetime(2026, 2, 10), 3) == ["2026-02", "2026-01", "2025-12"]

    def test_default_is_twelve_months(self):
        months = months_to_fetch(datetime(2026, 10, 14))
        assert len(months) == 12
        assert months[0] == "2026-10"
        assert months[-1] == "2025-11"


class TestKpiHelpers:
    def test_group_by_missing_values_are_unknown(self):
        groups = group_by([{"make": "Ford"}, {"make": None}, {}, {"make": ""}], "make")
        assert len(groups["Ford"]) == 1
        assert len(groups["unknown"]) == 3

    def test_inventory_turnover_with_no_stock(self):
        assert calculate_inventory_turnover(0, 5) == 5

    def test_inventory_turnover(self):
        assert calculate_inventory_turnover(4, 2) == 0.5

    def test_gross_roi_with_no_stock_value(self):
        assert calculate_gross_roi(500.0, 0) == 50000.0

    def test_average_days_to_sell_without_dates(self):
        vehicles = [{"sale_date": datetime(2026, 1, 1)}, {"purchase_invoice_date": datetime(2026, 1, 1)}]
        assert calculate_average_days_to_sell(vehicles) == 0

    def test_average_days_to_sell(self):
        vehicles = [
            {"purchase_invoice_date": datetime(2026, 1, 1), "sale_date": datetime(2026, 1, 11)},
            {"purchase_invoice_date": datetime(2026, 1, 1), "sale_date": datetime(2026, 1, 21)},
            {"purchase_invoice_date": datetime(2026, 1, 1), "sale_date": None},
        ]
        assert calculate_average_days_to_sell(vehicles) == 15

    def test_payment_methods_ignore_empty_and_negative(self):
        methods = group_payment_methods(
            [
                {"cash_payment": 1000.0, "finance_payment": 0, "px_value": -50},
                {"cash_payment": 500.0, "bank_payment": 250.0, "px_value": 3000.0},
            ]
        )
        assert methods == {"cash": 1500.0, "finance": 0.0, "bank_transfer": 250.0, "part_exchange": 3000.0}

    def test_yearly_breakdown_newest_first(self):
        yearly = generate_yearly_breakdown(
            {
                "2025-12": {"count": 1, "revenue": 100.0, "profit": 10.0},
                "2026-01": {"count": 2, "revenue": 300.0, "profit": 30.0},
                "2026-02": {"count": 1, "revenue": 200.0, "profit": 20.0},
            }
        )
        assert yearly == [
            {"year": "2026", "count": 3, "revenue": 500.0, "profit": 50.0},
            {"year": "2025", "count": 1, "revenue": 100.0, "profit": 10.0},
        ]


class TestTrends:
    @pytest.mark.parametrize(
        "previous,last,expected",
        [
            (100.0, 120.0, "strong_growth"),
            (100.0, 105.0, "growth"),
            (100.0, 95.0, "stable"),
            (100.0, 80.0, "decline"),
            (0.0, 50.0, "strong_growth"),
            (0.0, 0.0, "stable"),
        ],
    )
    def test_sales_trend(self, previous, last, expected):
        monthly = {"2026-09": {"revenue": previous}, "2026-10": {"revenue": last}}
        assert classify_trend(monthly) == expected

    def test_sales_trend_needs_two_months(self):
        assert classify_trend({"2026-10": {"revenue": 10.0}}) == "stable"

    def test_profit_trend_needs_two_windows(self):
        assert classify_profit_trend([{"total_gp": 100.0}], window=2) == "stable"

    def test_profit_trend_declining(self):
        sales = [{"total_gp": 100.0}, {"total_gp": 100.0}, {"total_gp": 50.0}, {"total_gp": 50.0}]
        assert classify_profit_trend(sales, window=2) == "declining"

    def test_profit_trend_from_zero(self):
        sales = [{"total_gp": 0}, {"total_gp": 0}, {"total_gp": 10.0}, {"total_gp": 0}]
        assert classify_profit_trend(sales, window=2) == "improving"

    def test_profit_trend_against_losses(self):
        sales = [{"total_gp": -100.0}, {"total_gp": -100.0}, {"total_gp": -50.0}, {"total_gp": -50.0}]
        assert classify_profit_trend(sales, window=2) == "improving"

    def test_customer_trend(self):
        now = datetime(2026, 10, 14)
        growing = [{"created_at": now - timedelta(days=d)} for d in (1, 2, 3, 40)]
        declining = [{"created_at": now - timedelta(days=d)} for d in (1, 35, 40, 50)]
        assert classify_customer_trend(growing, now) == "growing"
        assert classify_customer_trend(declining, now) == "declining"
        assert classify_customer_trend([], now) == "stable"


class TestLifetimeValues:
    def test_matches_first_and_last_name(self):
        customers = [
            {"id": 1, "first_name": "Jane", "last_name": "Smith"},
            {"id": 2, "first_name": "Jane", "last_name": "Doe"},
        ]
        sold = [
            {"customer_first_name": "jane", "customer_surname": "SMITH ", "total_sale_price": 10000.0,
             "sale_date": datetime(2026, 1, 5)},
            {"customer_first_name": "Jane", "customer_surname": "Smith", "total_sale_price": 6000.0,
             "sale_date": datetime(2026, 3, 5)},
        ]
        values = calculate_customer_lifetime_values(customers, sold)

        assert values[0]["customer_id"] == 1
        assert values[0]["total_purchases"] == 2
        assert values[0]["total_spent"] == 16000.0
        assert values[0]["average_purchase"] == 8000.0
        assert values[0]["first_purchase"] == datetime(2026, 1, 5)
        assert values[1]["customer_id"] == 2
        assert values[1]["total_purchases"] == 0

    def test_blank_names_never_match(self):
        values = calculate_customer_lifetime_values(
            [{"id": 3, "first_name": "", "last_name": ""}],
            [{"customer_first_name": "", "customer_surname": "", "total_sale_price": 100.0}],
        )
        assert values[0]["total_purchases"] == 0


class TestEmptySnapshot:
    def test_full_shape_with_zero_figures(self):
        snapshot = empty_snapshot(datetime(2026, 10, 14))

        assert snapshot["system_status"]["database_connected"] is False
        assert snapshot["vehicles"]["stock_vehicles"] == []
        assert snapshot["financial"]["total_stock_value"] == 0.0
        assert snapshot["financial"]["monthly_breakdown"] == {}
        assert snapshot["sales"]["weekly_sales"]["this_week"] == 0
        assert snapshot["analytics"]["kpis"]["inventory_turnover"] == 0
        assert snapshot["analytics"]["trends"]["sales_trend"] == "stable"


@pytest.mark.asyncio
class TestFetchSnapshot:
    async def test_snapshot_over_seeded_data(self, session_factory, seeded_db, now):
        snapshot = await DealershipAggregator(session_factory).fetch_snapshot(now)

        assert snapshot["system_status"] == {
            "database_connected": True,
            "total_records": 14,
            "data_freshness": "real-time",
        }
        vehicles = snapshot["vehicles"]
        assert len(vehicles["stock_vehicles"]) == 3
        assert len(vehicles["sold_vehicles"]) == 2
        assert len(vehicles["awaiting_delivery"]) == 1
        assert vehicles["stock_summary"]["total_value"] == 35000.0
        assert vehicles["stock_age_details"][0]["stock_number"] == "STK001"

    async def test_financial_and_sales_sections(self, session_factory, seeded_db, now):
        snapshot = await DealershipAggregator(session_factory).fetch_snapshot(now)
        financial = snapshot["financial"]
        sales = snapshot["sales"]

        assert financial["total_stock_value"] == 35000.0
        assert financial["total_sales_revenue"] == 31000.0
        assert financial["profit_margins"]["gross_margin"] == pytest.approx(5000 / 31000 * 100)
        assert len(financial["monthly_breakdown"]) == 12
        assert financial["monthly_breakdown"]["2026-10"]["count"] == 2
        assert financial["by_payment_method"]["finance"] == 15000.0
        assert sales["conversion_metrics"]["average_days_to_sell"] == 46
        assert sales["weekly_sales"] == {
            "this_week": 1,
            "this_week_value": 11000.0,
            "last_week": 1,
            "last_week_value": 20000.0,
        }

    async def test_leads_operations_and_analytics(self, session_factory, seeded_db, now):
        snapshot = await DealershipAggregator(session_factory).fetch_snapshot(now)

        leads = snapshot["leads"]
        assert len(leads["active_leads"]) == 2
        assert len(leads["hot_leads"]) == 1
        assert [lead["first_name"] for lead in leads["follow_ups_due"]] == ["Harriet"]
        assert leads["conversion_funnel"]["conversion_rate"] == 25.0

        operations = snapshot["operations"]
        assert [j["job_number"] for j in operations["jobs"]["overdue"]] == ["JOB-001"]
        assert len(operations["appointments"]["today"]) == 1
        assert len(operations["tasks"]["pending"]) == 1

        analytics = snapshot["analytics"]
        assert analytics["kpis"]["inventory_turnover"] == pytest.approx(2 / 3)
        assert analytics["trends"]["sales_trend"] == "strong_growth"
        assert len(analytics["alerts"]["slow_moving_stock"]) == 1

    async def test_customers_and_staff(self, session_factory, seeded_db, now):
        snapshot = await DealershipAggregator(session_factory).fetch_snapshot(now)

        lifetime = snapshot["customers"]["lifetime_values"]
        assert lifetime[0]["customer_name"] == "John Doe"
        assert lifetime[0]["total_spent"] == 20000.0
        assert len(snapshot["customers"]["active_customers"]) == 2
        assert all("password" not in u for u in snapshot["staff"]["all_users"])
        assert len(snapshot["documents"]["recent_uploads"]) == 1

    async def test_read_failure_raises_aggregation_error(self, broken_session_factory):
        aggregator = DealershipAggregator(broken_session_factory)
        with pytest.raises(AggregationError) as exc_info:
            await aggregator.fetch_snapshot()
        assert not isinstance(exc_info.value, AggregationTimeout)

    async def test_deadline_raises_timeout(self, session_factory, seeded_db, monkeypatch):
        async def slow_vehicles(session):
            await asyncio.sleep(5)
            return []

        monkeypatch.setattr(storage, "get_vehicles", slow_vehicles)
        aggregator = DealershipAggregator(session_factory, timeout_seconds=0.05)

        with pytest.raises(AggregationTimeout):
            await aggregator.fetch_snapshot()

    async def test_default_on_failure(self, broken_session_factory):
        snapshot, reason = await DealershipAggregator(broken_session_factory).fetch_snapshot_or_default()
        assert reason is DegradedReason.DATA_UNAVAILABLE
        assert snapshot["system_status"]["database_connected"] is False

    async def test_default_on_timeout(self, session_factory, monkeypatch):
        async def slow_leads(session):
            await asyncio.sleep(5)
            return []

        monkeypatch.setattr(storage, "get_leads", slow_leads)
        aggregator = DealershipAggregator(session_factory, timeout_seconds=0.05)

        snapshot, reason = await aggregator.fetch_snapshot_or_default()
        assert reason is DegradedReason.DATA_TIMEOUT
        assert snapshot["vehicles"]["all_vehicles"] == []

    async def test_no_reason_when_healthy(self, session_factory, seeded_db):
        _, reason = await DealershipAggregator(session_factory).fetch_snapshot_or_default()
        assert reason is None

    async def test_build_failure_raises_aggregation_error(self, session_factory, seeded_db, monkeypatch):
        def broken_build(*args, **kwargs):
            raise RuntimeError("conn reset")

        monkeypatch.setattr("dealergpt.aggregator.build_snapshot", broken_build)

        with pytest.raises(AggregationError, match="conn reset"):
            await DealershipAggregator(session_factory).fetch_snapshot()

    async def test_default_on_unexpected_error(self, session_factory, monkeypatch):
        aggregator = DealershipAggregator(session_factory)

        async def reset(now=None):
            raise RuntimeError("conn reset")

        monkeypatch.setattr(aggregator, "fetch_snapshot", reset)

        snapshot, reason = await aggregator.fetch_snapshot_or_default()
        assert reason is DegradedReason.DATA_UNAVAILABLE
        assert snapshot["system_status"]["database_connected"] is False


@pytest.mark.asyncio
class TestDataSlice:
    async def test_vehicle_filters(self, session_factory, seeded_db, now):
        aggregator = DealershipAggregator(session_factory)

        fords = await aggregator.get_data_slice("vehicles", {"make": "ford"}, now)
        assert {v["stock_number"] for v in fords} == {"STK001", "STK004"}

        pricey_stock = await aggregator.get_data_slice("vehicles", {"status": "stock", "min_price": 10000}, now)
        assert {v["stock_number"] for v in pricey_stock} == {"STK002", "STK003"}

        aged = await aggregator.get_data_slice("vehicles", {"status": "stock", "days_in_stock": "90"}, now)
        assert [v["stock_number"] for v in aged] == ["STK001"]

    async def test_customer_and_lead_filters(self, session_factory, seeded_db):
        aggregator = DealershipAggregator(session_factory)

        leeds = await aggregator.get_data_slice("customers", {"city": "LEEDS"})
        assert len(leeds) == 2
        active = await aggregator.get_data_slice("customers", {"active_only": True})
        assert {c["last_name"] for c in active} == {"Smith", "Doe"}

        assigned = await aggregator.get_data_slice("leads", {"assigned_to": "2"})
        assert len(assigned) == 2
        website = await aggregator.get_data_slice("leads", {"source": "website", "stage": "new"})
        assert [lead["first_name"] for lead in website] == ["Harriet"]

    async def test_sales_filters(self, session_factory, seeded_db, now):
        aggregator = DealershipAggregator(session_factory)

        recent = await aggregator.get_data_slice("sales", {"start_date": (now - timedelta(days=3)).isoformat()})
        assert [s["stock_number"] for s in recent] == ["STK004"]
        by_person = await aggregator.get_data_slice("sales", {"salesperson": "alex agent"})
        assert [s["stock_number"] for s in by_person] == ["STK005"]

    async def test_sales_filters_accept_utc_offsets(self, session_factory, seeded_db, now):
        aggregator = DealershipAggregator(session_factory)
        naive = (now - timedelta(days=3)).isoformat()

        zulu = await aggregator.get_data_slice("sales", {"start_date": f"{naive}Z"})
        offset = await aggregator.get_data_slice("sales", {"start_date": f"{naive}+00:00"})

        assert [s["stock_number"] for s in zulu] == ["STK004"]
        assert offset == zulu

    async def test_financial_and_inventory_slices(self, session_factory, seeded_db, now):
        aggregator = DealershipAggregator(session_factory)

        financial = await aggregator.get_data_slice("financial", None, now)
        assert financial["revenue_analysis"]["units_sold"] == 2
        inventory = await aggregator.get_data_slice("INVENTORY", None, now)
        assert inventory["summary"]["total_stock_vehicles"] == 3

    async def test_unknown_entity(self, session_factory):
        with pytest.raises(ValueError, match="Unknown entity type"):
            await DealershipAggregator(session_factory).get_data_slice("unicorns")


class TestFilterSales:
    def test_aware_bounds_compare_as_utc(self):
        sales = [
            {"stock_number": "A", "sale_date": datetime(2026, 9, 30, 23, 0)},
            {"stock_number": "B", "sale_date": datetime(2026, 10, 1, 9, 0)},
            {"stock_number": "C", "sale_date": None},
        ]

        result = filter_sales(sales, {"start_date": "2026-10-01T00:00:00Z", "end_date": "2026-10-01T12:00:00+02:00"})

        assert [s["stock_number"] for s in result] == ["B"]

    def test_unparseable_date_is_rejected(self):
        with pytest.raises(ValueError):
            filter_sales([], {"start_date": "last tuesday"})
