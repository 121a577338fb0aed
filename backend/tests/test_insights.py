"""
Insight rule and suggestion tests.
"""

from datetime import datetime, timedelta

import pytest

from dealergpt.aggregator import DealershipAggregator, empty_snapshot
from dealergpt.insights import (
    deduplicate_insights,
    detect_long_term_stock,
    detect_low_conversion,
    detect_overdue_followups,
    detect_sales_dip,
    generate_insights,
    run_insight_pipeline,
)
from dealergpt.memory import MemoryStore
from dealergpt.suggestions import (
    FULL_FALLBACK_SUGGESTIONS,
    SIMPLE_FALLBACK_SUGGESTIONS,
    STRATEGIC_QUESTIONS,
    contextual_suggestions,
    extract_context_used,
    extract_simple_context_used,
    snapshot_suggestions,
)


def _snapshot(**overrides) -> dict:
    snapshot = empty_snapshot(datetime(2026, 10, 14))
    snapshot["system_status"]["database_connected"] = True
    for path, value in overrides.items():
        section, key = path.split("__")
        snapshot[section][key] = value
    return snapshot


class TestInsightRules:
    def test_long_term_stock(self):
        snapshot = _snapshot(
            vehicles__stock_age_details=[
                {"id": 1, "stock_number": "STK001", "make": "Ford", "model": "Fiesta", "days_in_stock": 75},
                {"id": 2, "stock_number": "STK002", "make": "BMW", "model": "320d", "days_in_stock": 12},
            ]
        )
        insight = detect_long_term_stock(snapshot)

        assert insight["title"] == "Long-term Stock Alert"
        assert insight["priority"] == "high"
        assert insight["category"] == "inventory"
        assert "STK001" in insight["description"]
        assert insight["data"]["days_in_stock"] == 75

    def test_recent_stock_is_fine(self):
        snapshot = _snapshot(vehicles__stock_age_details=[{"id": 1, "days_in_stock": 60}])
        assert detect_long_term_stock(snapshot) is None

    def test_sales_dip(self):
        snapshot = _snapshot(
            sales__weekly_sales={"this_week": 1, "this_week_value": 0, "last_week": 4, "last_week_value": 0}
        )
        insight = detect_sales_dip(snapshot)
        assert insight["insight_type"] == "recommendation"
        assert insight["category"] == "sales"
        assert detect_sales_dip(_snapshot()) is None

    def test_low_conversion(self):
        funnel = {"total_leads": 10, "conversion_rate": 10.0}
        insight = detect_low_conversion(_snapshot(leads__conversion_funnel=funnel))
        assert insight["title"] == "Low Conversion Rate"
        assert insight["category"] == "customers"

    def test_conversion_needs_leads(self):
        funnel = {"total_leads": 0, "conversion_rate": 0.0}
        assert detect_low_conversion(_snapshot(leads__conversion_funnel=funnel)) is None

    def test_overdue_followup_priority(self):
        few = _snapshot()
        few["analytics"]["alerts"]["overdue_followups"] = [{"id": i} for i in range(2)]
        many = _snapshot()
        many["analytics"]["alerts"]["overdue_followups"] = [{"id": i} for i in range(6)]

        assert detect_overdue_followups(few)["priority"] == "medium"
        assert detect_overdue_followups(many)["priority"] == "high"

    def test_disconnected_snapshot_yields_nothing(self):
        snapshot = empty_snapshot(datetime(2026, 10, 14))
        snapshot["sales"]["weekly_sales"]["last_week"] = 5
        assert generate_insights(snapshot) == []

    @pytest.mark.asyncio
    async def test_seeded_dealership(self, session_factory, seeded_db, now):
        snapshot = await DealershipAggregator(session_factory).fetch_snapshot(now)
        titles = [insight["title"] for insight in generate_insights(snapshot)]
        assert titles == ["Long-term Stock Alert", "Overdue Lead Follow-ups"]


class TestDeduplication:
    def test_drops_active_and_repeated_titles(self):
        new = [{"title": "A"}, {"title": "B"}, {"title": "B"}, {"title": "C"}]
        active = [{"title": "A"}]
        assert deduplicate_insights(new, active) == [{"title": "B"}, {"title": "C"}]


@pytest.mark.asyncio
class TestInsightPipeline:
    async def test_stores_then_deduplicates(self, session_factory, seeded_db, now):
        memory = MemoryStore(session_factory)
        snapshot = await DealershipAggregator(session_factory).fetch_snapshot(now)

        first = await run_insight_pipeline(memory, snapshot, now=datetime.utcnow(), ttl_hours=24)
        second = await run_insight_pipeline(memory, snapshot, now=datetime.utcnow(), ttl_hours=24)

        assert first["generated"] == 2
        assert first["stored"] == 2
        assert all(insight["id"] for insight in first["insights"])
        assert second["stored"] == 0
        assert len(await memory.get_active_insights()) == 2

    async def test_expiry_and_targeting(self, session_factory, seeded_db, now):
        memory = MemoryStore(session_factory)
        snapshot = await DealershipAggregator(session_factory).fetch_snapshot(now)
        created_at = datetime.utcnow()

        result = await run_insight_pipeline(memory, snapshot, now=created_at, ttl_hours=6, target_users=[2])

        assert result["insights"][0]["expires_at"] == created_at + timedelta(hours=6)
        assert len(await memory.get_active_insights(user_id=2)) == 2
        assert await memory.get_active_insights(user_id=1) == []

    async def test_each_target_user_gets_their_own_copy(self, session_factory, seeded_db, now):
        memory = MemoryStore(session_factory)
        snapshot = await DealershipAggregator(session_factory).fetch_snapshot(now)

        first = await run_insight_pipeline(memory, snapshot, target_users=[1])
        second = await run_insight_pipeline(memory, snapshot, target_users=[2])
        repeat = await run_insight_pipeline(memory, snapshot, target_users=[2])

        assert first["stored"] == 2
        assert second["stored"] == 2
        assert repeat["stored"] == 0
        assert len(await memory.get_active_insights(user_id=1)) == 2
        assert len(await memory.get_active_insights(user_id=2)) == 2

    async def test_broadcast_ignores_targeted_copies(self, session_factory, seeded_db, now):
        memory = MemoryStore(session_factory)
        snapshot = await DealershipAggregator(session_factory).fetch_snapshot(now)

        await run_insight_pipeline(memory, snapshot, target_users=[1])
        broadcast = await run_insight_pipeline(memory, snapshot)
        targeted = await run_insight_pipeline(memory, snapshot, target_users=[2])

        assert broadcast["stored"] == 2
        assert targeted["stored"] == 0


class TestContextTags:
    def test_full_tags(self):
        tags = extract_context_used(
            "How is stock and sales for this customer lead?",
            {"conversations": [{}], "preferences": []},
        )
        assert tags == ["inventory_data", "sales_data", "customer_data", "lead_data", "conversation_history"]

    def test_full_tags_can_be_empty(self):
        assert extract_context_used("hello") == []

    def test_simple_tags_default(self):
        assert extract_simple_context_used("hello") == ["comprehensive_data_access"]

    def test_simple_tags_without_duplicates(self):
        tags = extract_simple_context_used("What revenue and profit did we make?")
        assert tags == ["sales_data", "financial_data", "analytics_data"]


class TestSuggestions:
    def test_fallback_sets(self):
        assert len(FULL_FALLBACK_SUGGESTIONS) == 4
        assert len(SIMPLE_FALLBACK_SUGGESTIONS) == 3

    def test_contextual_by_topic(self):
        assert contextual_suggestions("show me stock")[0] == "What vehicles have been in stock longest?"
        assert contextual_suggestions("customer list")[0] == "Who are our highest value customers?"

    def test_contextual_leads_with_insight(self):
        suggestions = contextual_suggestions("morning", [{"title": "Sales Performance Dip"}])
        assert suggestions[0] == "Tell me about the sales performance dip"
        assert len(suggestions) == 3

    def test_snapshot_suggestions_top_up(self):
        assert snapshot_suggestions(_snapshot()) == list(STRATEGIC_QUESTIONS[:4])

    @pytest.mark.asyncio
    async def test_snapshot_suggestions_from_data(self, session_factory, seeded_db, now):
        snapshot = await DealershipAggregator(session_factory).fetch_snapshot(now)
        suggestions = snapshot_suggestions(snapshot)

        assert len(suggestions) == 4
        assert suggestions[0] == "Show me details on our 1 hot leads and their status"
        assert suggestions[1] == "Why do we have 1 overdue jobs?"
