"""
Prompt builder tests — currency formatting, system prompt sections, the
bounded history window and greetings.
"""

from datetime import datetime

import pytest

from dealergpt.aggregator import DealershipAggregator, empty_snapshot
from dealergpt.prompts import (
    build_conversation_history,
    build_greeting,
    build_messages,
    build_simple_greeting,
    build_system_prompt,
    format_gbp,
    format_long_date,
    format_month_label,
)


class TestFormatting:
    @pytest.mark.parametrize(
        "value,expected",
        [
            (12345, "£12,345"),
            (99.5, "£99.50"),
            (0, "£0"),
            (None, "£0"),
            (-1500.0, "-£1,500"),
            (1234567.891, "£1,234,567.89"),
        ],
    )
    def test_format_gbp(self, value, expected):
        assert format_gbp(value) == expected

    def test_long_date(self):
        assert format_long_date(datetime(2026, 10, 19, 9, 30)) == "19 October 2026"

    def test_month_label(self):
        assert format_month_label("2026-01") == "January 2026"


class TestSystemPrompt:
    def test_sections_in_order(self):
        now = datetime(2026, 10, 14)
        prompt = build_system_prompt(empty_snapshot(now), now=now)

        headings = [
            "CURRENT DATE: 14 October 2026",
            "INTEGRATION STATUS:",
            "INVENTORY:",
            "FINANCIAL PERFORMANCE:",
            "SALES & PIPELINE:",
            "OPERATIONS:",
            "MONTHLY SALES:",
            "RECENT SALES:",
            "BUSINESS ALERTS:",
            "RESPONSE GUIDELINES:",
        ]
        positions = [prompt.index(heading) for heading in headings]
        assert positions == sorted(positions)

    def test_empty_snapshot_is_flagged(self):
        now = datetime(2026, 10, 14)
        prompt = build_system_prompt(empty_snapshot(now), now=now)

        assert "UNAVAILABLE" in prompt
        assert "- No sales recorded" in prompt
        assert "- No recent sales" in prompt
        assert "USER CONTEXT:" not in prompt
        assert "PROACTIVE INSIGHTS:" not in prompt

    def test_is_deterministic(self):
        now = datetime(2026, 10, 14)
        snapshot = empty_snapshot(now)
        assert build_system_prompt(snapshot, now=now) == build_system_prompt(snapshot, now=now)

    def test_user_context_and_insights(self):
        now = datetime(2026, 10, 14)
        prompt = build_system_prompt(
            empty_snapshot(now),
            now=now,
            user_context={"user_id": 7, "conversations": [{}, {}], "preferences": [], "insights": []},
            insights=[{"title": "Low Conversion Rate", "description": "Lead conversion rate is 10.0%"}],
        )
        assert "- User ID: 7" in prompt
        assert "- Previous conversations: 2" in prompt
        assert "- Low Conversion Rate: Lead conversion rate is 10.0%" in prompt

    @pytest.mark.asyncio
    async def test_seeded_figures(self, session_factory, seeded_db, now):
        snapshot = await DealershipAggregator(session_factory).fetch_snapshot(now)
        prompt = build_system_prompt(snapshot, now=now)

        assert "- 3 vehicles in stock (£35,000 value)" in prompt
        assert "- Total revenue: £31,000" in prompt
        assert "- Sales this week: 1 (last week 1)" in prompt
        assert "- October 2026: 2 vehicles sold, £31,000 revenue, £5,000 gross profit" in prompt
        # newest sale first
        assert prompt.index("STK005") < prompt.index("STK004")
        assert "- 1 slow-moving vehicles (over 90 days)" in prompt


def _turns(count: int, size: int = 10) -> list[dict]:
    """Stored turns, newest first."""
    return [{"message": f"q{i}".ljust(size, "."), "response": f"a{i}".ljust(size, ".")} for i in range(count)]


class TestHistoryWindow:
    def test_oldest_first_user_assistant_pairs(self):
        history = build_conversation_history(_turns(2))

        assert [m["role"] for m in history] == ["user", "assistant", "user", "assistant"]
        assert history[0]["content"].startswith("q1")
        assert history[-1]["content"].startswith("a0")

    def test_keeps_newest_turns(self):
        history = build_conversation_history(_turns(15), max_turns=10)

        assert len(history) == 20
        assert history[0]["content"].startswith("q9")
        assert history[-2]["content"].startswith("q0")

    def test_char_budget_drops_oldest(self):
        history = build_conversation_history(_turns(5, size=10), max_chars=45)
        assert len(history) == 4
        assert history[0]["content"].startswith("q1")

    def test_empty(self):
        assert build_conversation_history([]) == []


class TestBuildMessages:
    def test_system_history_then_message(self):
        history = build_conversation_history(_turns(1))
        messages = build_messages("system", history, "hello", max_chars=10_000)

        assert messages[0] == {"role": "system", "content": "system"}
        assert messages[-1] == {"role": "user", "content": "hello"}
        assert len(messages) == 4

    def test_trims_oldest_pairs_to_budget(self):
        history = build_conversation_history(_turns(3, size=10))
        messages = build_messages("s" * 10, history, "m" * 10, max_chars=60)

        # 40 chars left for history: two 20-char pairs fit
        assert len(messages) == 6
        assert messages[1]["content"].startswith("q1")

    def test_no_room_for_history(self):
        history = build_conversation_history(_turns(3))
        messages = build_messages("s" * 50, history, "m" * 50, max_chars=60)
        assert [m["role"] for m in messages] == ["system", "user"]


class TestGreetings:
    def test_memory_aware_greeting(self):
        snapshot = empty_snapshot(datetime(2026, 10, 14))
        insights = [
            {"title": "One", "description": "first"},
            {"title": "Two", "description": "second"},
            {"title": "Three", "description": "third"},
        ]
        greeting = build_greeting(snapshot, user_name="Morgan", returning=True, insights=insights)

        assert greeting.startswith("Hello Morgan!")
        assert "Welcome back!" in greeting
        assert "- One: first" in greeting
        assert "- Three: third" not in greeting
        assert greeting.endswith("How can I help you today?")

    def test_new_user_greeting(self):
        greeting = build_greeting(empty_snapshot(datetime(2026, 10, 14)))
        assert greeting.startswith("Hello there!")
        assert "Welcome back!" not in greeting
        assert "**Insights & Alerts:**" not in greeting

    @pytest.mark.asyncio
    async def test_simple_greeting(self, session_factory, seeded_db, now):
        snapshot = await DealershipAggregator(session_factory).fetch_snapshot(now)
        greeting = build_simple_greeting(snapshot)

        assert "- 3 vehicles in stock (£35,000)" in greeting
        assert "- 2 vehicles sold to date" in greeting
        assert "- 3 total customers" in greeting
        assert "- 1 appointments scheduled" in greeting
