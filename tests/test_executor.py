"""
Tests for executor.py
"""

import asyncio
from unittest.mock import AsyncMock

from autofill.executor import ACTION_TIMEOUT_MS, apply_fill_plan, resolve_selector
from autofill.models import FillAction


def action(field_id, **kwargs):
    kwargs.setdefault("selector", f"#{field_id}")
    return FillAction(field=field_id, field_id=field_id, **kwargs)


class TestResolveSelector:

    def test_selector_wins(self):
        assert resolve_selector(action("a", selector="form .a")) == "form .a"

    def test_built_from_field_id(self):
        assert resolve_selector(FillAction(field="x", field_id="email")) == '[name="email"], #email, [id*="email"]'

    def test_nothing_to_target(self):
        assert resolve_selector(FillAction(field="x")) is None


class TestApplyFillPlan:

    def test_failing_action_is_isolated(self, make_page):
        page = make_page()
        page.fill = AsyncMock(side_effect=[None, TimeoutError("no such element"), None])
        actions = [
            action("first", value="Amin"),
            action("middle", value="J"),
            action("last", value="Khan"),
        ]

        result = asyncio.run(apply_fill_plan(page, actions))

        assert [f.field for f in result.filled] == ["first", "last"]
        assert result.blocked == ["middle"]
        assert page.fill.await_count == 3

    def test_action_kinds(self, make_page):
        page = make_page()
        actions = [
            action("email", value="amin@email.com", confidence=0.75),
            action("country", action="select", value="USA"),
            action("terms", action="check"),
            action("newsletter", action="uncheck"),
        ]

        result = asyncio.run(apply_fill_plan(page, actions))

        page.fill.assert_awaited_once_with("#email", "amin@email.com", timeout=ACTION_TIMEOUT_MS)
        page.select_option.assert_awaited_once_with("#country", label="USA", timeout=ACTION_TIMEOUT_MS)
        page.check.assert_awaited_once_with("#terms", timeout=ACTION_TIMEOUT_MS)
        page.uncheck.assert_awaited_once_with("#newsletter", timeout=ACTION_TIMEOUT_MS)
        assert [(f.field, f.value) for f in result.filled] == [
            ("email", "amin@email.com"),
            ("country", "USA"),
            ("terms", "check"),
            ("newsletter", "uncheck"),
        ]
        assert result.filled[0].confidence == 0.75
        assert result.blocked == []

    def test_review_items_are_blocked(self, make_page):
        page = make_page()
        actions = [
            action("resume", action="upload", requires_user_review=True),
            action("next", action="click"),
        ]

        result = asyncio.run(apply_fill_plan(page, actions))

        assert result.filled == []
        assert result.blocked == ["resume"]
        page.fill.assert_not_awaited()

    def test_action_without_target_is_blocked(self, make_page):
        result = asyncio.run(apply_fill_plan(make_page(), [FillAction(field="orphan", value="x")]))
        assert result.blocked == ["field"]
