"""
Tests for planners.py

The generative tier is driven through a fake agent factory; nothing here
talks to a model.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

from autofill.label_aliases import build_alias_index
from autofill.models import FillPlanResult, PromptCandidate
from autofill.planners import (
    ALIAS_CONFIDENCE,
    SAFE_DEFAULT_BLOCKED,
    AliasPlanner,
    LlmPlanner,
    PlanningContext,
    SafeDefaultPlanner,
    build_alias_fill_plan,
    build_field_selector,
    build_fill_plan,
    default_planners,
    should_skip_plan_field,
)
from autofill.services.llm.models import AutofillPlanResponse
from autofill.value_map import SensitiveValuePolicy, build_autofill_value_map


def context_for(fields, base_info, policy=None):
    policy = policy or SensitiveValuePolicy(allow_eeo=False)
    return PlanningContext(
        fields=fields,
        alias_index=build_alias_index(),
        values=build_autofill_value_map(base_info, policy=policy),
        base_info=base_info,
        page_context={"url": "https://jobs.example.com/apply"},
        policy=policy,
    )


def fake_agent_factory(fill_plan=None, warnings=None, error=None):
    agent = MagicMock()
    if error:
        agent.plan = AsyncMock(side_effect=error)
    else:
        agent.plan = AsyncMock(
            return_value=AutofillPlanResponse.model_validate(
                {"result": {"fill_plan": fill_plan or []}, "warnings": warnings or []}
            )
        )
    return MagicMock(return_value=agent), agent


# ============ Deterministic tier ============

class TestAliasFillPlan:

    def test_two_field_scenario(self, amin, make_field):
        fields = [make_field("fname", "First Name"), make_field("email_addr", "Email Address", type="email")]
        ctx = context_for(fields, amin)

        plan = build_alias_fill_plan(ctx.fields, ctx.alias_index, ctx.values)

        assert [(f.field, f.value, f.confidence) for f in plan.filled] == [
            ("fname", "Amin", ALIAS_CONFIDENCE),
            ("email_addr", "amin@email.com", ALIAS_CONFIDENCE),
        ]
        assert [a.selector for a in plan.actions] == ["#fname", "#email_addr"]
        assert all(a.action == "fill" for a in plan.actions)

    def test_dedup_by_field_name(self, amin, make_field):
        fields = [make_field("email", "Email"), make_field("email", "E-mail address")]
        ctx = context_for(fields, amin)

        plan = build_alias_fill_plan(ctx.fields, ctx.alias_index, ctx.values)

        assert len(plan.actions) == 1
        assert len(plan.filled) == 1

    def test_missing_value_becomes_suggestion(self, amin, make_field):
        ctx = context_for([make_field("city", "City")], amin)

        plan = build_alias_fill_plan(ctx.fields, ctx.alias_index, ctx.values)

        assert plan.filled == []
        assert plan.suggestions[0].field == "city"
        assert plan.suggestions[0].suggestion == "No data available for city"

    def test_cover_letter_never_planned(self, amin, make_field):
        fields = [make_field("cl", "Cover Letter"), make_field("fname", "First Name")]
        ctx = context_for(fields, amin)

        plan = build_alias_fill_plan(ctx.fields, ctx.alias_index, ctx.values)

        names = {f.field for f in plan.filled} | {s.field for s in plan.suggestions} | {a.field for a in plan.actions}
        assert "cl" not in names
        assert "fname" in names

    def test_select_action_for_select_control(self, full_profile, make_field):
        ctx = context_for([make_field("country", "Country", type="select", tag="select")], full_profile)

        plan = build_alias_fill_plan(ctx.fields, ctx.alias_index, ctx.values)

        assert plan.actions[0].action == "select"
        assert plan.actions[0].value == "USA"

    def test_primary_prompt_wins_over_label(self, amin, make_field):
        field = make_field(
            "q1",
            "Name",
            questionCandidates=[PromptCandidate(source="label", text="Email Address", score=12)],
        )
        ctx = context_for([field], amin)

        plan = build_alias_fill_plan(ctx.fields, ctx.alias_index, ctx.values)

        assert plan.filled[0].value == "amin@email.com"

    def test_gender_respects_consent(self, amin, make_field):
        field = make_field("gender", "Gender")

        withheld = build_alias_fill_plan([field], build_alias_index(), context_for([field], amin).values)
        allowed_ctx = context_for([field], amin, SensitiveValuePolicy(allow_eeo=True))
        allowed = build_alias_fill_plan([field], allowed_ctx.alias_index, allowed_ctx.values)

        assert withheld.filled == []
        assert withheld.suggestions[0].field == "gender"
        assert allowed.filled[0].value == "man"


class TestSelectors:

    def test_explicit_selector_first(self, make_field):
        assert build_field_selector(make_field("a", selector="form #a")) == "form #a"

    def test_id_is_escaped(self, make_field):
        field = make_field("x", id="job.email")
        assert build_field_selector(field) == "#job\\.email"

    def test_name_fallback(self, make_field):
        field = make_field("", name='user["email"]', id=None)
        assert build_field_selector(field) == '[name="user[\\"email\\"]"]'


# ============ Generative tier ============

class TestLlmPlanner:

    def test_skip_set_filtered(self, alias_index):
        assert should_skip_plan_field({"label": "Cover Letter"}, alias_index)
        assert not should_skip_plan_field({"label": "First Name"}, alias_index)
        assert not should_skip_plan_field("not a dict", alias_index)

    def test_parse_plan(self, amin, make_field):
        ctx = context_for([make_field("q1", "Anything")], amin)
        items = [
            {"field_id": "fname", "label": "First Name", "selector": "#fname", "action": "fill", "value": "Amin", "confidence": 0.9},
            {"field_id": "cover", "label": "Cover Letter", "action": "fill", "value": "Dear..."},
            {"field_id": "terms", "label": "I agree", "action": "check", "requires_user_review": True},
            {"field_id": "gender", "label": "Gender", "action": "select", "value": "Man", "confidence": 0.9},
            {"field_id": "essay", "action": "skip"},
            {"field_id": "bad", "action": "teleport"},
            "garbage",
        ]

        plan = LlmPlanner().parse_plan(items, ["check salary"], ctx)

        assert [a.field for a in plan.actions] == ["fname"]
        assert [(f.field, f.value) for f in plan.filled] == [("fname", "Amin")]
        assert plan.blocked == ["terms", "gender"]
        assert [(s.field, s.suggestion) for s in plan.suggestions] == [("note", "check salary")]

    def test_opaque_ids_resolved_to_discovered_fields(self, amin, make_field):
        fields = [make_field("q_17", "Cover Letter"), make_field("q_5", "Gender", type="select")]
        ctx = context_for(fields, amin)
        items = [
            {"field_id": "q_17", "selector": "#q_17", "action": "fill", "value": "Dear hiring manager"},
            {"field_id": "q_5", "action": "select", "value": "Male", "confidence": 0.9},
        ]

        plan = LlmPlanner().parse_plan(items, [], ctx)

        assert plan.actions == []
        assert plan.filled == []
        assert plan.blocked == ["q_5"]

    def test_selector_only_item_resolved(self, make_field):
        fields = [make_field("q_17", "Cover Letter", name="letter")]

        assert should_skip_plan_field({"selector": "#q_17"}, build_alias_index(), fields)
        assert should_skip_plan_field({"field_id": "letter"}, build_alias_index(), fields)
        assert not should_skip_plan_field({"field_id": "q_17"}, build_alias_index())

    def test_sensitive_field_allowed_with_consent(self, amin, make_field):
        ctx = context_for([make_field("q_5", "Gender")], amin, SensitiveValuePolicy(allow_eeo=True))

        plan = LlmPlanner().parse_plan([{"field_id": "q_5", "action": "select", "value": "Male"}], [], ctx)

        assert [(f.field, f.value) for f in plan.filled] == [("q_5", "Male")]
        assert plan.blocked == []

    def test_runs_only_when_nothing_filled(self, amin, make_field):
        ctx = context_for([make_field("q1")], amin)
        planner = LlmPlanner()

        assert planner.should_run(FillPlanResult(), ctx)
        assert not LlmPlanner(enabled=False).should_run(FillPlanResult(), ctx)
        filled = FillPlanResult.model_validate({"filled": [{"field": "a", "value": "b"}]})
        assert not planner.should_run(filled, ctx)

    def test_agent_error_contributes_nothing(self, amin, make_field):
        factory, _ = fake_agent_factory(error=RuntimeError("network down"))
        ctx = context_for([make_field("q1", "Favourite colour")], amin)

        assert asyncio.run(LlmPlanner(factory).plan(ctx)) is None


# ============ Tier ordering ============

class TestBuildFillPlan:

    def test_zero_fields_no_tier_runs(self, full_profile):
        factory, agent = fake_agent_factory()
        ctx = context_for([], full_profile)

        plan = asyncio.run(build_fill_plan(ctx, default_planners(True, factory)))

        assert plan.filled == []
        assert plan.suggestions == []
        assert plan.blocked == []
        factory.assert_not_called()
        agent.plan.assert_not_called()

    def test_deterministic_hit_skips_generative(self, amin, make_field):
        factory, _ = fake_agent_factory()
        ctx = context_for([make_field("fname", "First Name")], amin)

        plan = asyncio.run(build_fill_plan(ctx, default_planners(True, factory)))

        assert plan.filled[0].value == "Amin"
        factory.assert_not_called()

    def test_generative_replaces_empty_deterministic_plan(self, amin, make_field):
        factory, agent = fake_agent_factory(
            fill_plan=[{"field_id": "q1", "selector": "#q1", "action": "fill", "value": "Blue", "confidence": 0.8}]
        )
        ctx = context_for([make_field("q1", "Favourite colour")], amin)

        plan = asyncio.run(build_fill_plan(ctx, default_planners(True, factory)))

        assert [(f.field, f.value) for f in plan.filled] == [("q1", "Blue")]
        kwargs = agent.plan.call_args.kwargs
        assert kwargs["prefs"] == {"privacy": {"auto_fill_eeo": False}}
        assert kwargs["page_context"]["url"] == "https://jobs.example.com/apply"

    def test_generative_failure_falls_to_safe_default(self, amin, make_field):
        factory, _ = fake_agent_factory(error=RuntimeError("boom"))
        ctx = context_for([make_field("q1", "Favourite colour")], amin)

        plan = asyncio.run(build_fill_plan(ctx, default_planners(True, factory)))

        assert {(f.field, f.value) for f in plan.filled} == {
            ("first_name", "Amin"),
            ("last_name", "Khan"),
            ("email", "amin@email.com"),
        }
        assert plan.blocked == SAFE_DEFAULT_BLOCKED
        assert plan.actions == []

    def test_suggestions_only_plan_is_kept(self, amin, make_field):
        ctx = context_for([make_field("city", "City")], amin)

        plan = asyncio.run(build_fill_plan(ctx, default_planners(use_llm=False)))

        assert plan.filled == []
        assert [s.field for s in plan.suggestions] == ["city"]

    def test_planner_exception_is_contained(self, amin, make_field):
        broken = MagicMock()
        broken.name = "broken"
        broken.should_run.return_value = True
        broken.plan = AsyncMock(side_effect=ValueError("bad"))
        ctx = context_for([make_field("fname", "First Name")], amin)

        plan = asyncio.run(build_fill_plan(ctx, [broken, AliasPlanner(), SafeDefaultPlanner()]))

        assert plan.filled[0].value == "Amin"
