"""
Fill-plan tiers.

Each tier implements the Planner interface. build_fill_plan() walks them in
order; a tier decides from the plan built so far whether it runs, and its
result replaces that plan when it returns one:

1. AliasPlanner: deterministic label-dictionary match.
2. LlmPlanner: generative fallback, only when tier 1 filled nothing.
3. SafeDefaultPlanner: non-sensitive profile values, only when the plan is
   still completely empty.
"""

import logging
import re

from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Protocol

from autofill.label_aliases import EEO_KEYS, AliasIndex, match_label_to_canonical
from autofill.logging import get_logger
from autofill.models import (
    BaseInfo,
    FieldDescriptor,
    FillAction,
    FilledEntry,
    FillPlanResult,
    Suggestion,
)
from autofill.services.llm import AutofillPlanAgent
from autofill.value_map import SensitiveValuePolicy, format_phone, trim_string

get_logger()
logger = logging.getLogger(__name__)

ALIAS_CONFIDENCE = 0.75
SKIP_KEYS = frozenset({"cover_letter"})
APPLIED_ACTIONS = ("fill", "select", "check", "uncheck")
SAFE_DEFAULT_BLOCKED = ["EEO", "veteran_status", "disability"]


@dataclass
class PlanningContext:
    fields: list[FieldDescriptor]
    alias_index: AliasIndex
    values: dict[str, str]
    base_info: BaseInfo
    job_context: dict[str, Any] = field(default_factory=dict)
    page_context: dict[str, Any] = field(default_factory=dict)
    policy: SensitiveValuePolicy = field(default_factory=SensitiveValuePolicy)


class Planner(Protocol):
    name: str

    def should_run(self, current: FillPlanResult, context: PlanningContext) -> bool:
        ...

    async def plan(self, context: PlanningContext) -> Optional[FillPlanResult]:
        ...


# --- Field helpers ---


def collect_label_candidates(field: FieldDescriptor) -> list[str]:
    """Candidate texts in discovery-priority order; the first alias hit wins."""
    primary_prompt = field.question_candidates[0].text if field.question_candidates else None
    texts = [
        primary_prompt,
        field.question_text,
        field.label,
        field.aria_name,
        field.placeholder,
        field.described_by,
        field.field_id,
        field.name,
        field.id,
        *(p.text for p in field.container_prompts),
    ]
    return [t for t in texts if isinstance(t, str) and t.strip()]


def match_field(field: FieldDescriptor, index: AliasIndex) -> tuple[Optional[str], str]:
    for candidate in collect_label_candidates(field):
        key = match_label_to_canonical(candidate, index)
        if key:
            return key, candidate
    return None, ""


def escape_css_value(value: str) -> str:
    return re.sub(r'(["\\])', r"\\\1", value)


def escape_css_ident(value: str) -> str:
    return re.sub(r"([^a-zA-Z0-9_-])", r"\\\1", value)


def build_field_selector(field: FieldDescriptor) -> Optional[str]:
    if field.selector:
        return field.selector
    if field.locators and field.locators.css:
        return field.locators.css
    if field.id:
        return f"#{escape_css_ident(field.id)}"
    if field.field_id:
        return f'[name="{escape_css_value(field.field_id)}"]'
    if field.name:
        return f'[name="{escape_css_value(field.name)}"]'
    return None


def infer_field_action(field: FieldDescriptor) -> str:
    if field.control_type.lower() == "select":
        return "select"
    return "fill"


def resolve_plan_target(item: dict, fields: list[FieldDescriptor]) -> Optional[FieldDescriptor]:
    """The discovered field a model plan item points at, by id/name or selector."""
    field_id = item.get("field_id")
    selector = item.get("selector")
    for field in fields:
        if isinstance(field_id, str) and field_id.strip():
            if field_id in (field.field_id, field.id, field.name):
                return field
        if isinstance(selector, str) and selector.strip():
            if selector == build_field_selector(field):
                return field
    return None


def plan_item_keys(
    item: Any, index: AliasIndex, fields: Optional[list[FieldDescriptor]] = None
) -> set[str]:
    """Canonical keys of a model plan item: its own texts plus the field it targets."""
    if not isinstance(item, dict):
        return set()
    keys = set()
    for name in ("field_id", "label", "selector"):
        text = item.get(name)
        if isinstance(text, str) and text.strip():
            match = match_label_to_canonical(text, index)
            if match:
                keys.add(match)
    target = resolve_plan_target(item, fields or [])
    if target is not None:
        key, _ = match_field(target, index)
        if key:
            keys.add(key)
    return keys


def should_skip_plan_field(
    item: Any, index: AliasIndex, fields: Optional[list[FieldDescriptor]] = None
) -> bool:
    """True when a model plan item points at a field in SKIP_KEYS."""
    return bool(plan_item_keys(item, index, fields) & SKIP_KEYS)


# --- Tier 1 ---


def build_alias_fill_plan(
    fields: list[FieldDescriptor],
    index: AliasIndex,
    values: dict[str, str],
) -> FillPlanResult:
    plan = FillPlanResult()
    seen: set[str] = set()

    for field in fields:
        key, matched_label = match_field(field, index)
        if not key or key in SKIP_KEYS:
            continue

        field_name = trim_string(
            field.field_id or field.name or field.id or matched_label or key
        ) or key
        if field_name in seen:
            continue
        seen.add(field_name)

        value = trim_string(values.get(key))
        if not value:
            plan.suggestions.append(
                Suggestion(field=field_name, suggestion=f"No data available for {key}")
            )
            continue

        selector = build_field_selector(field)
        if not selector:
            plan.blocked.append(field_name)
            continue

        field_id = trim_string(field.field_id or field.name or field.id)
        label = trim_string(
            matched_label or field.label or field.question_text or field.aria_name or field_name
        )
        plan.actions.append(
            FillAction(
                field=field_name,
                field_id=field_id or None,
                label=label or None,
                selector=selector,
                action=infer_field_action(field),
                value=value,
                confidence=ALIAS_CONFIDENCE,
            )
        )
        plan.filled.append(FilledEntry(field=field_name, value=value, confidence=ALIAS_CONFIDENCE))

    return plan


class AliasPlanner:
    name = "alias"

    def should_run(self, current: FillPlanResult, context: PlanningContext) -> bool:
        return bool(context.fields)

    async def plan(self, context: PlanningContext) -> Optional[FillPlanResult]:
        return build_alias_fill_plan(context.fields, context.alias_index, context.values)


# --- Tier 2 ---


class LlmPlanner:
    """
    Generative fallback. Any failure (no key, network, unparseable reply)
    makes the tier contribute nothing.
    """

    name = "llm"

    def __init__(self, agent_factory: Callable[[], AutofillPlanAgent] = AutofillPlanAgent, enabled: bool = True):
        self.agent_factory = agent_factory
        self.enabled = enabled

    def should_run(self, current: FillPlanResult, context: PlanningContext) -> bool:
        return self.enabled and not current.filled and bool(context.fields)

    async def plan(self, context: PlanningContext) -> Optional[FillPlanResult]:
        try:
            agent = self.agent_factory()
            response = await agent.plan(
                page_fields=context.fields,
                base_profile=context.base_info.model_dump(by_alias=True),
                prefs={"privacy": {"auto_fill_eeo": context.policy.allow_eeo}},
                job_context=context.job_context,
                page_context=context.page_context,
            )
        except Exception as e:
            logger.error(f"LLM autofill failed: {e}")
            return None

        if response is None:
            return None
        return self.parse_plan(response.result.fill_plan, response.warnings, context)

    def parse_plan(
        self, items: list[Any], warnings: list[str], context: PlanningContext
    ) -> FillPlanResult:
        plan = FillPlanResult()
        for raw in items:
            keys = plan_item_keys(raw, context.alias_index, context.fields)
            if keys & SKIP_KEYS:
                continue
            action = FillAction.from_raw(raw)
            if action is None:
                logger.debug(f"Dropping malformed plan item: {raw}")
                continue
            if action.action == "skip":
                continue

            sensitive = bool(keys & EEO_KEYS) and not context.policy.allow_eeo
            if action.requires_user_review or sensitive:
                plan.blocked.append(action.field_id or action.selector or "field")
                continue

            plan.actions.append(action)
            if action.action in APPLIED_ACTIONS:
                plan.filled.append(
                    FilledEntry(field=action.field, value=action.value, confidence=action.confidence)
                )

        plan.suggestions = [Suggestion(field="note", suggestion=str(w)) for w in warnings]
        return plan


# --- Tier 3 ---


def build_safe_default_plan(base_info: BaseInfo) -> FillPlanResult:
    """Non-sensitive profile values only. EEO answers are always left blocked."""
    name = base_info.name
    contact = base_info.contact
    location = base_info.location
    career = base_info.career
    education = base_info.education
    safe_fields = [
        ("first_name", name.first, 0.98),
        ("last_name", name.last, 0.98),
        ("email", contact.email, 0.97),
        ("phone_code", contact.phone_code, 0.75),
        ("phone_number", contact.phone_number, 0.78),
        ("phone", format_phone(base_info), 0.8),
        ("address", location.address, 0.75),
        ("city", location.city, 0.75),
        ("state", location.state, 0.72),
        ("country", location.country, 0.72),
        ("postal_code", location.postal_code, 0.72),
        ("linkedin", base_info.links.linkedin, 0.78),
        ("job_title", career.job_title, 0.7),
        ("current_company", career.current_company, 0.68),
        ("years_exp", career.years_exp, 0.6),
        ("desired_salary", career.desired_salary, 0.62),
        ("school", education.school, 0.66),
        ("degree", education.degree, 0.65),
        ("major_field", education.major_field, 0.64),
        ("graduation_at", education.graduation_at, 0.6),
    ]
    filled = []
    for field_name, raw, confidence in safe_fields:
        value = trim_string(raw)
        if value:
            filled.append(FilledEntry(field=field_name, value=value, confidence=confidence))
    return FillPlanResult(filled=filled, blocked=list(SAFE_DEFAULT_BLOCKED))


class SafeDefaultPlanner:
    name = "safe_default"

    def should_run(self, current: FillPlanResult, context: PlanningContext) -> bool:
        return current.is_empty() and bool(context.fields)

    async def plan(self, context: PlanningContext) -> Optional[FillPlanResult]:
        return build_safe_default_plan(context.base_info)


def default_planners(use_llm: bool = True, agent_factory: Callable[[], AutofillPlanAgent] = AutofillPlanAgent) -> list[Planner]:
    return [AliasPlanner(), LlmPlanner(agent_factory, enabled=use_llm), SafeDefaultPlanner()]


async def build_fill_plan(context: PlanningContext, planners: list[Planner]) -> FillPlanResult:
    plan = FillPlanResult()
    for planner in planners:
        if not planner.should_run(plan, context):
            continue
        try:
            result = await planner.plan(context)
        except Exception as e:
            logger.error(f"{planner.name} planner failed: {e}", exc_info=True)
            continue
        if result is None:
            logger.info(f"{planner.name} planner contributed nothing")
            continue
        logger.info(
            f"{planner.name} planner: {len(result.filled)} filled, "
            f"{len(result.suggestions)} suggestions, {len(result.blocked)} blocked"
        )
        plan = result
    return plan
