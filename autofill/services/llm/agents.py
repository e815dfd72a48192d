import json
import logging

from typing import Any, Optional

from autofill.env import MODEL
from autofill.models import FieldDescriptor
from autofill.services.llm.agent import Agent
from autofill.services.llm.models import AutofillPlanResponse
from autofill.services.llm.prompts import SYSTEM_PROMPT_AUTOFILL

logger = logging.getLogger(__name__)


def build_autofill_plan_prompt(
    page_fields: list[FieldDescriptor],
    base_profile: dict[str, Any],
    prefs: Optional[dict[str, Any]] = None,
    job_context: Optional[dict[str, Any]] = None,
    page_context: Optional[dict[str, Any]] = None,
) -> str:
    payload = {
        "task": "FORM_AUTOFILL_PLAN",
        "base_profile": base_profile,
        "prefs": prefs or {},
        "job_context": job_context or {},
        "page_context": page_context or {},
        "page_fields": [field.to_wire() for field in page_fields],
    }
    return f"Return ONLY valid JSON.\nInput:\n{json.dumps(payload, indent=2, default=str)}"


class AutofillPlanAgent(Agent):
    """
    Agent that asks the model for a fill plan when the label dictionary
    could not place any field.
    """

    def __init__(self, model: str = MODEL, **kwargs):
        super().__init__(
            system_prompt=SYSTEM_PROMPT_AUTOFILL,
            response_format=AutofillPlanResponse,
            model=model,
            **kwargs,
        )

    async def plan(
        self,
        page_fields: list[FieldDescriptor],
        base_profile: dict[str, Any],
        prefs: Optional[dict[str, Any]] = None,
        job_context: Optional[dict[str, Any]] = None,
        page_context: Optional[dict[str, Any]] = None,
    ) -> Optional[AutofillPlanResponse]:
        prompt = build_autofill_plan_prompt(
            page_fields, base_profile, prefs, job_context, page_context
        )
        result = await self.run(prompt)
        if not result.success:
            logger.warning(f"Autofill plan request failed: {result.error}")
            return None
        return result.output
