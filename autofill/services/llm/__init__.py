# Export main classes
from autofill.services.llm.agent import Agent, AgentResult, extract_json
from autofill.services.llm.agents import AutofillPlanAgent, build_autofill_plan_prompt
from autofill.services.llm.models import AutofillPlanResponse

# Export system prompts for reference/customization
from autofill.services.llm.prompts import SYSTEM_PROMPT_AUTOFILL

__all__ = [
    # Core agent classes
    "Agent",
    "AgentResult",
    "extract_json",
    # Specialized agents
    "AutofillPlanAgent",
    "build_autofill_plan_prompt",
    # Response models
    "AutofillPlanResponse",
    # System prompts
    "SYSTEM_PROMPT_AUTOFILL",
]
