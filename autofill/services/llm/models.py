from typing import Any, Literal, Optional
from pydantic import BaseModel, Field


class FillPlanBody(BaseModel):
    fill_plan: list[Any] = Field(
        default_factory=list,
        description="One item per page field: field_id, selector, label, action, value, confidence, requires_user_review",
    )


class AutofillPlanResponse(BaseModel):
    task: Literal["FORM_AUTOFILL_PLAN"] = "FORM_AUTOFILL_PLAN"
    status: Optional[str] = Field(default=None, description="ok | needs_user_input | error")
    result: FillPlanBody = Field(default_factory=FillPlanBody)
    warnings: list[str] = Field(default_factory=list)
    questions_for_user: list[str] = Field(default_factory=list)
