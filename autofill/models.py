import json

from pydantic import BaseModel, Field, ValidationError
from typing import Any, Literal, Optional, Union
from datetime import datetime


ActionType = Literal["fill", "select", "check", "uncheck", "click", "upload", "skip"]
SessionStatus = Literal["OPEN", "ANALYZED", "FILLED", "SUBMITTED", "ABANDONED", "ERROR"]


# --- Field discovery ---


class PromptCandidate(BaseModel):
    source: str = Field(description="Where the text came from: label, aria, placeholder, describedby, legend, container_text, prev_sibling")
    text: str
    score: float = 0


class FieldLocators(BaseModel):
    css: Optional[str] = None
    playwright: Optional[str] = Field(
        default=None, description="Human readable locator hint, e.g. getByLabel(\"Email\")"
    )


class FieldDescriptor(BaseModel):
    index: int = 0
    field_id: str = ""
    tag: str = "input"
    control_type: str = Field(default="text", alias="type")
    id: Optional[str] = None
    name: Optional[str] = None
    label: Optional[str] = None
    aria_name: Optional[str] = Field(default=None, alias="ariaName")
    placeholder: Optional[str] = None
    described_by: Optional[str] = Field(default=None, alias="describedBy")
    autocomplete: Optional[str] = None
    required: bool = False
    question_text: Optional[str] = Field(default=None, alias="questionText")
    question_candidates: list[PromptCandidate] = Field(
        default_factory=list, alias="questionCandidates"
    )
    container_prompts: list[PromptCandidate] = Field(
        default_factory=list, alias="containerPrompts"
    )
    constraints: dict[str, int] = Field(default_factory=dict)
    locators: Optional[FieldLocators] = None
    selector: Optional[str] = None
    options: list[str] = Field(default_factory=list)
    likely_essay: bool = Field(default=False, alias="likelyEssay")
    frame_url: Optional[str] = Field(default=None, alias="frameUrl")
    frame_name: Optional[str] = Field(default=None, alias="frameName")

    class Config:
        populate_by_name = True
        frozen = True

    @classmethod
    def from_raw(cls, raw: Any) -> Optional["FieldDescriptor"]:
        """Validate a loosely typed descriptor from the page or a client, or None."""
        if isinstance(raw, FieldDescriptor):
            return raw
        if not isinstance(raw, dict):
            return None
        try:
            return cls.model_validate(raw)
        except ValidationError:
            return None

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


# --- Fill plans ---


class FillAction(BaseModel):
    field: str
    field_id: Optional[str] = None
    label: Optional[str] = None
    selector: Optional[str] = None
    action: ActionType = "fill"
    value: str = ""
    confidence: Optional[float] = Field(default=None, ge=0, le=1)
    requires_user_review: bool = False

    @classmethod
    def from_raw(cls, raw: Any) -> Optional["FillAction"]:
        """
        Convert a generative-model plan item into a FillAction.

        Items that are not objects, carry an unknown action, or carry an
        out-of-range confidence are rejected with None.
        """
        if not isinstance(raw, dict):
            return None

        def text(key: str) -> Optional[str]:
            val = raw.get(key)
            return val if isinstance(val, str) and val.strip() else None

        value = raw.get("value")
        confidence = raw.get("confidence")
        if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
            confidence = None
        try:
            return cls(
                field=text("field_id") or text("selector") or text("label") or "field",
                field_id=text("field_id"),
                label=text("label"),
                selector=text("selector"),
                action=raw.get("action") or "fill",
                value=value if isinstance(value, str) else ("" if value is None else json.dumps(value)),
                confidence=confidence,
                requires_user_review=bool(raw.get("requires_user_review")),
            )
        except ValidationError:
            return None


class FilledEntry(BaseModel):
    field: str
    value: str
    confidence: Optional[float] = None


class Suggestion(BaseModel):
    field: str
    suggestion: str


class FillPlanResult(BaseModel):
    filled: list[FilledEntry] = Field(default_factory=list)
    suggestions: list[Suggestion] = Field(default_factory=list)
    blocked: list[str] = Field(default_factory=list)
    actions: list[FillAction] = Field(default_factory=list)

    def is_empty(self) -> bool:
        return not self.filled and not self.suggestions and not self.blocked


# --- Profiles ---


class NameInfo(BaseModel):
    first: Optional[str] = None
    last: Optional[str] = None


class ContactInfo(BaseModel):
    email: Optional[str] = None
    phone: Optional[str] = None
    phone_code: Optional[str] = Field(default=None, alias="phoneCode")
    phone_number: Optional[str] = Field(default=None, alias="phoneNumber")

    class Config:
        populate_by_name = True


class LocationInfo(BaseModel):
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None
    postal_code: Optional[str] = Field(default=None, alias="postalCode")

    class Config:
        populate_by_name = True


class LinksInfo(BaseModel):
    linkedin: Optional[str] = None

    class Config:
        extra = "allow"


class CareerInfo(BaseModel):
    job_title: Optional[str] = Field(default=None, alias="jobTitle")
    current_company: Optional[str] = Field(default=None, alias="currentCompany")
    years_exp: Optional[Union[str, int, float]] = Field(default=None, alias="yearsExp")
    desired_salary: Optional[Union[str, int, float]] = Field(default=None, alias="desiredSalary")

    class Config:
        populate_by_name = True


class EducationInfo(BaseModel):
    school: Optional[str] = None
    degree: Optional[str] = None
    major_field: Optional[str] = Field(default=None, alias="majorField")
    graduation_at: Optional[str] = Field(default=None, alias="graduationAt")

    class Config:
        populate_by_name = True


class BaseInfo(BaseModel):
    name: NameInfo = Field(default_factory=NameInfo)
    contact: ContactInfo = Field(default_factory=ContactInfo)
    location: LocationInfo = Field(default_factory=LocationInfo)
    links: LinksInfo = Field(default_factory=LinksInfo)
    career: CareerInfo = Field(default_factory=CareerInfo)
    education: EducationInfo = Field(default_factory=EducationInfo)
    work_auth: dict[str, Any] = Field(default_factory=dict, alias="workAuth")
    preferences: dict[str, Any] = Field(default_factory=dict)
    default_answers: dict[str, str] = Field(default_factory=dict, alias="defaultAnswers")

    class Config:
        populate_by_name = True


class Profile(BaseModel):
    id: str
    display_name: str = ""
    base_info: BaseInfo = Field(default_factory=BaseInfo)


class LabelAlias(BaseModel):
    id: str
    canonical_key: str
    alias: str
    normalized_alias: str = ""
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


# --- Sessions ---


class ApplicationSession(BaseModel):
    id: str
    profile_id: str
    url: str
    domain: Optional[str] = None
    status: SessionStatus = "OPEN"
    job_context: dict[str, Any] = Field(default_factory=dict)
    fill_plan: Optional[FillPlanResult] = None
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None


class SessionEvent(BaseModel):
    id: str
    session_id: str
    event_type: Literal["SESSION_CREATED", "GO_CLICKED", "AUTOFILL_DONE", "SUBMITTED", "STOPPED"]
    payload: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime


# --- API params ---


class CreateSessionParams(BaseModel):
    profile_id: str
    url: str


class AutofillRequest(BaseModel):
    page_fields: Optional[list[dict[str, Any]]] = Field(
        default=None, description="Field descriptors captured by the client; skips the live scan"
    )
    use_llm: bool = Field(default=True, description="Allow the generative fallback tier")
    apply: bool = Field(default=False, description="Execute the resulting plan on the live page")


class AutofillResponse(BaseModel):
    fill_plan: FillPlanResult
    page_fields: list[dict[str, Any]]
    candidate_fields: list[dict[str, Any]]
    executed: Optional[FillPlanResult] = None


class LabelAliasParams(BaseModel):
    canonical_key: str
    alias: str = Field(min_length=2)


class LabelAliasUpdate(BaseModel):
    canonical_key: Optional[str] = None
    alias: Optional[str] = None
