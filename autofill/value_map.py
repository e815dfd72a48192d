"""
Resolves a candidate profile into literal values for every canonical key.
"""

import logging
import math
import re

from dataclasses import dataclass, field
from typing import Any, Optional

from autofill.env import AUTO_FILL_EEO
from autofill.label_aliases import EEO_KEYS
from autofill.logging import get_logger
from autofill.models import BaseInfo

get_logger()
logger = logging.getLogger(__name__)


@dataclass
class SensitiveValuePolicy:
    """
    Fixed answers for keys the profile does not carry.

    EEO answers are only released when allow_eeo is set; otherwise the key
    resolves to "" and ends up as a suggestion for the operator.
    """

    allow_eeo: bool = AUTO_FILL_EEO
    defaults: dict[str, str] = field(
        default_factory=lambda: {
            "pronouns": "Mr",
            "start_date": "immediately",
            "notice_period": "0",
            "eeo_gender": "man",
            "eeo_race_ethnicity": "white",
            "eeo_veteran": "no veteran",
            "eeo_disability": "no disability",
        }
    )

    def resolve(self, key: str) -> str:
        if key in EEO_KEYS and not self.allow_eeo:
            return ""
        return self.defaults.get(key, "")


def trim_string(val: Any) -> str:
    if isinstance(val, bool):
        return ""
    if isinstance(val, str):
        return val.strip()
    if isinstance(val, int):
        return str(val)
    if isinstance(val, float) and math.isfinite(val):
        return str(int(val)) if val.is_integer() else str(val)
    return ""


def format_phone(base_info: BaseInfo) -> str:
    contact = base_info.contact
    parts = [trim_string(contact.phone_code), trim_string(contact.phone_number)]
    combined = " ".join(p for p in parts if p).strip()
    return combined or trim_string(contact.phone)


def merge_base_info(existing: Optional[BaseInfo], incoming: Optional[dict]) -> BaseInfo:
    """Deep-merge an incoming partial profile (wire format) over an existing one."""
    current = existing.model_dump(by_alias=True) if existing else {}
    incoming = incoming or {}
    merged = {**current, **incoming}
    for section in (
        "name",
        "contact",
        "location",
        "links",
        "career",
        "education",
        "workAuth",
        "preferences",
        "defaultAnswers",
    ):
        merged[section] = {**(current.get(section) or {}), **(incoming.get(section) or {})}

    base_info = BaseInfo.model_validate(merged)
    phone = format_phone(base_info)
    if phone:
        base_info.contact.phone = phone
    return base_info


def parse_salary_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value) if math.isfinite(value) else None
    if not isinstance(value, str):
        return None
    cleaned = re.sub(r"[^0-9.]", "", re.sub(r"[, ]+", "", value))
    if not cleaned:
        return None
    try:
        return float(cleaned)
    except ValueError:
        return None


def compute_hourly_rate(desired_salary: Any) -> Optional[int]:
    annual = parse_salary_number(desired_salary)
    if not annual or annual <= 0:
        return None
    return math.floor(annual / 12 / 160)


def build_autofill_value_map(
    base_info: BaseInfo,
    job_context: Optional[dict] = None,
    policy: Optional[SensitiveValuePolicy] = None,
) -> dict[str, str]:
    job_context = job_context or {}
    policy = policy or SensitiveValuePolicy()

    first_name = trim_string(base_info.name.first)
    last_name = trim_string(base_info.name.last)
    full_name = " ".join(p for p in (first_name, last_name) if p)

    phone_code = trim_string(base_info.contact.phone_code)
    phone_number = trim_string(base_info.contact.phone_number)
    if phone_code and phone_number:
        formatted_phone = f"{phone_code} {phone_number}"
    else:
        formatted_phone = format_phone(base_info)
    if phone_code:
        phone_country_code = phone_code
    elif formatted_phone.startswith("+"):
        phone_country_code = formatted_phone.split()[0]
    else:
        phone_country_code = trim_string(base_info.contact.phone)

    location = base_info.location
    city = trim_string(location.city)
    state = trim_string(location.state)
    country = trim_string(location.country)

    career = base_info.career
    job_title = trim_string(career.job_title) or trim_string(job_context.get("job_title"))
    current_company = (
        trim_string(career.current_company)
        or trim_string(job_context.get("company"))
        or trim_string(job_context.get("employer"))
    )
    desired_salary = trim_string(career.desired_salary)
    hourly_rate = compute_hourly_rate(desired_salary)

    education = base_info.education

    values = {
        "full_name": full_name,
        "first_name": first_name,
        "last_name": last_name,
        "preferred_name": first_name or full_name,
        "email": trim_string(base_info.contact.email),
        "phone": formatted_phone,
        "phone_country_code": phone_country_code,
        "address_line1": trim_string(location.address),
        "city": city,
        "state_province_region": state,
        "postal_code": trim_string(location.postal_code),
        "country": country,
        "current_location": ", ".join(p for p in (city, state, country) if p),
        "linkedin_url": trim_string(base_info.links.linkedin),
        "cover_letter": "",
        "job_title": job_title,
        "current_company": current_company,
        "years_experience": trim_string(career.years_exp),
        "desired_salary": desired_salary,
        "hourly_rate": str(hourly_rate) if hourly_rate is not None else "",
        "school": trim_string(education.school),
        "degree": trim_string(education.degree),
        "major_field": trim_string(education.major_field),
        "graduation_date": trim_string(education.graduation_at),
    }

    for key in policy.defaults:
        values[key] = trim_string(base_info.default_answers.get(key)) or policy.resolve(key)

    return values
