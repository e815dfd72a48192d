"""
Canonical profile-attribute vocabulary and the alias index used to map
free-text form labels onto it.
"""

import json
import logging
import re
import uuid
import yaml

from typing import Iterable, Optional

from autofill.logging import get_logger
from autofill.models import LabelAlias

get_logger()
logger = logging.getLogger(__name__)

ALIAS_TABLE_VERSION = 1

APPLICATION_SUCCESS_KEY = "application_success"
APPLICATION_SUCCESS_DEFAULTS = [
    "application submitted",
    "application received",
    "application sent",
    "your application has been submitted",
    "your application was submitted",
    "we received your application",
    "applied",
    "applied successfully",
    "already applied",
    "you have applied",
    "submitted",
    "submission complete",
    "submission successful",
    "thank you for applying",
    "thanks for applying",
    "thank you for your application",
    "thank you for submitting",
    "we appreciate your interest",
    "thanks for your interest",
    "your interest has been received",
    "application confirmation",
    "submission confirmation",
    "proposal confirmation",
    "you're all set",
    "all done",
    "next steps",
    "what happens next",
]

DEFAULT_LABEL_ALIASES: dict[str, list[str]] = {
    # Personal identity
    "full_name": [
        "full name",
        "legal name",
        "name in full",
        "complete name",
        "first and last name",
        "name (as on id)",
        "name as on id",
        "name (as on passport)",
        "name as on passport",
        "candidate name",
        "applicant name",
        "your name",
    ],
    "first_name": ["first name", "given name", "forename", "given names", "name (first)", "first"],
    "last_name": ["last name", "family name", "surname", "name (last)", "last"],
    "preferred_name": ["preferred name", "chosen name", "display name", "nickname", "known as", "goes by"],
    "pronouns": ["pronouns", "preferred pronouns", "personal pronouns"],
    # Contact
    "email": ["email", "e mail", "e-mail", "email address", "primary email", "contact email", "personal email", "work email"],
    "phone": [
        "phone",
        "phone number",
        "telephone",
        "tel",
        "contact number",
        "mobile",
        "mobile phone",
        "cell",
        "cell phone",
        "primary phone",
        "work phone",
        "home phone",
    ],
    "phone_country_code": ["country code", "dial code", "calling code", "phone country code"],
    # Address / location
    "address_line1": [
        "address",
        "street address",
        "address line 1",
        "address 1",
        "street",
        "street and number",
        "house and street",
        "street name and number",
    ],
    "city": ["city", "town", "locality", "municipality"],
    "state_province_region": ["state", "province", "region", "state/region", "province/state", "county", "territory", "prefecture"],
    "postal_code": ["zip", "zip code", "postal", "postal code", "postcode", "postal/zip", "pincode", "pin code"],
    "country": ["country", "country/region", "nation"],
    "current_location": [
        "current location",
        "location",
        "based in",
        "where are you located",
        "city of residence",
        "current city",
        "place of residence",
    ],
    # Links
    "linkedin_url": ["linkedin", "linked in", "linkedin profile", "linkedin url", "linked in profile", "linked in url"],
    # Documents
    "cover_letter": [
        "cover letter",
        "motivation letter",
        "letter of interest",
        "application letter",
        "upload cover letter",
        "attach cover letter",
    ],
    # Work / role
    "job_title": ["job title", "position", "role", "desired role", "desired position", "title", "designation"],
    "current_company": [
        "current company",
        "current employer",
        "present employer",
        "employer",
        "company",
        "company name",
        "organization",
        "organisation",
    ],
    "years_experience": [
        "years of experience",
        "experience (years)",
        "years experience",
        "yrs experience",
        "total experience",
        "overall experience",
    ],
    # Compensation / availability
    "desired_salary": [
        "desired salary",
        "expected salary",
        "salary expectation",
        "salary expectations",
        "salary requirement",
        "salary requirements",
        "salary range",
        "compensation expectation",
        "expected compensation",
        "desired compensation",
        "target compensation",
        "pay expectation",
        "desired pay",
        "base salary expectation",
    ],
    "hourly_rate": ["hourly rate", "hourly pay", "desired hourly rate", "rate per hour"],
    "start_date": [
        "start date",
        "available to start",
        "earliest start date",
        "date available",
        "availability date",
        "when can you start",
        "available from",
    ],
    "notice_period": ["notice period", "weeks notice", "notice", "availability after notice"],
    # Education
    "school": ["school", "university", "college", "institution", "school name", "university name", "college name"],
    "degree": ["degree", "degree type", "qualification", "education level", "highest degree", "diploma", "certificate"],
    "major_field": ["major", "field of study", "concentration", "specialization", "specialisation", "discipline"],
    "graduation_date": [
        "graduation date",
        "graduation year",
        "graduated",
        "completion date",
        "degree completion date",
        "completion year",
    ],
    # EEO, only filled when the sensitive-value policy allows it
    "eeo_gender": ["gender", "sex"],
    "eeo_race_ethnicity": ["race", "ethnicity", "race/ethnicity"],
    "eeo_veteran": ["veteran", "protected veteran"],
    "eeo_disability": ["disability", "disability status"],
    # Confirmation phrases, not a field key
    APPLICATION_SUCCESS_KEY: [],
}

CANONICAL_LABEL_KEYS = frozenset(DEFAULT_LABEL_ALIASES)
EEO_KEYS = frozenset({"eeo_gender", "eeo_race_ethnicity", "eeo_veteran", "eeo_disability"})

_NON_ALNUM = re.compile(r"[^a-z0-9]+")
_WHITESPACE = re.compile(r"\s+")


def normalize_label_alias(label: str) -> str:
    return _NON_ALNUM.sub(" ", (label or "").lower()).strip()


def squish(normalized: str) -> str:
    return _WHITESPACE.sub("", normalized)


class AliasIndex:
    """
    Immutable lookup from normalized (and squished) label text to canonical key.

    Built once per request from the default table plus tenant aliases; later
    additions overwrite earlier ones on the same normalized form.
    """

    def __init__(self, entries: dict[str, str]):
        self._entries = dict(entries)

    def get(self, key: str) -> Optional[str]:
        return self._entries.get(key)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)


def build_alias_index(custom_aliases: Iterable[LabelAlias] = ()) -> AliasIndex:
    index: dict[str, str] = {}

    def add(canonical: str, alias: str):
        normalized = normalize_label_alias(alias)
        if not normalized:
            return
        index[normalized] = canonical
        squished = squish(normalized)
        if squished:
            index[squished] = canonical

    for canonical, aliases in DEFAULT_LABEL_ALIASES.items():
        if canonical == APPLICATION_SUCCESS_KEY:
            continue
        add(canonical, canonical)
        for alias in aliases:
            add(canonical, alias)

    for alias in custom_aliases:
        if alias.canonical_key == APPLICATION_SUCCESS_KEY:
            continue
        if alias.canonical_key not in CANONICAL_LABEL_KEYS:
            logger.warning(f"Ignoring alias '{alias.alias}' for unknown key {alias.canonical_key}")
            continue
        add(alias.canonical_key, alias.alias)

    return AliasIndex(index)


def match_label_to_canonical(label: Optional[str], index: AliasIndex) -> Optional[str]:
    if not label:
        return None
    normalized = normalize_label_alias(label)
    if not normalized:
        return None
    return index.get(normalized) or index.get(squish(normalized))


def build_application_success_phrases(custom_aliases: Iterable[LabelAlias] = ()) -> list[str]:
    custom = [
        alias.alias
        for alias in custom_aliases
        if alias.canonical_key == APPLICATION_SUCCESS_KEY
    ]
    merged: list[str] = []
    for phrase in [*APPLICATION_SUCCESS_DEFAULTS, *custom]:
        trimmed = phrase.strip()
        if trimmed and trimmed not in merged:
            merged.append(trimmed)
    return merged


def validate_alias(canonical_key: str, alias: str) -> tuple[str, str]:
    """
    Check an alias submitted by an operator.

    Returns the trimmed canonical key and the normalized alias, or raises
    ValueError when the key is unknown or the alias normalizes to nothing.
    """
    key = (canonical_key or "").strip()
    if key not in CANONICAL_LABEL_KEYS:
        raise ValueError("Unknown canonical key")
    normalized = normalize_label_alias(alias)
    if not normalized:
        raise ValueError("Alias cannot be empty")
    return key, normalized


def load_aliases_file(path: str) -> list[LabelAlias]:
    """Read `{canonical_key: [alias, ...]}` from a .json or .yaml file."""
    with open(path, "r") as f:
        if path.endswith(".json"):
            data = json.load(f)
        else:
            data = yaml.safe_load(f)

    if not isinstance(data, dict):
        raise ValueError(f"Alias file {path} must contain a mapping")

    aliases: list[LabelAlias] = []
    for canonical, values in data.items():
        if isinstance(values, str):
            values = [values]
        for value in values or []:
            try:
                key, normalized = validate_alias(str(canonical), str(value))
            except ValueError as e:
                logger.warning(f"Skipping alias {canonical}={value!r} from {path}: {e}")
                continue
            aliases.append(
                LabelAlias(
                    id=str(uuid.uuid4()),
                    canonical_key=key,
                    alias=str(value).strip(),
                    normalized_alias=normalized,
                )
            )
    logger.info(f"Loaded {len(aliases)} aliases from {path}")
    return aliases
