"""
Shared fixtures. Outside test_extractor_browser.py no browser is launched: Playwright
objects are MagicMock/AsyncMock stand-ins.
"""

import pytest
from unittest.mock import AsyncMock, MagicMock

from autofill.label_aliases import build_alias_index
from autofill.models import BaseInfo, FieldDescriptor, Profile
from autofill.services.db import MemoryStore


def _make_field(field_id: str, label: str = None, **kwargs) -> FieldDescriptor:
    kwargs.setdefault("id", field_id)
    return FieldDescriptor(field_id=field_id, label=label, **kwargs)


def _make_page():
    page = MagicMock()
    page.goto = AsyncMock()
    page.close = AsyncMock()
    page.fill = AsyncMock()
    page.select_option = AsyncMock()
    page.check = AsyncMock()
    page.uncheck = AsyncMock()
    page.screenshot = AsyncMock(return_value=b"png-bytes")
    page.locator.return_value.first.scroll_into_view_if_needed = AsyncMock()
    return page


def _make_browser(page=None):
    browser = MagicMock()
    browser.new_page = AsyncMock(return_value=page if page is not None else _make_page())
    browser.close = AsyncMock()
    return browser


@pytest.fixture
def make_field():
    """FieldDescriptor factory: make_field("fname", "First Name", type="email")."""
    return _make_field


@pytest.fixture
def make_page():
    """A Playwright Page stand-in whose async methods all succeed."""
    return _make_page


@pytest.fixture
def make_browser():
    return _make_browser


@pytest.fixture
def amin():
    """Profile from the two-field scenario."""
    return BaseInfo.model_validate(
        {
            "name": {"first": "Amin", "last": "Khan"},
            "contact": {"email": "amin@email.com"},
        }
    )


@pytest.fixture
def full_profile():
    return BaseInfo.model_validate(
        {
            "name": {"first": "Amin", "last": "Khan"},
            "contact": {"email": "amin@email.com", "phoneCode": "+1", "phoneNumber": "5551234567"},
            "location": {"city": "Austin", "state": "TX", "country": "USA", "postalCode": "73301"},
            "links": {"linkedin": "https://linkedin.com/in/aminkhan"},
            "career": {"jobTitle": "Engineer", "currentCompany": "Acme", "yearsExp": 6, "desiredSalary": "$120,000"},
            "education": {"school": "UT Austin", "degree": "BS", "majorField": "CS", "graduationAt": "2018"},
        }
    )


@pytest.fixture
def alias_index():
    return build_alias_index()


@pytest.fixture
def store(amin):
    return MemoryStore(profiles=[Profile(id="p1", display_name="Amin Khan", base_info=amin)])
