"""
Runs the in-page extractor against real HTML in Chromium.

Marked `browser`; the whole module is skipped when Playwright's Chromium is
not installed (`playwright install chromium`).
"""

import asyncio
import pytest

from playwright.async_api import async_playwright

from autofill.field_discovery import collect_page_fields
from autofill.label_aliases import build_alias_index
from autofill.planners import build_alias_fill_plan
from autofill.value_map import SensitiveValuePolicy, build_autofill_value_map

pytestmark = pytest.mark.browser


async def _scan(html):
    async with async_playwright() as p:
        browser = await p.chromium.launch(headless=True)
        try:
            page = await browser.new_page()
            await page.set_content(html)
            return await collect_page_fields(page)
        finally:
            await browser.close()


@pytest.fixture(scope="module")
def scan():
    try:
        asyncio.run(_scan("<input>"))
    except Exception as e:
        pytest.skip(f"Chromium not available: {e}")
    return lambda html: asyncio.run(_scan(html))


def by_id(fields):
    return {f.field_id: f for f in fields}


# ============ Control selection ============

def test_two_field_scenario_end_to_end(scan, amin):
    fields = scan(
        """
        <form>
          <label for="fname">First Name</label><input id="fname" type="text">
          <label for="email">Email Address</label><input id="email" name="email" type="email">
          <input type="hidden" name="token" value="x">
          <input type="submit" value="Apply">
          <input type="button" value="Back">
          <input id="ghost" style="display:none">
          <input id="tiny" style="width:0;height:0;border:0;padding:0">
        </form>
        """
    )

    assert [f.field_id for f in fields] == ["fname", "email"]
    assert [f.control_type for f in fields] == ["text", "email"]
    assert [f.index for f in fields] == [0, 1]

    values = build_autofill_value_map(amin, policy=SensitiveValuePolicy(allow_eeo=False))
    plan = build_alias_fill_plan(fields, build_alias_index(), values)

    assert [(f.field, f.value) for f in plan.filled] == [("fname", "Amin"), ("email", "amin@email.com")]
    assert [a.selector for a in plan.actions] == ["#fname", "#email"]


def test_fields_inside_iframes_are_found(scan):
    fields = scan(
        """
        <label for="top">City</label><input id="top">
        <iframe srcdoc="<label for='inner'>Country</label><input id='inner'>"></iframe>
        """
    )

    found = by_id(fields)
    assert set(found) == {"top", "inner"}
    assert found["inner"].label == "Country"
    assert found["inner"].frame_name != found["top"].frame_name


# ============ Prompt scoring ============

def test_question_scoring(scan):
    fields = scan(
        """
        <div>
          <label for="why">Why are you interested in this role?</label>
          <textarea id="why" aria-describedby="why-help"></textarea>
          <span id="why-help">Maximum 200 words</span>
        </div>
        """
    )

    field = by_id(fields)["why"]
    top = field.question_candidates[0]
    assert (top.source, top.text, top.score) == ("label", "Why are you interested in this role?", 20)
    described = [c for c in field.question_candidates if c.source == "describedby"]
    assert described[0].score == 3
    assert field.question_text == "Why are you interested in this role?"
    assert field.constraints["max_words"] == 200
    assert field.likely_essay


def test_label_outranks_higher_scoring_prompt(scan):
    fields = scan(
        """
        <div>
          <p>What is your full legal name as shown on your passport?</p>
          <label for="n">Name</label>
          <input id="n">
        </div>
        """
    )

    field = by_id(fields)["n"]
    assert field.question_text == "Name"
    assert field.question_candidates[0].source == "label"
    assert field.question_candidates[0].score < field.question_candidates[1].score


def test_penalties(scan):
    fields = scan(
        """
        <div><input id="opt" placeholder="Optional"></div>
        <div><input id="consent" type="checkbox" aria-label="I accept the privacy policy"></div>
        """
    )

    found = by_id(fields)
    assert [(c.source, c.score) for c in found["opt"].question_candidates] == [("placeholder", -5)]
    assert found["consent"].question_candidates[0].score == 2


# ============ Constraints ============

def test_constraints_and_essay_heuristic(scan):
    fields = scan(
        """
        <div><label for="bg">Background (max 500 characters)</label><input id="bg" maxlength="500"></div>
        <div><label for="sum">Summary, minimum of 50 words</label><input id="sum"></div>
        <div><label for="city">City</label><input id="city" minlength="2"></div>
        """
    )

    found = by_id(fields)
    assert found["bg"].constraints == {"maxlength": 500, "max_chars": 500}
    assert found["bg"].likely_essay
    assert found["sum"].constraints == {"min_words": 50}
    assert found["city"].constraints == {"minlength": 2}
    assert not found["city"].likely_essay


# ============ Locators ============

def test_locator_priority(scan):
    fields = scan(
        """
        <div><label for="a">Alpha</label><input id="a" name="alpha"></div>
        <div><input name="city" placeholder="Town"></div>
        <div><textarea placeholder="Your story"></textarea></div>
        <div><select id="country"><option>United States</option><option>Canada</option></select></div>
        """
    )

    found = by_id(fields)
    assert found["a"].selector == "#a"
    assert found["a"].locators.playwright == 'getByLabel("Alpha")'
    assert found["city"].selector == 'input[name="city"]'
    assert found["your_story"].selector == "textarea"
    assert found["country"].control_type == "select"
    assert found["country"].options == ["United States", "Canada"]
