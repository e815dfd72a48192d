"""
Tests for services/llm

The HTTP call is patched out; these cover prompt building and reply parsing.
"""

import asyncio
import json
import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from autofill.errors import FallbackModelFailure
from autofill.services.llm import (
    Agent,
    AutofillPlanAgent,
    AutofillPlanResponse,
    build_autofill_plan_prompt,
    extract_json,
)

PLAN_REPLY = {
    "task": "FORM_AUTOFILL_PLAN",
    "status": "ok",
    "result": {"fill_plan": [{"field_id": "fname", "action": "fill", "value": "Amin", "confidence": 0.9}]},
    "warnings": [],
    "questions_for_user": [],
}


def http_reply(content):
    response = MagicMock()
    response.json.return_value = {
        "choices": [{"message": {"role": "assistant", "content": content}}],
        "usage": {"prompt_tokens": 10, "completion_tokens": 5},
    }
    return response


class TestExtractJson:

    def test_plain(self):
        assert extract_json('{"a": 1}') == {"a": 1}

    def test_fenced(self):
        assert extract_json('```json\n{"a": [1, 2]}\n```') == {"a": [1, 2]}

    def test_prose_around(self):
        assert extract_json('Here you go: {"ok": true} hope it helps') == {"ok": True}

    def test_invalid(self):
        with pytest.raises(ValueError):
            extract_json("no json here")


class TestAgent:

    def test_missing_key(self):
        with pytest.raises(FallbackModelFailure):
            Agent(system_prompt="x", api_key=None)

    def test_schema_in_system_prompt(self):
        agent = Agent(system_prompt="Plan it.", response_format=AutofillPlanResponse, api_key="k")
        agent.init_messages()

        system = agent.messages[0]["content"]
        assert system.startswith("Plan it.")
        assert "fill_plan" in system

    def test_structured_reply(self):
        agent = AutofillPlanAgent(api_key="k")
        with patch.object(agent, "_call_llm_with_retry", AsyncMock(return_value=http_reply(json.dumps(PLAN_REPLY)))):
            result = asyncio.run(agent.run("plan"))

        assert result.success
        assert result.output.result.fill_plan[0]["value"] == "Amin"
        assert result.usage["prompt_tokens"] == 10

    def test_corrective_retry(self):
        agent = AutofillPlanAgent(api_key="k")
        replies = [http_reply("not json"), http_reply(json.dumps(PLAN_REPLY))]
        with patch.object(agent, "_call_llm_with_retry", AsyncMock(side_effect=replies)) as call:
            result = asyncio.run(agent.run("plan"))

        assert result.success
        assert result.iterations == 2
        assert call.await_count == 2
        user_turns = [m["content"] for m in agent.messages if m.get("role") == "user"]
        assert user_turns[0] == "plan"
        assert user_turns[1].startswith("Failed to parse structured output")

    def test_fallback_model_after_primary_fails(self):
        agent = AutofillPlanAgent(api_key="k", model="primary/model", fallback_model="backup/model")
        replies = [None, http_reply(json.dumps(PLAN_REPLY))]
        with patch.object(agent, "_call_llm_with_retry", AsyncMock(side_effect=replies)) as call:
            result = asyncio.run(agent.run("plan"))

        assert result.success
        assert [c.args[0]["model"] for c in call.await_args_list] == ["primary/model", "backup/model"]

    def test_api_failure(self):
        agent = AutofillPlanAgent(api_key="k")
        with patch.object(agent, "_call_llm_with_retry", AsyncMock(return_value=None)):
            response = asyncio.run(agent.plan(page_fields=[], base_profile={}))

        assert response is None


class TestPrompt:

    def test_payload(self, make_field):
        prompt = build_autofill_plan_prompt(
            [make_field("fname", "First Name")],
            {"name": {"first": "Amin"}},
            prefs={"privacy": {"auto_fill_eeo": False}},
            page_context={"url": "https://jobs.example.com"},
        )

        assert prompt.startswith("Return ONLY valid JSON.\nInput:\n")
        payload = json.loads(prompt.split("Input:\n", 1)[1])
        assert payload["task"] == "FORM_AUTOFILL_PLAN"
        assert payload["page_fields"][0]["field_id"] == "fname"
        assert payload["page_fields"][0]["label"] == "First Name"
        assert payload["prefs"]["privacy"]["auto_fill_eeo"] is False
        assert payload["job_context"] == {}
