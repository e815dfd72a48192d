import asyncio
import logging
import json
import httpx

from typing import Any, Dict, List, Optional, Type
from pydantic import BaseModel

from autofill.env import FALLBACK_MODEL, MODEL, OPENROUTER_API_KEY
from autofill.errors import FallbackModelFailure
from autofill.logging import get_logger

get_logger()
logger = logging.getLogger(__name__)


class AgentResult(BaseModel):
    """Result from agent execution"""

    output: Any = None
    usage: Dict[str, int] = {}
    iterations: int = 0
    success: bool = True
    error: Optional[str] = None


def extract_json(text: str) -> Any:
    """
    Parse a JSON object out of a model reply that may be wrapped in
    markdown fences or surrounded by prose. Raises ValueError when no
    object can be decoded.
    """
    parsed_output = (text or "").strip()
    if "```" in parsed_output or not parsed_output.startswith("{"):
        start_idx = parsed_output.find("{")
        end_idx = parsed_output.rfind("}") + 1
        if start_idx != -1 and end_idx > start_idx:
            parsed_output = parsed_output[start_idx:end_idx]
    try:
        return json.loads(parsed_output)
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON output: {e}") from e


class Agent:
    """
    Base Agent class for OpenRouter LLM interactions.

    Supports:
    - Structured output (JSON schema in the system prompt, validated on return)
    - Retry logic with exponential backoff
    - One corrective turn when the structured output does not parse
    """

    def __init__(
        self,
        system_prompt: str,
        response_format: Optional[Type[BaseModel]] = None,
        model: str = MODEL,
        fallback_model: Optional[str] = FALLBACK_MODEL,
        temperature: float = 0.2,
        max_tokens: Optional[int] = None,
        api_key: Optional[str] = OPENROUTER_API_KEY,
        timeout: float = 120.0,
    ):
        """
        Initialize agent.

        Args:
            system_prompt: System prompt defining agent behavior
            response_format: Pydantic model for structured JSON output
            model: OpenRouter model ID
            fallback_model: Model tried once when every attempt on `model` fails
            temperature: LLM temperature (0-1)
            max_tokens: Maximum tokens to generate
            api_key: OpenRouter key, defaults to OPENROUTER_API_KEY
            timeout: Per-request timeout in seconds
        """
        if not api_key:
            raise FallbackModelFailure(
                "OPENROUTER_API_KEY is not set. Get a key at https://openrouter.ai/keys"
            )

        self.system_prompt = system_prompt
        self.response_format = response_format
        self.model = model
        self.fallback_model = fallback_model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.timeout = timeout

        self.url = "https://openrouter.ai/api/v1/chat/completions"
        self.headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }

        self.messages: List[Dict[str, Any]] = []
        self.result = AgentResult()

    def init_messages(self):
        """Initialize conversation with system prompt"""
        system_content = self.system_prompt

        # If response_format is set, add schema to system prompt
        if self.response_format:
            schema = self.response_format.model_json_schema()
            if "title" in schema:
                del schema["title"]
            if "properties" in schema:
                for prop in schema["properties"].values():
                    if "title" in prop:
                        del prop["title"]

            system_content += f"\n\nYou must respond with valid JSON matching this exact schema:\n{json.dumps(schema, indent=2)}\n\nReturn only the JSON object, no additional text."

        self.messages = [{"role": "system", "content": system_content}]

    async def _call_llm_with_retry(
        self, payload: dict, max_retries: int = 3
    ) -> Optional[httpx.Response]:
        """
        Call OpenRouter API with exponential backoff retry.

        Args:
            payload: Request payload
            max_retries: Maximum number of retry attempts

        Returns:
            Response object or None on failure
        """
        initial_delay = 2.0

        for attempt in range(max_retries):
            try:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(
                        self.url, headers=self.headers, json=payload
                    )

                    if response.status_code == 200:
                        return response
                    elif response.status_code >= 500:
                        logger.warning(
                            f"Server error {response.status_code}, "
                            f"retrying (attempt {attempt + 1}/{max_retries})..."
                        )
                    else:
                        # Client error - don't retry
                        logger.error(
                            f"API error {response.status_code}: {response.text}"
                        )
                        return None

            except (httpx.ReadError, httpx.ConnectError, httpx.ReadTimeout) as e:
                logger.warning(
                    f"Network error {type(e).__name__}, "
                    f"retrying (attempt {attempt + 1}/{max_retries})..."
                )
            except httpx.HTTPError as e:
                logger.error(f"Unexpected HTTP error: {str(e)}")
                return None

            if attempt < max_retries - 1:
                delay = initial_delay * (2**attempt)
                await asyncio.sleep(delay)

        logger.error("All retry attempts failed")
        return None

    async def generate(self, prompt: str) -> Optional[str]:
        """
        Single completion for `prompt`; returns the raw reply text or None
        when the call fails or the reply is empty.
        """
        if not self.messages:
            self.init_messages()
        self.messages.append({"role": "user", "content": prompt})

        payload = {
            "model": self.model,
            "messages": self.messages,
            "temperature": self.temperature,
        }
        if self.max_tokens:
            payload["max_tokens"] = self.max_tokens
        if self.response_format:
            payload["response_format"] = {"type": "json_object"}

        response = await self._call_llm_with_retry(payload)
        if not response and self.fallback_model and self.fallback_model != self.model:
            logger.warning(f"{self.model} unavailable, retrying with {self.fallback_model}")
            response = await self._call_llm_with_retry({**payload, "model": self.fallback_model})
        if not response:
            return None

        try:
            result = response.json()
        except ValueError:
            logger.error("OpenRouter returned a non-JSON body")
            return None

        message = (result.get("choices") or [{}])[0].get("message") or {}
        self.result.usage = result.get("usage", {})
        self.messages.append(message)
        output = message.get("content") or ""
        logger.debug(
            f"Token usage - input: {self.result.usage.get('prompt_tokens', 0)}, output: {self.result.usage.get('completion_tokens', 0)}"
        )
        return output or None

    async def run(self, query: str, max_iterations: int = 2) -> AgentResult:
        """
        Ask for a structured answer, re-prompting once per iteration when the
        reply does not parse into response_format.

        Args:
            query: User query/task
            max_iterations: Maximum number of LLM calls

        Returns:
            AgentResult with output and metadata
        """
        self.result = AgentResult()
        prompt = query

        for iteration in range(max_iterations):
            logger.info(f"Iteration {iteration + 1}/{max_iterations}")
            self.result.iterations = iteration + 1

            output = await self.generate(prompt)
            if output is None:
                self.result.success = False
                self.result.error = "API call failed"
                return self.result

            if not self.response_format:
                self.result.output = output
                return self.result

            try:
                data = extract_json(output)
                self.result.output = self.response_format(**data)
                logger.info(
                    f"Successfully parsed {self.response_format.__name__} object"
                )
                return self.result
            except Exception as e:
                logger.warning(f"Failed to parse structured output: {e}")
                prompt = f"Failed to parse structured output: {e}"

        self.result.success = False
        self.result.error = "Max iterations reached without valid output"
        return self.result
