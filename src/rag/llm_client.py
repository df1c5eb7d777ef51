"""Async LLM client abstraction for Anthropic and OpenAI."""

import json
from typing import Optional

import structlog

from src.config import LLMProvider, get_settings

logger = structlog.get_logger(__name__)


def extract_json(response: str) -> dict:
    """Parse the JSON object out of a model reply.

    Handles markdown code fences and leading/trailing chatter.

    Raises:
        ValueError: if no JSON object can be parsed
    """
    text = response
    if "```json" in text:
        start = text.find("```json") + 7
        end = text.find("```", start)
        text = text[start:end].strip()
    elif "```" in text:
        start = text.find("```") + 3
        end = text.find("```", start)
        text = text[start:end].strip()

    json_start = text.find("{")
    json_end = text.rfind("}") + 1
    if json_start != -1 and json_end > json_start:
        text = text[json_start:json_end]

    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise ValueError(f"Failed to parse LLM response as JSON: {e}\nResponse: {response}")

    if not isinstance(data, dict):
        raise ValueError(f"Expected a JSON object, got {type(data).__name__}")
    return data


class LLMClient:
    """Unified async LLM client supporting Anthropic and OpenAI."""

    def __init__(
        self,
        provider: Optional[LLMProvider] = None,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        """Initialize LLM client.

        Args:
            provider: LLM provider to use (from settings if not specified)
            model: Model name (from settings if not specified)
            timeout: Request timeout in seconds (from settings if not specified)
        """
        self.settings = get_settings()
        self.provider = provider or self.settings.llm_provider
        self.model = model or self.settings.model_for(self.provider)
        self.timeout = timeout or self.settings.llm_timeout_seconds
        self._client = None

    def _get_client(self):
        """Lazily initialize the async SDK client."""
        if self._client is not None:
            return self._client

        if self.provider == LLMProvider.ANTHROPIC:
            import anthropic

            self._client = anthropic.AsyncAnthropic(
                api_key=self.settings.api_key_for(self.provider),
                timeout=self.timeout,
            )
        else:
            import openai

            self._client = openai.AsyncOpenAI(
                api_key=self.settings.api_key_for(self.provider),
                timeout=self.timeout,
            )

        return self._client

    async def generate(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        max_tokens: Optional[int] = None,
        temperature: float = 0.7,
    ) -> str:
        """Generate a response from the LLM.

        Args:
            prompt: User prompt
            system_prompt: Optional system prompt
            max_tokens: Maximum tokens to generate (from settings if not specified)
            temperature: Sampling temperature

        Returns:
            Generated text response (may be empty)
        """
        client = self._get_client()
        max_tokens = max_tokens or self.settings.llm_max_tokens
        logger.debug("llm_request", provider=self.provider.value, model=self.model)

        if self.provider == LLMProvider.ANTHROPIC:
            kwargs = {
                "model": self.model,
                "max_tokens": max_tokens,
                "temperature": temperature,
                "messages": [{"role": "user", "content": prompt}],
            }
            if system_prompt:
                kwargs["system"] = system_prompt

            response = await client.messages.create(**kwargs)
            return "".join(
                block.text for block in response.content if getattr(block, "type", "text") == "text"
            )

        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})

        response = await client.chat.completions.create(
            model=self.model,
            messages=messages,
            max_tokens=max_tokens,
            temperature=temperature,
        )
        return response.choices[0].message.content or ""

    async def generate_json(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        max_tokens: Optional[int] = None,
        temperature: float = 0.2,
    ) -> dict:
        """Generate a JSON response from the LLM.

        Returns:
            Parsed JSON dict

        Raises:
            ValueError: if the reply is not a JSON object
        """
        json_system = (system_prompt or "") + "\n\nRespond only with valid JSON, no other text."

        response = await self.generate(
            prompt=prompt,
            system_prompt=json_system.strip(),
            max_tokens=max_tokens,
            temperature=temperature,
        )
        return extract_json(response)
