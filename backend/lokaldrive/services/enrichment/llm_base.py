"""Async LLM provider interface and implementations.

Both google-genai and openai SDKs are sync, so calls are wrapped with
asyncio.to_thread and retried with exponential backoff on transient errors.
The overall deadline is applied by the caller (EnrichmentGateway) with
asyncio.wait_for so it covers every retry.
"""
import asyncio
import json
import logging
import random
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, Tuple, Type

from lokaldrive.config import Settings

logger = logging.getLogger(__name__)


def _parse_json_text(text: Optional[str]) -> Dict[str, Any]:
    """Parse a JSON reply, tolerating a ```json fenced block."""
    if not text:
        raise ValueError("Empty response from LLM")
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        text = text.strip()
        if text.startswith("```json"):
            text = text[7:]
        if text.endswith("```"):
            text = text[:-3]
        return json.loads(text.strip())


class BaseLLMProvider(ABC):
    """Abstract base class for async LLM providers."""

    # Override in subclasses with provider-specific retryable exception types
    RETRYABLE_EXCEPTIONS: Tuple[Type[BaseException], ...] = (ConnectionError, TimeoutError)
    RETRY_BASE_DELAY = 1.0  # seconds; doubles per attempt

    def __init__(self, api_key: str, model_name: str, temperature: float = 1.0, max_retries: int = 2):
        self.api_key = api_key
        self.model_name = model_name
        self.temperature = temperature
        self.max_retries = max_retries

    async def _with_retry(self, sync_fn, *args):
        for attempt in range(self.max_retries + 1):
            try:
                return await asyncio.to_thread(sync_fn, *args)
            except self.RETRYABLE_EXCEPTIONS as e:
                if attempt == self.max_retries:
                    raise
                delay = self.RETRY_BASE_DELAY * ((2 ** attempt) + random.uniform(0, 1))
                logger.warning(
                    "LLM call failed (attempt %d/%d), retrying in %.1fs: %s",
                    attempt + 1, self.max_retries + 1, delay, e,
                )
                await asyncio.sleep(delay)

    @abstractmethod
    async def generate_json(
        self, prompt: str, system_prompt: Optional[str] = None,
        json_schema: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        pass


class GeminiProvider(BaseLLMProvider):
    """Async Gemini provider using google-genai SDK."""

    def __init__(self, api_key: str, model_name: str, temperature: float = 1.0, max_retries: int = 2):
        super().__init__(api_key, model_name, temperature, max_retries)

        from google import genai
        from google.genai import errors as genai_errors

        self.RETRYABLE_EXCEPTIONS = (genai_errors.ServerError, ConnectionError, TimeoutError)
        self.client = genai.Client(api_key=api_key)

    def _sync_generate_json(self, prompt, system_prompt, json_schema):
        from google.genai import types

        config_dict = {
            "temperature": self.temperature,
            "response_mime_type": "application/json",
        }
        if system_prompt:
            config_dict["system_instruction"] = system_prompt
        if json_schema:
            config_dict["response_json_schema"] = json_schema
        config = types.GenerateContentConfig(**config_dict)

        response = self.client.models.generate_content(
            model=self.model_name, contents=prompt, config=config,
        )
        return _parse_json_text(response.text)

    async def generate_json(self, prompt, system_prompt=None, json_schema=None):
        return await self._with_retry(self._sync_generate_json, prompt, system_prompt, json_schema)


class OpenAIProvider(BaseLLMProvider):
    """Async OpenAI provider."""

    def __init__(self, api_key: str, model_name: str, temperature: float = 1.0, max_retries: int = 2):
        super().__init__(api_key, model_name, temperature, max_retries)

        from openai import APIConnectionError, APITimeoutError, OpenAI, RateLimitError

        self.RETRYABLE_EXCEPTIONS = (
            RateLimitError, APIConnectionError, APITimeoutError, ConnectionError, TimeoutError,
        )
        # SDK-level retries off; _with_retry owns the backoff
        self.client = OpenAI(api_key=api_key, max_retries=0)

    def _sync_generate_json(self, prompt, system_prompt, json_schema):
        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})

        params = {"model": self.model_name, "messages": messages, "temperature": self.temperature}
        if json_schema:
            params["response_format"] = {
                "type": "json_schema",
                "json_schema": {"name": "response", "schema": json_schema},
            }
        else:
            params["response_format"] = {"type": "json_object"}

        response = self.client.chat.completions.create(**params)
        return _parse_json_text(response.choices[0].message.content)

    async def generate_json(self, prompt, system_prompt=None, json_schema=None):
        return await self._with_retry(self._sync_generate_json, prompt, system_prompt, json_schema)


def create_llm_provider(
    provider: str, api_key: str, model_name: str, temperature: float = 0.2,
) -> BaseLLMProvider:
    """Plain constructor; credential policy lives in provider_from_settings."""
    if not model_name:
        raise ValueError("No model configured for LLM provider")
    if provider == "gemini":
        return GeminiProvider(api_key=api_key, model_name=model_name, temperature=temperature)
    elif provider == "openai":
        return OpenAIProvider(api_key=api_key, model_name=model_name, temperature=temperature)
    else:
        raise ValueError(f"Unknown LLM provider: {provider}")


def provider_from_settings(settings: Settings) -> Optional[BaseLLMProvider]:
    """Build the configured provider, or None when its API key is not set."""
    if settings.LLM_PROVIDER == "gemini":
        api_key, model_name = settings.GEMINI_API_KEY, settings.GEMINI_MODEL
    elif settings.LLM_PROVIDER == "openai":
        api_key, model_name = settings.OPENAI_API_KEY, settings.OPENAI_MODEL
    else:
        raise ValueError(f"Unknown LLM provider: {settings.LLM_PROVIDER}")

    if not api_key:
        logger.warning(
            "%s API key missing; file enrichment will use offline fallback metadata",
            settings.LLM_PROVIDER,
        )
        return None
    return create_llm_provider(
        settings.LLM_PROVIDER, api_key, model_name, temperature=settings.LLM_TEMPERATURE,
    )
