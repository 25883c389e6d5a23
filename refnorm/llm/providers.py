"""LLM provider implementations."""

import os
from typing import Any, Dict, Optional

import anthropic
import openai

from .interfaces import ILLMProvider


class ClaudeProvider(ILLMProvider):
    """Anthropic Claude provider."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = "claude-3-5-haiku-latest",
        timeout: Optional[float] = None,
    ):
        self.api_key = api_key or os.getenv("ANTHROPIC_API_KEY")
        self.model = model
        client_kwargs = {"api_key": self.api_key, "max_retries": 0}
        if timeout:
            client_kwargs["timeout"] = timeout
        self.client = anthropic.AsyncAnthropic(**client_kwargs)

    async def complete(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        temperature: float = 0.1,
        max_tokens: Optional[int] = None,
        response_format: Optional[Dict[str, Any]] = None,
    ) -> str:
        content = prompt
        if response_format and response_format.get("type") == "json_object":
            content += "\n\nRespond with valid JSON only."

        kwargs = {
            "model": self.model,
            "messages": [{"role": "user", "content": content}],
            "temperature": temperature,
            "max_tokens": max_tokens or 1024,
        }
        if system_prompt:
            kwargs["system"] = system_prompt

        response = await self.client.messages.create(**kwargs)
        if not response.content:
            return ""
        return response.content[0].text

    def estimate_tokens(self, text: str) -> int:
        """Estimate token count for Claude."""
        # Approximate: 1 token ≈ 4 characters
        return len(text) // 4 if text else 0


class OpenAIProvider(ILLMProvider):
    """OpenAI-compatible chat completions provider (OpenAI, Arliai and similar)."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = "GLM-4.5-Air",
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        self.api_key = api_key or os.getenv("ARLIAI_API_KEY") or os.getenv("OPENAI_API_KEY")
        self.model = model
        self.base_url = base_url
        # Retries are handled by the classifier
        client_kwargs = {"api_key": self.api_key, "base_url": base_url, "max_retries": 0}
        if timeout:
            client_kwargs["timeout"] = timeout
        self.client = openai.AsyncOpenAI(**client_kwargs)

    async def complete(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        temperature: float = 0.1,
        max_tokens: Optional[int] = None,
        response_format: Optional[Dict[str, Any]] = None,
    ) -> str:
        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})

        kwargs = {
            "model": self.model,
            "messages": messages,
            "temperature": temperature,
        }

        if max_tokens:
            kwargs["max_tokens"] = max_tokens

        if response_format:
            kwargs["response_format"] = response_format

        response = await self.client.chat.completions.create(**kwargs)
        if not response.choices:
            return ""
        return response.choices[0].message.content or ""

    def estimate_tokens(self, text: str) -> int:
        """Estimate token count (character-based approximation)."""
        return len(text) // 4 if text else 0
