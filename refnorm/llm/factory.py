"""Factory for creating LLM providers."""

from typing import Optional

from .interfaces import ILLMProvider
from .providers import ClaudeProvider, OpenAIProvider


def create_llm_provider(
    provider_type: str,
    api_key: Optional[str] = None,
    model: Optional[str] = None,
    **kwargs
) -> ILLMProvider:
    """Create an LLM provider instance.

    Args:
        provider_type: Type of provider ('claude', 'openai', 'arliai')
        api_key: Optional API key
        model: Optional model name
        **kwargs: Additional provider-specific arguments (base_url, timeout)

    Returns:
        ILLMProvider instance

    Raises:
        ValueError: If provider type is not supported
    """
    provider_type = provider_type.lower()

    if provider_type == "claude":
        kwargs.pop("base_url", None)
        return ClaudeProvider(
            api_key=api_key,
            model=model or "claude-3-5-haiku-latest",
            **kwargs
        )
    elif provider_type in ("openai", "arliai"):
        return OpenAIProvider(
            api_key=api_key,
            model=model or "GLM-4.5-Air",
            **kwargs
        )
    else:
        raise ValueError(f"Unknown provider type: {provider_type}")
