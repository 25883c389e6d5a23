"""Interface for AI completion providers."""

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional


class ILLMProvider(ABC):
    """Interface for LLM providers."""

    model: str

    @abstractmethod
    async def complete(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        temperature: float = 0.1,
        max_tokens: Optional[int] = None,
        response_format: Optional[Dict[str, Any]] = None,
    ) -> str:
        """Complete a prompt."""
        pass

    @abstractmethod
    def estimate_tokens(self, text: str) -> int:
        """Estimate token count."""
        pass
