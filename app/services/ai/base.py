"""
Base AI Provider Interface
Abstract class for all AI providers (Gemini, OpenAI, OpenRouter)
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional, Tuple

from app.utils.constants import AI_MODEL_PRICING


@dataclass
class ProviderResult:
    """Raw text returned by a provider plus its token usage."""

    text: str
    model: str
    input_tokens: int = 0
    output_tokens: int = 0


class AIProvider(ABC):
    """Base class for all AI providers"""

    @abstractmethod
    async def generate(
        self,
        prompt: str,
        *,
        system: Optional[str] = None,
        tier: str = "flash",
        temperature: float = 0.4,
        max_output_tokens: int = 1024,
        json_mode: bool = False,
    ) -> ProviderResult:
        """
        Generate text for a prompt.

        Args:
            prompt: User prompt
            system: Optional system instruction
            tier: "flash" (cheap, fast) or "pro" (higher quality)
            temperature: Sampling temperature
            max_output_tokens: Output cap
            json_mode: Ask the model for a JSON object

        Returns:
            ProviderResult with text and token usage

        Raises:
            CollaboratorError: On transport or provider errors
        """

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider name"""

    def cost_per_million(self, tier: str) -> Tuple[float, float]:
        """(input, output) USD per million tokens for a tier."""
        return AI_MODEL_PRICING.get(tier, AI_MODEL_PRICING["flash"])
