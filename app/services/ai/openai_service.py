"""
OpenAI Service Implementation
Uses GPT-4o-mini for summaries and narrative sections
"""
import logging
from typing import Optional

from openai import AsyncOpenAI, OpenAIError

from app.config import settings
from app.core.exceptions import CollaboratorError
from app.utils.helpers import estimate_tokens
from .base import AIProvider, ProviderResult

logger = logging.getLogger(__name__)


class OpenAIService(AIProvider):
    """OpenAI API implementation"""

    def __init__(self):
        self.client = AsyncOpenAI(api_key=settings.OPENAI_API_KEY)
        self.chat_model = settings.OPENAI_MODEL

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
        messages = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})

        kwargs = {}
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        try:
            response = await self.client.chat.completions.create(
                model=self.chat_model,
                messages=messages,
                temperature=temperature,
                max_tokens=max_output_tokens,
                **kwargs,
            )
        except OpenAIError as e:
            logger.error(f"OpenAI generation failed: {e}")
            raise CollaboratorError(f"OpenAI generation failed: {e}") from e

        text = response.choices[0].message.content or ""
        usage = response.usage
        return ProviderResult(
            text=text,
            model=self.chat_model,
            input_tokens=usage.prompt_tokens if usage else estimate_tokens(prompt),
            output_tokens=usage.completion_tokens if usage else estimate_tokens(text),
        )

    @property
    def name(self) -> str:
        return "openai"
