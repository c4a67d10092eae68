"""
OpenRouter Service Implementation
Uses various free/cheap models via OpenRouter API
"""
import logging
from typing import Optional

import httpx

from app.config import settings
from app.core.exceptions import CollaboratorError
from app.utils.helpers import estimate_tokens
from .base import AIProvider, ProviderResult

logger = logging.getLogger(__name__)


class OpenRouterService(AIProvider):
    """OpenRouter API implementation (access to multiple models)"""

    def __init__(self):
        self.api_key = settings.OPENROUTER_API_KEY
        self.base_url = "https://openrouter.ai/api/v1"
        self.chat_model = settings.OPENROUTER_MODEL
        self.timeout = 60.0

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

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    f"{self.base_url}/chat/completions",
                    headers={
                        "Authorization": f"Bearer {self.api_key}",
                        "HTTP-Referer": settings.APP_URL,
                        "X-Title": settings.APP_NAME,
                    },
                    json={
                        "model": self.chat_model,
                        "messages": messages,
                        "temperature": temperature,
                        "max_tokens": max_output_tokens,
                    },
                )
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPError as e:
            logger.error(f"OpenRouter HTTP error: {e}")
            raise CollaboratorError(f"OpenRouter request failed: {e}") from e

        try:
            text = data["choices"][0]["message"]["content"] or ""
        except (KeyError, IndexError, TypeError) as e:
            raise CollaboratorError(f"Unexpected OpenRouter response: {e}") from e

        usage = data.get("usage") or {}
        return ProviderResult(
            text=text,
            model=self.chat_model,
            input_tokens=usage.get("prompt_tokens") or estimate_tokens(prompt),
            output_tokens=usage.get("completion_tokens") or estimate_tokens(text),
        )

    @property
    def name(self) -> str:
        return "openrouter"
