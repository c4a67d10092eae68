"""
Google Gemini Service Implementation
Flash for everyday summaries, Pro for long-form reports
"""
import logging
from typing import Optional

import google.generativeai as genai

from app.config import settings
from app.core.exceptions import CollaboratorError
from app.utils.helpers import estimate_tokens
from .base import AIProvider, ProviderResult

logger = logging.getLogger(__name__)


class GeminiService(AIProvider):
    """Google Gemini API implementation"""

    def __init__(self):
        genai.configure(api_key=settings.GEMINI_API_KEY)
        self.models = {
            "flash": settings.GEMINI_FLASH_MODEL,
            "pro": settings.GEMINI_PRO_MODEL,
        }

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
        model_name = self.models.get(tier, self.models["flash"])
        model = genai.GenerativeModel(model_name, system_instruction=system)
        config = genai.types.GenerationConfig(
            temperature=temperature,
            max_output_tokens=max_output_tokens,
            response_mime_type="application/json" if json_mode else None,
        )

        try:
            response = await model.generate_content_async(prompt, generation_config=config)
            text = response.text
        except Exception as e:
            logger.error(f"Gemini generation failed: {e}")
            raise CollaboratorError(f"Gemini generation failed: {e}") from e

        usage = getattr(response, "usage_metadata", None)
        return ProviderResult(
            text=text,
            model=model_name,
            input_tokens=getattr(usage, "prompt_token_count", 0) or estimate_tokens(prompt),
            output_tokens=getattr(usage, "candidates_token_count", 0) or estimate_tokens(text),
        )

    @property
    def name(self) -> str:
        return "gemini"
