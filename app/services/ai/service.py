"""
AI Service
Provider calls with retry, response caching, structured JSON parsing and usage accounting
"""
import json
import logging
import re
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from app.config import Settings, settings as default_settings
from app.core.cache import CacheManager
from app.core.exceptions import AIResponseFormatError, CollaboratorError
from app.models.ai_usage_log import AiUsageLog
from .base import AIProvider, ProviderResult

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)
_OBJECT_RE = re.compile(r"\{.*\}", re.DOTALL)


@dataclass
class AIResponse:
    output: str
    model: str
    tokens: Dict[str, int] = field(default_factory=dict)
    cost_usd: float = 0.0
    cached: bool = False


def parse_json_response(text: str) -> Dict[str, Any]:
    """Parse a model reply into a JSON object, tolerating markdown fences."""
    cleaned = _FENCE_RE.sub("", (text or "").strip()).strip()
    candidates = [cleaned]
    match = _OBJECT_RE.search(cleaned)
    if match and match.group() != cleaned:
        candidates.append(match.group())

    for candidate in candidates:
        try:
            parsed = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(parsed, dict):
            return parsed

    raise AIResponseFormatError("AI response was not valid JSON", {"preview": cleaned[:200]})


class AIService:
    """Single entry point for AI generation used by the workers."""

    def __init__(
        self,
        provider: AIProvider,
        cache: Optional[CacheManager] = None,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        settings: Settings = default_settings,
    ):
        self.provider = provider
        self.cache = cache
        self.session_factory = session_factory
        self.settings = settings

    async def _call_provider(self, prompt: str, **kwargs) -> ProviderResult:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.settings.AI_MAX_RETRIES + 1),
            wait=wait_exponential(multiplier=self.settings.AI_RETRY_BASE_DELAY, max=10),
            retry=retry_if_exception_type(CollaboratorError),
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                return await self.provider.generate(prompt, **kwargs)

    def _cost(self, tier: str, result: ProviderResult) -> float:
        input_rate, output_rate = self.provider.cost_per_million(tier)
        return round(
            (result.input_tokens / 1_000_000) * input_rate
            + (result.output_tokens / 1_000_000) * output_rate,
            8,
        )

    async def _log_usage(
        self,
        result: ProviderResult,
        cost: float,
        feature: str,
        user_id: Optional[str],
        role: Optional[str],
    ) -> None:
        if self.session_factory is None:
            return
        try:
            async with self.session_factory() as session:
                session.add(
                    AiUsageLog(
                        user_id=user_id,
                        role=role,
                        feature=feature,
                        model=result.model,
                        input_tokens=result.input_tokens,
                        output_tokens=result.output_tokens,
                        cost_usd=cost,
                    )
                )
                await session.commit()
        except SQLAlchemyError as e:
            logger.warning(f"Failed to record AI usage for {feature}: {e}")

    async def generate_content(
        self,
        prompt: str,
        *,
        feature: str = "general",
        user_id: Optional[str] = None,
        role: Optional[str] = None,
        tier: str = "flash",
        system: Optional[str] = None,
        temperature: float = 0.4,
        max_output_tokens: int = 1024,
        json_mode: bool = False,
        cache_key: Optional[str] = None,
        cache_ttl: Optional[int] = None,
    ) -> AIResponse:
        """
        Generate content with caching, retry and usage logging.

        Args:
            prompt: Prompt text
            feature: Feature label for usage accounting
            user_id: Acting user for usage accounting
            role: Acting role for usage accounting
            tier: Model tier ("flash" or "pro")
            cache_key: Cache the response under this key when given

        Returns:
            AIResponse with output text and token counts

        Raises:
            CollaboratorError: When every attempt fails
        """
        full_cache_key = f"ai:{cache_key}" if cache_key else None
        if full_cache_key and self.cache is not None:
            cached = await self.cache.get(full_cache_key)
            if cached:
                return AIResponse(**{**cached, "cached": True})

        result = await self._call_provider(
            prompt,
            system=system,
            tier=tier,
            temperature=temperature,
            max_output_tokens=max_output_tokens,
            json_mode=json_mode,
        )
        cost = self._cost(tier, result)
        response = AIResponse(
            output=result.text,
            model=result.model,
            tokens={
                "input": result.input_tokens,
                "output": result.output_tokens,
                "total": result.input_tokens + result.output_tokens,
            },
            cost_usd=cost,
        )
        logger.info(
            f"🤖 AI {feature}: model={result.model} tokens={response.tokens['total']} cost=${cost:.6f}"
        )

        await self._log_usage(result, cost, feature, user_id, role)

        if full_cache_key and self.cache is not None:
            await self.cache.set(
                full_cache_key,
                asdict(response),
                cache_ttl or self.settings.AI_CACHE_TTL,
            )
        return response

    async def invalidate(self, cache_key: Optional[str]) -> None:
        """Drop a cached response so the next call regenerates it."""
        if cache_key and self.cache is not None:
            await self.cache.delete(f"ai:{cache_key}")

    async def generate_structured_json(self, prompt: str, **kwargs) -> Dict[str, Any]:
        """Generate and parse a JSON object; malformed output raises AIResponseFormatError."""
        response = await self.generate_content(prompt, json_mode=True, **kwargs)
        try:
            return parse_json_response(response.output)
        except AIResponseFormatError:
            await self.invalidate(kwargs.get("cache_key"))
            raise
