"""
AI Provider Factory
Resolves the configured provider, falling back when the primary is unusable
"""
import logging
from typing import Dict, Optional, Type

from app.config import settings
from .base import AIProvider
from .gemini_service import GeminiService
from .openai_service import OpenAIService
from .openrouter_service import OpenRouterService

logger = logging.getLogger(__name__)

API_KEY_SETTINGS = {
    "openai": "OPENAI_API_KEY",
    "gemini": "GEMINI_API_KEY",
    "openrouter": "OPENROUTER_API_KEY",
}


class AIFactory:
    """Factory to get AI provider based on configuration"""

    _providers: Dict[str, Type[AIProvider]] = {
        "openai": OpenAIService,
        "gemini": GeminiService,
        "openrouter": OpenRouterService,
    }

    _instances: Dict[str, AIProvider] = {}  # Singleton instances

    @classmethod
    def get_provider(cls, provider_name: Optional[str] = None) -> AIProvider:
        """
        Get AI provider instance

        Args:
            provider_name: 'openai', 'gemini' or 'openrouter' (None = settings.AI_PROVIDER)

        Raises:
            ValueError: If provider not found or API key missing
        """
        provider_name = provider_name or settings.AI_PROVIDER

        if provider_name in cls._instances:
            return cls._instances[provider_name]

        provider_class = cls._providers.get(provider_name)
        if not provider_class:
            available = ", ".join(cls._providers)
            raise ValueError(f"Unknown AI provider: {provider_name}. Available providers: {available}")

        key_name = API_KEY_SETTINGS.get(provider_name)
        if key_name and not getattr(settings, key_name, ""):
            raise ValueError(f"{provider_name} requires {key_name} to be set in environment variables")

        instance = provider_class()
        cls._instances[provider_name] = instance
        logger.info(f"Initialized AI provider: {provider_name}")
        return instance

    @classmethod
    def get_provider_with_fallback(cls, primary: Optional[str] = None) -> AIProvider:
        """Get the primary provider, or the configured fallback when it cannot be built."""
        primary = primary or settings.AI_PROVIDER
        fallback = settings.AI_FALLBACK_PROVIDER

        try:
            return cls.get_provider(primary)
        except ValueError as e:
            if not fallback or fallback == primary:
                raise
            logger.warning(f"Primary provider {primary} unavailable: {e}, using fallback {fallback}")
            return cls.get_provider(fallback)


def get_ai_provider(provider_name: Optional[str] = None) -> AIProvider:
    """Get AI provider instance (convenience function)"""
    return AIFactory.get_provider_with_fallback(provider_name)
