"""AI services package"""
from .base import AIProvider, ProviderResult
from .factory import AIFactory, get_ai_provider
from .service import AIResponse, AIService

__all__ = ["AIFactory", "get_ai_provider", "AIProvider", "ProviderResult", "AIResponse", "AIService"]
