"""LiteLLM-backed completion service."""
from .llm_service import LLMContextWindowError, LLMError, LLMRateLimitError, LLMService

__all__ = ["LLMService", "LLMError", "LLMRateLimitError", "LLMContextWindowError"]
