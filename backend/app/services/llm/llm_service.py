"""
LLM Service - LiteLLM wrapper used for merge assessment.

Walks the preset's model chain (primary, then fallbacks) and retries each
model with exponential backoff. Context-window errors are not retryable and
stop the chain.
"""
import logging
import os
import random
import re
import time
from typing import Any, Dict, List, Optional

import litellm
from litellm import completion
from litellm.exceptions import (
    APIConnectionError,
    ContextWindowExceededError,
    RateLimitError,
)

from ...config import settings
from .config import (
    PROVIDER_ENV_VARS,
    ModelPreset,
    get_fallback_chain,
    get_model_params,
    get_preset_for_use_case,
)

logger = logging.getLogger(__name__)

# Unsupported params (e.g. response_format on some providers) are dropped, not rejected
litellm.drop_params = True

# (pattern, divisor to seconds)
_RETRY_AFTER_PATTERNS = (
    (re.compile(r"try again in (\d+(?:\.\d+)?)\s*(?:s\b|sec)"), 1),
    (re.compile(r"retry after (\d+(?:\.\d+)?)\s*ms"), 1000),
    (re.compile(r"retry after (\d+(?:\.\d+)?)\s*(?:s\b|sec)"), 1),
)


class LLMError(Exception):
    """No model in the chain produced a response."""
    pass


class LLMRateLimitError(LLMError):
    """Provider kept rate limiting after every retry."""

    def __init__(self, message: str, retry_after: Optional[float] = None):
        super().__init__(message)
        self.retry_after = retry_after


class LLMContextWindowError(LLMError):
    """Prompt does not fit the model's context window."""
    pass


def _provider_keys() -> Dict[str, str]:
    return {
        "openrouter": settings.openrouter_api_key,
        "openai": settings.openai_api_key,
    }


def _describe_failure(error: Exception) -> str:
    if isinstance(error, RateLimitError):
        return "Rate limit"
    if isinstance(error, APIConnectionError):
        return "Connection error"
    return "Unexpected error"


class LLMService:
    """
    Blocking chat completions with fallbacks and retries.

    Usage:
        llm = LLMService(use_case="merge_assessment")
        response = llm.completion(messages=[...], response_format={"type": "json_object"})
        text = LLMService.extract_content(response)
    """

    def __init__(
        self,
        use_case: str = "merge_assessment",
        preset: Optional[ModelPreset] = None,
    ):
        self.preset = preset or get_preset_for_use_case(use_case)
        self._export_provider_keys()

    @property
    def model_id(self) -> str:
        return self.preset.primary.model_id

    def _export_provider_keys(self) -> None:
        """LiteLLM reads provider keys from the environment."""
        configured = _provider_keys()
        for provider, env_var in PROVIDER_ENV_VARS.items():
            if configured.get(provider):
                os.environ[env_var] = configured[provider]

    @staticmethod
    def provider_configured(model_id: str) -> bool:
        """Known provider prefixes need their key; other models are assumed reachable."""
        provider = model_id.split("/", 1)[0]
        if provider not in PROVIDER_ENV_VARS:
            return True
        return bool(_provider_keys().get(provider))

    def model_chain(self, model: Optional[str] = None, allow_fallbacks: bool = True) -> List[str]:
        """
        Models to try, in order, without repeats.

        An explicit ``model`` is always tried first. Preset models whose
        provider has no API key are left out.
        """
        if not allow_fallbacks:
            return [model or self.model_id]
        chain = [model] if model else []
        for candidate in get_fallback_chain(self.preset):
            if candidate not in chain and self.provider_configured(candidate):
                chain.append(candidate)
        return chain

    def completion(
        self,
        messages: List[Dict[str, Any]],
        model: Optional[str] = None,
        allow_fallbacks: bool = True,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        response_format: Optional[Dict] = None,
        num_retries: Optional[int] = None,
        **kwargs
    ) -> Any:
        """
        Run a chat completion, falling back through the model chain.

        Args:
            messages: Chat messages (role/content dicts)
            model: Try this model first instead of the preset primary
            temperature: Override the preset temperature
            max_tokens: Override the preset max tokens
            response_format: e.g. {"type": "json_object"}
            num_retries: Retries per model (defaults to settings.llm_num_retries)

        Returns:
            LiteLLM ModelResponse

        Raises:
            LLMContextWindowError: prompt does not fit the model
            LLMError: every model in the chain failed
        """
        overrides = {}
        if temperature is not None:
            overrides["temperature"] = temperature
        if max_tokens is not None:
            overrides["max_tokens"] = max_tokens
        params = get_model_params(self.preset.primary, **overrides)
        params["messages"] = messages
        if response_format:
            params["response_format"] = response_format
        params.update(kwargs)

        retries = settings.llm_num_retries if num_retries is None else num_retries
        last_error: Optional[LLMError] = None

        chain = self.model_chain(model, allow_fallbacks)
        if not chain:
            raise LLMError("No model in the chain has a configured provider API key")

        for model_id in chain:
            try:
                return self._call_with_retry({**params, "model": model_id}, retries)
            except LLMContextWindowError:
                raise
            except LLMError as e:
                logger.warning("Model %s failed: %s", model_id, e)
                last_error = e

        raise LLMError(f"All models failed. Last error: {last_error}")

    def _call_with_retry(
        self,
        params: Dict,
        num_retries: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 60.0,
    ) -> Any:
        """Call one model, backing off between failed attempts."""
        model_id = params["model"]
        for attempt in range(num_retries + 1):
            try:
                return completion(**params)
            except ContextWindowExceededError as e:
                raise LLMContextWindowError(str(e)) from e
            except Exception as e:
                failure = _describe_failure(e)
                rate_limited = isinstance(e, RateLimitError)
                if attempt >= num_retries:
                    if rate_limited:
                        raise LLMRateLimitError(
                            f"Rate limit exceeded after {num_retries} retries: {e}",
                            retry_after=self._extract_retry_after(e),
                        ) from e
                    raise LLMError(f"{failure} after {num_retries} retries: {e}") from e

                if rate_limited:
                    delay = self._calculate_delay(attempt, base_delay, max_delay, e)
                else:
                    delay = self._calculate_delay(attempt, base_delay, max_delay / 2)
                logger.warning(
                    "%s from %s (attempt %d/%d); retrying in %.1fs",
                    failure,
                    model_id,
                    attempt + 1,
                    num_retries + 1,
                    delay,
                )
                time.sleep(delay)

        raise LLMError("Retry loop exhausted")

    def _extract_retry_after(self, error: Exception) -> Optional[float]:
        """Server-suggested wait in seconds, parsed from the provider message."""
        text = str(error).lower()
        for pattern, divisor in _RETRY_AFTER_PATTERNS:
            match = pattern.search(text)
            if match:
                return float(match.group(1)) / divisor
        return None

    def _calculate_delay(
        self,
        attempt: int,
        base_delay: float,
        max_delay: float,
        error: Optional[Exception] = None,
    ) -> float:
        """Capped exponential backoff, raised to the server hint when one fits, plus up to 10% jitter."""
        delay = min(base_delay * (2 ** attempt), max_delay)
        hinted = self._extract_retry_after(error) if error is not None else None
        if hinted is not None and hinted <= max_delay:
            delay = max(delay, hinted)
        return delay * (1 + 0.1 * random.random())

    @staticmethod
    def extract_content(response: Any) -> str:
        """Text of the first choice, or "" when the provider returned none."""
        choices = getattr(response, "choices", None)
        if not choices:
            return ""
        return choices[0].message.content or ""
