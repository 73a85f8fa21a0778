"""
Language-model providers and the fallback cascade.

Every provider speaks the OpenAI chat-completions protocol (OpenAI, OpenRouter,
a local LM Studio server). A cascade walks an ordered list of
(provider, model) candidates: rate-limited calls are retried with exponential
backoff, anything else falls through to the next candidate.
"""

import time
import logging
from typing import Any, Callable, Dict, List, Optional, Tuple

import openai
from tenacity import Retrying, retry_if_exception, stop_after_attempt, wait_exponential

from . import config
from .errors import ProviderExhausted
from .schemas import AgentMessage, ToolCall

logger = logging.getLogger(__name__)

# Short names accepted in block config, mapped to OpenRouter model ids
MODEL_ALIASES = {
    "gpt-4o-mini": "openai/gpt-4o-mini",
    "gpt-4o": "openai/gpt-4o",
    "gemini-2.0-flash-exp": "google/gemini-2.0-flash-exp:free",
}


def is_rate_limited(exc: BaseException) -> bool:
    if isinstance(exc, openai.RateLimitError):
        return True
    return getattr(exc, "status_code", None) == 429


class OpenAICompatibleProvider:
    def __init__(self, name: str, base_url: str, api_key: str, timeout: Optional[float] = None):
        self.name = name
        self.base_url = base_url
        self.api_key = api_key
        self.timeout = timeout or config.LLM_TIMEOUT

    @property
    def available(self) -> bool:
        return bool(self.api_key)

    def client(self) -> openai.OpenAI:
        # Retries are handled by the cascade, not the SDK
        return openai.OpenAI(base_url=self.base_url, api_key=self.api_key, timeout=self.timeout, max_retries=0)

    def complete(self, model: str, messages: List[AgentMessage], tools: Optional[List[Dict[str, Any]]] = None, **options) -> AgentMessage:
        request: Dict[str, Any] = {
            "model": model,
            "messages": [message.to_openai() for message in messages],
        }
        if tools:
            request["tools"] = tools
            request["tool_choice"] = "auto"
        request.update(options)

        logger.debug(f"Calling {self.name}:{model} ({len(messages)} messages, {len(tools or [])} tools)")
        response = self.client().chat.completions.create(**request)
        if not response.choices:
            raise ValueError("Invalid LLM response: no choices")

        message = response.choices[0].message
        tool_calls = [
            ToolCall(id=call.id, name=call.function.name, arguments=call.function.arguments or "{}")
            for call in (message.tool_calls or [])
        ]
        return AgentMessage(role="assistant", content=message.content or "", tool_calls=tool_calls or None)


class ProviderCascade:
    def __init__(
        self,
        candidates: List[Tuple[Any, str]],
        rate_limit_attempts: Optional[int] = None,
        backoff_base: Optional[float] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.candidates = candidates
        self.rate_limit_attempts = rate_limit_attempts or config.AGENT_RATE_LIMIT_ATTEMPTS
        self.backoff_base = config.AGENT_BACKOFF_BASE if backoff_base is None else backoff_base
        self.sleep = sleep
        self.last_model: Optional[str] = None

    def _call(self, provider, model: str, messages, tools, options) -> AgentMessage:
        retrying = Retrying(
            stop=stop_after_attempt(self.rate_limit_attempts),
            wait=wait_exponential(multiplier=self.backoff_base),
            retry=retry_if_exception(is_rate_limited),
            sleep=self.sleep,
            before_sleep=lambda state: logger.warning(
                f"{provider.name}:{model} rate limited (attempt {state.attempt_number}), backing off"
            ),
            reraise=True,
        )
        return retrying(provider.complete, model, messages, tools, **options)

    def complete(self, messages: List[AgentMessage], tools: Optional[List[Dict[str, Any]]] = None, **options) -> AgentMessage:
        failures = []
        for provider, model in self.candidates:
            label = f"{provider.name}:{model}"
            try:
                reply = self._call(provider, model, messages, tools, options)
            except Exception as e:
                logger.warning(f"Model call to {label} failed: {e}")
                failures.append(f"{label}: {e}")
                continue
            self.last_model = label
            return reply

        raise ProviderExhausted(failures)


class ProviderRegistry:
    def __init__(self, providers: Optional[Dict[str, Any]] = None, default_cascade: Optional[List[Tuple[str, str]]] = None):
        self.providers: Dict[str, Any] = dict(providers or {})
        self.default_cascade = list(default_cascade or [])

    @classmethod
    def from_config(cls) -> "ProviderRegistry":
        return cls(
            providers={
                "openai": OpenAICompatibleProvider("openai", config.OPENAI_BASE_URL, config.OPENAI_API_KEY),
                "openrouter": OpenAICompatibleProvider("openrouter", config.OPENROUTER_BASE_URL, config.OPENROUTER_API_KEY),
                "local": OpenAICompatibleProvider("local", config.LLM_BASE_URL, config.LLM_API_KEY),
            },
            default_cascade=config.parse_cascade(config.MODEL_CASCADE),
        )

    def register(self, provider):
        self.providers[provider.name] = provider

    def resolve_model(self, model: str) -> Tuple[str, str]:
        """Map a block's model setting to a (provider, model) pair."""
        provider, sep, name = model.partition(":")
        if sep and provider in self.providers:
            return provider, name
        if model in MODEL_ALIASES and "openrouter" in self.providers:
            return "openrouter", MODEL_ALIASES[model]
        if self.default_cascade:
            return self.default_cascade[0][0], model
        return next(iter(self.providers)), model

    def cascade(self, model: Optional[str] = None, **kwargs) -> ProviderCascade:
        """The block's own model first, then the configured fallbacks."""
        pairs: List[Tuple[str, str]] = []
        if model:
            pairs.append(self.resolve_model(str(model)))
        pairs.extend(self.default_cascade)

        candidates = []
        seen = set()
        for provider_name, model_name in pairs:
            provider = self.providers.get(provider_name)
            if provider is None or (provider_name, model_name) in seen:
                continue
            if not getattr(provider, "available", True):
                logger.debug(f"Skipping provider {provider_name}: not configured")
                continue
            seen.add((provider_name, model_name))
            candidates.append((provider, model_name))

        return ProviderCascade(candidates, **kwargs)
