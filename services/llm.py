"""OpenRouter-backed clients for draft generation and answer-engine queries."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, cast

from openai import OpenAI

from config import AppConfig
from models import GenerationStatus
from services.resilience import CallPacer, ExternalServiceError, ResiliencePolicy

logger = logging.getLogger(__name__)

OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"


class GenerationUnavailableError(ExternalServiceError):
    """Raised when a model call is attempted without a configured credential."""


@dataclass(frozen=True)
class LLMResult:
    """Normalized LLM response payload."""

    model: str
    content: str
    citations: tuple[str, ...]
    raw_response: dict[str, Any]


class OpenRouterClient:
    """OpenRouter client shared by the brief generator and visibility checker.

    All calls go through one ``CallPacer`` so consecutive outbound requests are
    spaced by ``outbound_call_delay_ms`` for the lifetime of the process.
    """

    def __init__(self, config: AppConfig, *, pacer: CallPacer | None = None) -> None:
        self._config = config
        self._pacer = pacer or CallPacer(min_interval_seconds=config.outbound_call_delay_ms / 1000)
        self._client: Any = None
        if config.openrouter_api_key:
            self._client = OpenAI(
                api_key=config.openrouter_api_key,
                base_url=OPENROUTER_BASE_URL,
                timeout=config.outbound_timeout_seconds,
                max_retries=0,
            )
        self._generation_policy = ResiliencePolicy(
            name="openrouter_generation",
            max_attempts=config.max_generation_attempts,
            pacer=self._pacer,
        )
        self._visibility_policy = ResiliencePolicy(
            name="openrouter_visibility",
            max_attempts=1,
            pacer=self._pacer,
        )

    @property
    def pacer(self) -> CallPacer:
        return self._pacer

    def generation_status(self) -> GenerationStatus:
        """Report whether a credential is configured for generation calls."""
        if self._client is None:
            return GenerationStatus.UNAVAILABLE
        return GenerationStatus.AVAILABLE

    def generate_brief(
        self,
        *,
        system_prompt: str,
        user_prompt: str,
        temperature: float = 0.4,
        max_tokens: int = 1500,
    ) -> LLMResult:
        """Request a JSON draft brief from the generation model."""
        return self._chat(
            policy=self._generation_policy,
            model=self._config.generation_model,
            system_prompt=system_prompt,
            user_prompt=user_prompt,
            temperature=temperature,
            max_tokens=max_tokens,
            response_format={"type": "json_object"},
        )

    def ask_answer_engine(
        self,
        *,
        user_prompt: str,
        system_prompt: str | None = None,
        temperature: float = 0.1,
        max_tokens: int = 800,
    ) -> LLMResult:
        """Ask the answer-engine model a visibility query as a consumer would."""
        return self._chat(
            policy=self._visibility_policy,
            model=self._config.visibility_model,
            system_prompt=system_prompt,
            user_prompt=user_prompt,
            temperature=temperature,
            max_tokens=max_tokens,
        )

    def _chat(
        self,
        *,
        policy: ResiliencePolicy,
        model: str,
        system_prompt: str | None,
        user_prompt: str,
        temperature: float,
        max_tokens: int,
        response_format: dict[str, str] | None = None,
    ) -> LLMResult:
        if self._client is None:
            raise GenerationUnavailableError("OPENROUTER_API_KEY is not configured")

        def _operation() -> Any:
            messages: list[dict[str, str]] = []
            if system_prompt:
                messages.append({"role": "system", "content": system_prompt})
            messages.append({"role": "user", "content": user_prompt})

            kwargs: dict[str, Any] = {
                "model": model,
                "messages": cast(Any, messages),
                "temperature": temperature,
                "max_tokens": max_tokens,
            }
            if response_format is not None:
                kwargs["response_format"] = response_format
            return self._client.chat.completions.create(**kwargs)

        response = policy.execute(_operation)
        result = _normalize_response(model=model, response=response)
        if not result.content:
            logger.warning("LLM returned empty content for model=%s", model)
        return result


def _normalize_response(*, model: str, response: Any) -> LLMResult:
    raw_dict = (
        response.model_dump() if hasattr(response, "model_dump") else _coerce_to_dict(response)
    )
    return LLMResult(
        model=model,
        content=_extract_content(response),
        citations=tuple(_extract_citations(raw_dict)),
        raw_response=raw_dict,
    )


def _extract_content(response: Any) -> str:
    choices = getattr(response, "choices", None)
    if not choices:
        return ""
    message = getattr(choices[0], "message", None)
    if message is None:
        return ""
    content = getattr(message, "content", "")
    if content is None:
        return ""
    return content if isinstance(content, str) else str(content)


def _extract_citations(raw: dict[str, Any]) -> list[str]:
    candidates = raw.get("citations")
    if isinstance(candidates, list):
        return [str(item) for item in candidates if isinstance(item, str)]
    return []


def _coerce_to_dict(value: Any) -> dict[str, Any]:
    if isinstance(value, dict):
        return value

    if hasattr(value, "__dict__"):
        return {k: v for k, v in vars(value).items() if not k.startswith("_")}

    try:
        parsed = json.loads(str(value))
    except json.JSONDecodeError:
        return {"raw": str(value)}
    return parsed if isinstance(parsed, dict) else {"raw": parsed}
