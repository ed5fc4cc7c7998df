import asyncio
import json
import logging
import random
import re
import weakref
from typing import Any

import httpx
from openai import APIConnectionError, APIStatusError, APITimeoutError, AsyncOpenAI, RateLimitError

from nollyai.core.settings import settings

logger = logging.getLogger(__name__)


class LLMDisabledError(RuntimeError):
    """No usable model account: missing key, or the provider refused payment."""


RETRYABLE_STATUSES = frozenset({408, 409, 425, 429, 500, 502, 503, 504})
TRANSIENT_ERRORS = (APIConnectionError, APITimeoutError, RateLimitError)
MAX_BACKOFF_S = 15.0

# One semaphore per event loop: the worker and TestClient each run their own
_SEMAPHORES: "weakref.WeakKeyDictionary[asyncio.AbstractEventLoop, asyncio.Semaphore]" = weakref.WeakKeyDictionary()

_FENCE_RE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL | re.IGNORECASE)


def _semaphore() -> asyncio.Semaphore:
    loop = asyncio.get_running_loop()
    sem = _SEMAPHORES.get(loop)
    if sem is None:
        sem = asyncio.Semaphore(max(1, settings.llm_concurrency))
        _SEMAPHORES[loop] = sem
    return sem


def _backoff_s(attempt: int) -> float:
    delay = settings.llm_retry_base_s * (2 ** (attempt - 1)) + random.random() * 0.25
    return min(MAX_BACKOFF_S, delay)


def extract_json(text: str) -> Any | None:
    """Parse a JSON object out of a model reply, tolerating markdown fences."""
    raw = (text or "").strip()
    if not raw:
        return None
    fenced = _FENCE_RE.search(raw)
    if fenced:
        raw = fenced.group(1).strip()
    try:
        return json.loads(raw)
    except ValueError:
        start = raw.find("{")
        end = raw.rfind("}")
        if start != -1 and end > start:
            try:
                return json.loads(raw[start : end + 1])
            except ValueError:
                return None
    return None


class OpenAICompatibleLLM:
    """Chat-completions client for OpenAI or any endpoint speaking its API."""

    def __init__(
        self,
        api_key: str,
        base_url: str | None,
        model: str,
        temperature: float,
        timeout_s: float = 60.0,
    ) -> None:
        kwargs: dict[str, Any] = {
            "api_key": api_key,
            "http_client": httpx.AsyncClient(timeout=httpx.Timeout(timeout_s)),
        }
        if base_url:
            kwargs["base_url"] = base_url
        self._client = AsyncOpenAI(**kwargs)
        self._model = model
        self._temperature = temperature

    @property
    def model(self) -> str:
        return self._model

    async def aclose(self) -> None:
        await self._client.close()

    async def chat_completion(
        self,
        *,
        messages: list[dict[str, Any]],
        purpose: str = "",
        json_mode: bool = False,
        max_tokens: int | None = None,
    ) -> tuple[str, dict[str, int | None]]:
        """Return the reply text and token usage, retrying transient failures."""
        request: dict[str, Any] = {
            "model": self._model,
            "messages": messages,
            "temperature": self._temperature,
        }
        if max_tokens:
            request["max_tokens"] = int(max_tokens)
        if json_mode:
            request["response_format"] = {"type": "json_object"}

        attempts = max(1, settings.llm_max_retries)
        attempt = 1
        async with _semaphore():
            while True:
                last_attempt = attempt >= attempts
                try:
                    response = await self._client.chat.completions.create(**request)
                except APIStatusError as e:
                    if e.status_code == 402:
                        raise LLMDisabledError("AI credits depleted on the model provider account") from e
                    if e.status_code == 400 and "response_format" in request and "response_format" in str(e).lower():
                        # Some compatible endpoints reject JSON mode; the prompt still asks for JSON.
                        # Not a failed attempt: the same attempt goes again without it
                        request.pop("response_format")
                        continue
                    if e.status_code not in RETRYABLE_STATUSES or last_attempt:
                        raise
                    logger.warning("llm %s: HTTP %s, retrying (attempt %s)", purpose or "request", e.status_code, attempt)
                except TRANSIENT_ERRORS as e:
                    if last_attempt:
                        raise
                    logger.warning("llm %s: %s, retrying (attempt %s)", purpose or "request", type(e).__name__, attempt)
                else:
                    return self._unpack(response, purpose, len(messages))
                await asyncio.sleep(_backoff_s(attempt))
                attempt += 1

    def _unpack(self, response: Any, purpose: str, message_count: int) -> tuple[str, dict[str, int | None]]:
        usage = getattr(response, "usage", None)
        usage_out = {
            "prompt_tokens": getattr(usage, "prompt_tokens", None),
            "completion_tokens": getattr(usage, "completion_tokens", None),
            "total_tokens": getattr(usage, "total_tokens", None),
        }
        logger.info(
            "llm.request_done model=%s purpose=%s messages=%s total_tokens=%s",
            self._model,
            purpose,
            message_count,
            usage_out["total_tokens"],
        )
        choices = getattr(response, "choices", None) or []
        content = choices[0].message.content if choices else None
        if not content:
            raise RuntimeError("No content returned from the model")
        return content, usage_out


def get_llm_client() -> OpenAICompatibleLLM:
    if not settings.llm_api_key:
        raise LLMDisabledError("LLM is not configured. Set LLM_API_KEY (or OPENAI_API_KEY).")
    return OpenAICompatibleLLM(
        api_key=settings.llm_api_key,
        base_url=settings.llm_base_url,
        model=settings.llm_model,
        temperature=settings.llm_temperature,
    )
