"""Client for the external text-generation service used by the habit-map pipeline."""
from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Optional, Protocol

import openai

from habitbingo.core.config import settings
from habitbingo.core.errors import NetworkError, ParseError, ServerError
from habitbingo.observability.metrics import log_metric
from habitbingo.observability.tracing import trace

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OracleRequest:
    system_instruction: str
    user_prompt: str
    response_format_hint: str = "json"
    max_output_tokens: int = 2000


class Oracle(Protocol):
    async def complete(self, request: OracleRequest) -> str:
        """Return raw text that is expected to parse as JSON."""


class OpenAIOracle:
    """
    Oracle backed by OpenAI chat completions.

    Calls are bounded by ``timeout`` seconds. Transport failures (connection
    loss, timeouts) are retried ``network_retries`` times; status errors are
    raised immediately as ServerError.
    """

    def __init__(
        self,
        api_key: str,
        *,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
        network_retries: Optional[int] = None,
        client: Any = None,
    ):
        self.model = model or settings.openai_model
        self.timeout = timeout if timeout is not None else settings.oracle_timeout_seconds
        self.network_retries = network_retries if network_retries is not None else settings.oracle_network_retries
        self._client = client or openai.AsyncOpenAI(api_key=api_key, max_retries=0, timeout=self.timeout)

    async def complete(self, request: OracleRequest) -> str:
        attempts = 1 + max(0, self.network_retries)
        with trace("oracle.complete", metadata={"model": self.model}):
            for attempt in range(1, attempts + 1):
                try:
                    text = await asyncio.wait_for(self._create(request), timeout=self.timeout)
                except (openai.APIConnectionError, openai.APITimeoutError, asyncio.TimeoutError) as exc:
                    log_metric("oracle_network_error", 1, {"attempt": attempt})
                    if attempt >= attempts:
                        raise NetworkError(f"Generation service unreachable: {exc}") from exc
                    logger.warning("Oracle transport failure (attempt %s/%s): %s", attempt, attempts, exc)
                    continue
                except openai.APIStatusError as exc:
                    log_metric("oracle_server_error", 1, {"status_code": exc.status_code})
                    raise ServerError(_status_message(exc), status_code=exc.status_code) from exc
                return _unwrap_text(text)
        raise NetworkError("Generation service unreachable")  # pragma: no cover - loop always returns or raises

    async def _create(self, request: OracleRequest) -> Optional[str]:
        kwargs: dict[str, Any] = {
            "model": self.model,
            "max_tokens": request.max_output_tokens,
            "messages": [
                {"role": "system", "content": request.system_instruction},
                {"role": "user", "content": request.user_prompt},
            ],
        }
        if request.response_format_hint == "json":
            kwargs["response_format"] = {"type": "json_object"}
        completion = await self._client.chat.completions.create(**kwargs)
        if not completion.choices:
            return None
        return completion.choices[0].message.content


def build_oracle(api_key: Optional[str] = None) -> Optional[OpenAIOracle]:
    """Return an OpenAI-backed oracle, or None when no API key is configured."""
    api_key = api_key or settings.openai_api_key
    if not api_key:
        return None
    return OpenAIOracle(api_key)


def parse_oracle_json(text: Optional[str]) -> Any:
    """
    Parse oracle text as JSON.

    An ``{"error": {...}}`` envelope becomes ServerError; empty or malformed
    text becomes ParseError.
    """
    if text is None or not text.strip():
        raise ParseError("Empty response from generation service", ["response was empty"])
    cleaned = _strip_code_fence(text.strip())
    try:
        payload = json.loads(cleaned)
    except json.JSONDecodeError as exc:
        raise ParseError(f"Response is not valid JSON: {exc.msg}", [f"invalid JSON at position {exc.pos}: {exc.msg}"])
    if isinstance(payload, dict) and set(payload) == {"error"}:
        error = payload["error"]
        message = error.get("message") if isinstance(error, dict) else str(error)
        raise ServerError(message or "Generation service reported an error")
    return payload


def _unwrap_text(text: Optional[str]) -> str:
    if text is None or not text.strip():
        raise ParseError("Empty response from generation service", ["response was empty"])
    return text


def _strip_code_fence(text: str) -> str:
    if not text.startswith("```"):
        return text
    lines = text.splitlines()[1:]
    if lines and lines[-1].strip().startswith("```"):
        lines = lines[:-1]
    return "\n".join(lines)


def _status_message(exc: "openai.APIStatusError") -> str:
    body = getattr(exc, "body", None)
    if isinstance(body, dict):
        error = body.get("error", body)
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
    return f"Generation service returned status {exc.status_code}"
