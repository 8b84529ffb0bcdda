"""OpenRouter chat-completions client with streaming, rate limiting and retries."""

import asyncio
import json
import os
import time
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any

import httpx
from limits import parse
from limits.storage import MemoryStorage
from limits.strategies import MovingWindowRateLimiter

from crm_assistant.models.llm import ContentDelta, ToolCallDelta, UpstreamError, UpstreamEvent, UpstreamMessage
from crm_assistant.models.messages import DEFAULT_CONVERSATION_TITLE
from crm_assistant.utils.logging import get_logger
from crm_assistant.utils.tokens import TokenEstimator, get_token_estimator

logger = get_logger(__name__)

SSE_DATA_PREFIX = "data:"
SSE_DONE = "[DONE]"


@dataclass
class OpenRouterConfig:
    """Configuration for the OpenRouter client."""

    api_key: str | None = field(default_factory=lambda: os.getenv("OPENROUTER_API_KEY"))
    model: str = field(default_factory=lambda: os.getenv("OPENROUTER_MODEL", "anthropic/claude-sonnet-4"))
    base_url: str = field(default_factory=lambda: os.getenv("OPENROUTER_BASE_URL", "https://openrouter.ai/api/v1"))
    referer: str = field(default_factory=lambda: os.getenv("OPENROUTER_REFERER", "http://localhost:8000"))
    timeout: float = 60.0
    max_retries: int = 3
    retry_delay: float = 1.0
    max_retry_after: float = 120.0
    title_max_tokens: int = 20

    requests_per_minute: int = 50
    tokens_per_minute: int = 400_000


class UpstreamRateLimiter:
    """Moving-window rate limiter for upstream requests using the limits library."""

    def __init__(self, requests_per_minute: int = 50, tokens_per_minute: int = 400_000):
        """Initialize rate limiter.

        Args:
            requests_per_minute: Maximum requests per minute
            tokens_per_minute: Maximum estimated prompt tokens per minute
        """
        self.storage = MemoryStorage()
        self.limiter = MovingWindowRateLimiter(self.storage)

        self.request_limit = parse(f"{requests_per_minute}/minute")
        self.token_limit = parse(f"{tokens_per_minute}/minute")

    async def _wait_for_window(self, limit, identifier: str, label: str) -> None:
        window_stats = self.limiter.get_window_stats(limit, identifier)
        if window_stats:
            wait_time = max(0.0, window_stats.reset_time - time.time())
            if wait_time > 0:
                logger.warning(f"{label} rate limit exceeded for {identifier}, waiting {wait_time:.2f}s")
                await asyncio.sleep(wait_time)

    async def check_rate_limit(self, estimated_tokens: int, identifier: str = "openrouter") -> None:
        """Wait until the request fits within the request and token windows."""
        logger.debug(f"Checking rate limit for {estimated_tokens} tokens, identifier: {identifier}")

        if not self.limiter.hit(self.request_limit, identifier):
            await self._wait_for_window(self.request_limit, identifier, "Request")

        token_identifier = f"{identifier}_tokens"
        if not self.limiter.hit(self.token_limit, token_identifier, cost=max(1, estimated_tokens)):
            await self._wait_for_window(self.token_limit, token_identifier, "Token")


def parse_sse_data(data: str) -> list[UpstreamEvent]:
    """Translate one chat-completions stream frame into delta events.

    Unparsable frames and frames without a delta yield nothing. An in-band
    ``error`` object yields a single UpstreamError.
    """
    try:
        parsed = json.loads(data)
    except ValueError:
        logger.warning(f"Skipping malformed stream frame: {data[:200]!r}")
        return []
    if not isinstance(parsed, dict):
        return []

    if parsed.get("error"):
        error = parsed["error"]
        message = error.get("message") if isinstance(error, dict) else str(error)
        return [UpstreamError(message=f"OpenRouter error: {message}")]

    choices = parsed.get("choices") or []
    if not choices or not isinstance(choices[0], dict):
        return []
    delta = choices[0].get("delta")
    if not isinstance(delta, dict):
        return []

    events: list[UpstreamEvent] = []
    if delta.get("content"):
        events.append(ContentDelta(content=delta["content"]))

    for tool_call in delta.get("tool_calls") or []:
        if not isinstance(tool_call, dict):
            continue
        function = tool_call.get("function") or {}
        events.append(
            ToolCallDelta(
                index=tool_call.get("index") or 0,
                id=tool_call.get("id") or None,
                name=function.get("name") or None,
                arguments=function.get("arguments") or "",
            )
        )
    return events


class OpenRouterClient:
    """Low-level OpenRouter API client exposing the completion stream as delta events."""

    def __init__(
        self,
        config: OpenRouterConfig | None = None,
        http_client: httpx.AsyncClient | None = None,
        rate_limiter: UpstreamRateLimiter | None = None,
        token_estimator: TokenEstimator | None = None,
    ):
        """Initialize OpenRouter client.

        Args:
            config: Client configuration (defaults read from environment)
            http_client: Optional shared httpx client
            rate_limiter: Optional rate limiter (defaults from config)
            token_estimator: Optional token estimator for rate limiting
        """
        self.config = config or OpenRouterConfig()
        self.http = http_client or httpx.AsyncClient(timeout=self.config.timeout)
        self.rate_limiter = rate_limiter or UpstreamRateLimiter(
            self.config.requests_per_minute, self.config.tokens_per_minute
        )
        self.token_estimator = token_estimator or get_token_estimator()

    @property
    def is_configured(self) -> bool:
        """Whether an API key is available."""
        return bool(self.config.api_key)

    @property
    def default_model(self) -> str:
        return self.config.model

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.config.api_key}",
            "Content-Type": "application/json",
            "HTTP-Referer": self.config.referer,
        }

    def _retry_delay(self, response: httpx.Response | None, attempt: int) -> float | None:
        """Seconds to wait before retrying, or None if the failure is not retryable."""
        if response is None:
            return self.config.retry_delay * (2**attempt)

        if response.status_code == 429:
            try:
                retry_after = float(response.headers.get("retry-after", self.config.retry_delay * (2**attempt)))
            except ValueError:
                retry_after = self.config.retry_delay * (2**attempt)
            return retry_after if retry_after < self.config.max_retry_after else None

        if response.status_code >= 500:
            return self.config.retry_delay * (2**attempt)

        return None

    async def _open_stream(self, body: dict[str, Any]) -> httpx.Response | UpstreamError:
        """Send the streaming request, retrying transport failures, 429 and 5xx."""
        url = f"{self.config.base_url}/chat/completions"

        for attempt in range(self.config.max_retries):
            last_attempt = attempt == self.config.max_retries - 1
            try:
                request = self.http.build_request("POST", url, json=body, headers=self._headers())
                response = await self.http.send(request, stream=True)
            except httpx.HTTPError as e:
                logger.error(f"OpenRouter request failed (attempt {attempt + 1}): {e}")
                delay = self._retry_delay(None, attempt)
                if not last_attempt and delay is not None:
                    await asyncio.sleep(delay)
                    continue
                return UpstreamError(message=f"OpenRouter request failed: {e}")

            if response.status_code < 400:
                return response

            error_body = (await response.aread()).decode(errors="replace")[:500]
            await response.aclose()
            logger.error(f"OpenRouter returned {response.status_code} (attempt {attempt + 1}): {error_body}")

            delay = self._retry_delay(response, attempt)
            if not last_attempt and delay is not None:
                await asyncio.sleep(delay)
                continue
            return UpstreamError(message=f"OpenRouter error: {response.status_code}", status_code=response.status_code)

        return UpstreamError(message=f"Failed to complete request after {self.config.max_retries} attempts")

    async def stream_chat(
        self,
        messages: list[UpstreamMessage],
        tools: list[dict[str, Any]],
        model: str | None = None,
        identifier: str = "openrouter",
    ) -> AsyncIterator[UpstreamEvent]:
        """Stream a chat completion as delta events.

        Never raises for transport problems: a failure is reported as one final
        UpstreamError event.

        Args:
            messages: Transcript, system message first
            tools: Function-tool definitions
            model: Model identifier (defaults to the configured model)
            identifier: Rate limiting key, typically the workspace id
        """
        body = {
            "model": model or self.config.model,
            "messages": [m.to_payload() for m in messages],
            "tools": tools,
            "stream": True,
        }

        estimated_tokens = self.token_estimator.count(json.dumps(body["messages"]))
        await self.rate_limiter.check_rate_limit(estimated_tokens, identifier)

        logger.debug(f"Opening stream: model={body['model']}, messages={len(messages)}, tools={len(tools)}")
        opened = await self._open_stream(body)
        if isinstance(opened, UpstreamError):
            yield opened
            return

        response = opened
        try:
            async for line in response.aiter_lines():
                line = line.strip()
                if not line.startswith(SSE_DATA_PREFIX):
                    continue
                data = line[len(SSE_DATA_PREFIX) :].strip()
                if data == SSE_DONE:
                    break

                for event in parse_sse_data(data):
                    yield event
                    if isinstance(event, UpstreamError):
                        return
        except httpx.HTTPError as e:
            logger.error(f"OpenRouter stream interrupted: {e}")
            yield UpstreamError(message=f"OpenRouter stream interrupted: {e}")
        finally:
            await response.aclose()

    async def generate_title(self, user_message: str, model: str | None = None) -> str:
        """Generate a short conversation title, falling back to the default title."""
        body = {
            "model": model or self.config.model,
            "messages": [
                {
                    "role": "user",
                    "content": (
                        "Generate a very short title (max 6 words) for a CRM conversation that starts with "
                        f"this message. Return only the title, no quotes or punctuation:\n\n{user_message}"
                    ),
                }
            ],
            "max_tokens": self.config.title_max_tokens,
        }

        try:
            response = await self.http.post(
                f"{self.config.base_url}/chat/completions", json=body, headers=self._headers()
            )
            if response.status_code >= 400:
                logger.warning(f"Title generation failed with status {response.status_code}")
                return DEFAULT_CONVERSATION_TITLE

            title = response.json()["choices"][0]["message"]["content"]
            if not isinstance(title, str) or not title.strip():
                return DEFAULT_CONVERSATION_TITLE
            return title.strip().strip("\"'")
        except Exception as e:
            logger.warning(f"Title generation failed: {e}")
            return DEFAULT_CONVERSATION_TITLE

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        await self.http.aclose()


_openrouter_client: OpenRouterClient | None = None


def get_openrouter_client() -> OpenRouterClient:
    """Get or create OpenRouter client instance."""
    global _openrouter_client
    if _openrouter_client is None:
        _openrouter_client = OpenRouterClient()
    return _openrouter_client
