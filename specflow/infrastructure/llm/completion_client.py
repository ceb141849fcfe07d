"""Completion API client - OpenRouter / OpenAI-compatible /chat/completions and /models.

Every request goes through one retry loop:
- HTTP >= 500, 429 and network failures are retried up to max_retries times
  (max_retries + 1 attempts in total).
- 429 waits for Retry-After (seconds or HTTP date) when present; otherwise
  the wait is backoff_base * 2 ** attempt (2s, 4s, 8s with the default base).
- Other client errors fail immediately.
- A JSON body that does not parse raises json.JSONDecodeError unchanged.
"""

import asyncio
import json
import logging
import math
import time
from email.utils import parsedate_to_datetime
from typing import Any, AsyncIterator, Awaitable, Callable

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
)

from specflow.domain.entities.workflow_state import ContextFile
from specflow.domain.errors import CompletionError, ErrorCode, InvalidRequestError
from specflow.domain.ports.config import OpenRouterConfig
from specflow.domain.ports.llm import (
    CompletionMessage,
    CompletionOptions,
    CompletionRequest,
    CompletionResponse,
    ModelInfo,
)
from specflow.domain.services.context_filter import is_image_like

logger = logging.getLogger(__name__)


def parse_retry_after(value: str | None) -> float | None:
    """Seconds to wait from a Retry-After header (delta-seconds or HTTP date)."""
    if not value:
        return None
    value = value.strip()
    try:
        seconds = float(value)
    except ValueError:
        pass
    else:
        # inf and nan fall back to backoff
        return max(seconds, 0.0) if math.isfinite(seconds) else None
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when is None:
        return None
    return max(when.timestamp() - time.time(), 0.0)


def should_retry(exc: BaseException) -> bool:
    """Retry network failures, 5xx and 429. Everything else fails fast."""
    if not isinstance(exc, CompletionError) or isinstance(exc, InvalidRequestError):
        return False
    return exc.status == 0 or exc.status >= 500 or exc.status == 429


class CompletionStream:
    """Handle over a text/event-stream completion response.

    Iterating yields content deltas until the [DONE] sentinel; the
    underlying response is closed when iteration ends or on aclose().
    """

    def __init__(self, response: httpx.Response) -> None:
        self._response = response

    @property
    def response(self) -> httpx.Response:
        return self._response

    async def __aiter__(self) -> AsyncIterator[str]:
        try:
            async for line in self._response.aiter_lines():
                if not line.startswith("data: "):
                    continue
                chunk = line[6:].strip()
                if chunk == "[DONE]":
                    break
                try:
                    data = json.loads(chunk)
                except json.JSONDecodeError:
                    logger.debug("Skipping malformed stream chunk: %s", chunk[:100])
                    continue
                delta = (data.get("choices") or [{}])[0].get("delta", {})
                if content := delta.get("content"):
                    yield content
        finally:
            await self.aclose()

    async def aclose(self) -> None:
        if not self._response.is_closed:
            await self._response.aclose()

    async def __aenter__(self) -> "CompletionStream":
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.aclose()


class CompletionClient:
    """Async client for the completion API with retry, backoff and typed errors."""

    def __init__(
        self,
        config: OpenRouterConfig,
        api_key: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        key = (api_key if api_key is not None else config.api_key).strip()
        if not key:
            raise InvalidRequestError("OpenRouter API key is required", ErrorCode.MISSING_API_KEY)
        self._config = config
        self._api_key = key
        self._base_url = config.base_url.rstrip("/")
        self._transport = transport
        self._sleep = sleep
        self._client: httpx.AsyncClient | None = None

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create persistent async HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=self._config.timeout,
                headers={
                    "Authorization": f"Bearer {self._api_key}",
                    "Content-Type": "application/json",
                },
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "CompletionClient":
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    def _wait(self, retry_state: RetryCallState) -> float:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        if isinstance(exc, CompletionError) and exc.status == 429 and exc.retry_after is not None:
            return exc.retry_after
        return self._config.backoff_base_seconds * 2**retry_state.attempt_number

    async def _request(self, method: str, path: str, body: dict | None = None) -> Any:
        """Send with retries. Returns parsed JSON or a CompletionStream."""
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._config.max_retries + 1),
            wait=self._wait,
            retry=retry_if_exception(should_retry),
            sleep=self._sleep,
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        result: Any = None
        async for attempt in retrying:
            with attempt:
                result = await self._send_once(method, path, body)
        return result

    async def _send_once(self, method: str, path: str, body: dict | None) -> Any:
        client = self._get_client()
        headers = {}
        if method == "POST":
            headers = {"HTTP-Referer": self._config.app_url, "X-Title": self._config.app_title}
        request = client.build_request(method, f"{self._base_url}{path}", json=body, headers=headers)
        try:
            response = await client.send(request, stream=True)
        except httpx.TransportError as exc:
            raise CompletionError(f"Network error: {exc}", status=0) from exc

        if response.status_code >= 400:
            try:
                await response.aread()
            except httpx.TransportError:
                pass
            finally:
                await response.aclose()
            raise self._error_from_response(response)

        content_type = response.headers.get("content-type", "")
        if "text/event-stream" in content_type:
            return CompletionStream(response)

        try:
            await response.aread()
        except httpx.TransportError as exc:
            raise CompletionError(f"Network error: {exc}", status=0) from exc
        finally:
            await response.aclose()
        return response.json()

    def _error_from_response(self, response: httpx.Response) -> CompletionError:
        status = response.status_code
        text = ""
        try:
            text = response.text
        except httpx.ResponseNotRead:
            pass
        logger.error("Completion API error %s: %s", status, text[:500])

        message = f"HTTP {status}: {response.reason_phrase}"
        upstream_code = None
        try:
            data = json.loads(text) if text else {}
        except json.JSONDecodeError:
            data = {}
        error = data.get("error") if isinstance(data, dict) else None
        if isinstance(error, dict):
            message = error.get("message") or message
            upstream_code = error.get("code")

        retry_after = parse_retry_after(response.headers.get("retry-after")) if status == 429 else None
        return CompletionError(
            message,
            status=status,
            upstream_code=upstream_code,
            retry_after=retry_after,
        )

    async def test_connection(self) -> bool:
        """Whether the API key can list models. Never raises."""
        try:
            await self.list_models()
            return True
        except Exception as exc:
            logger.info("Connection test failed: %s", exc)
            return False

    async def list_models(self) -> list[ModelInfo]:
        """GET /models."""
        data = await self._request("GET", "/models")
        if not isinstance(data, dict) or not isinstance(data.get("data"), list):
            raise CompletionError(
                "Invalid response: missing data",
                status=500,
                code=ErrorCode.INTERNAL_ERROR.value,
                retryable=False,
            )
        return [ModelInfo.model_validate(m) for m in data["data"]]

    async def create_completion(self, request: CompletionRequest) -> CompletionResponse | CompletionStream:
        """POST /chat/completions with the full envelope."""
        if not request.model:
            raise InvalidRequestError("Model is required", ErrorCode.MISSING_MODEL)
        if not request.messages:
            raise InvalidRequestError("Messages are required", ErrorCode.MISSING_PROMPTS)
        data = await self._request("POST", "/chat/completions", request.to_body())
        if isinstance(data, CompletionStream):
            return data
        return CompletionResponse.model_validate(data)

    async def generate_completion(
        self,
        model: str,
        system_prompt: str,
        user_prompt: str,
        context_files: list[ContextFile] | None = None,
        options: CompletionOptions | None = None,
    ) -> str:
        """Single system + user completion; returns the first choice's content."""
        if not model:
            raise InvalidRequestError("Model is required", ErrorCode.MISSING_MODEL)
        if not system_prompt or not user_prompt:
            raise InvalidRequestError("System and user prompts are required", ErrorCode.MISSING_PROMPTS)

        request = CompletionRequest(
            model=model,
            messages=[
                CompletionMessage(role="system", content=system_prompt),
                CompletionMessage(role="user", content=embed_context_files(user_prompt, context_files or [])),
            ],
            options=options or CompletionOptions(),
        )
        response = await self.create_completion(request)
        if isinstance(response, CompletionStream):
            return "".join([chunk async for chunk in response])
        return response.content


def embed_context_files(user_prompt: str, files: list[ContextFile]) -> str:
    """Append text context files to the user message. Images are never embedded."""
    sections = [f"### {f.name}\n{f.content}" for f in files if not is_image_like(f) and f.content]
    if not sections:
        return user_prompt
    return user_prompt + "\n\n## Context Files\n\n" + "\n\n".join(sections)
