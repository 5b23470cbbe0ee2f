"""Stream transport — owns the HTTP request and the read loop.

Every chunk that arrives is appended to the raw buffer, and the whole
buffer is pushed through decode -> accumulate -> tidy -> compose before the
caller's ``on_chunk`` callback sees the freshly composed string.
"""

from __future__ import annotations

import asyncio
import codecs
import logging
from collections.abc import AsyncIterator
from typing import Any, Callable

import httpx
import tenacity
from pydantic import BaseModel, ValidationError, field_validator

from voxstream.exceptions import StreamError, StreamHTTPError, StreamRequestError
from voxstream.stream.channels import Snapshot, accumulate, compose, tidy
from voxstream.stream.frames import decode_frames

logger = logging.getLogger(__name__)

_RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}

# Callback types
OnChunk = Callable[[str], None]
OnSnapshot = Callable[[Snapshot], None] | None


class StreamRequest(BaseModel):
    """JSON body sent to the agent service."""

    query: str
    top_k: int = 5
    model_name: str
    stream: bool = True
    user_id: str | None = None
    space_id: str | None = None
    active_file_id: str | None = None
    filter: dict[str, Any] | None = None

    @field_validator("query")
    @classmethod
    def _check_query(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("query is empty")
        # An earlier streamed response pasted back in as a question.
        if 'data: {"type":' in value:
            raise ValueError("query looks like a raw stream response")
        return value

    def to_body(self) -> dict[str, Any]:
        body = self.model_dump(exclude_none=True)
        # user_id and active_file_id are always sent, null when unknown.
        body["user_id"] = self.user_id
        body["active_file_id"] = self.active_file_id
        return body


def render(buffer: str) -> tuple[str, Snapshot]:
    """Turn the raw buffer so far into ``(composed_text, snapshot)``."""
    snapshot = tidy(accumulate(decode_frames(buffer)))
    return compose(snapshot), snapshot


def build_request(query: str, model_name: str, **kwargs: Any) -> StreamRequest:
    """Validate and build a request, raising StreamRequestError on bad input."""
    try:
        return StreamRequest(query=query, model_name=model_name, **kwargs)
    except ValidationError as e:
        raise StreamRequestError(str(e.errors()[0].get("msg", e))) from e


def _is_retryable(exc: BaseException) -> bool:
    """Retry connection failures and 429/5xx; everything else fails at once."""
    if isinstance(exc, StreamHTTPError):
        return exc.status_code in _RETRYABLE_STATUS_CODES
    return isinstance(exc, (httpx.ConnectError, httpx.ConnectTimeout))


async def _anext_or_none(chunks: AsyncIterator[bytes]) -> bytes | None:
    try:
        return await chunks.__anext__()
    except StopAsyncIteration:
        return None


async def _next_chunk(
    chunks: AsyncIterator[bytes], cancel: asyncio.Event | None
) -> bytes | None:
    """Next raw chunk, or None at end of body or once ``cancel`` is set.

    A stalled body does not hold up cancellation: the read is raced
    against the token and dropped if the token wins.
    """
    if cancel is None:
        return await _anext_or_none(chunks)
    if cancel.is_set():
        return None

    reader = asyncio.ensure_future(_anext_or_none(chunks))
    waiter = asyncio.ensure_future(cancel.wait())
    try:
        await asyncio.wait({reader, waiter}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for task in (reader, waiter):
            if not task.done():
                task.cancel()
        await asyncio.gather(reader, waiter, return_exceptions=True)
    if reader.cancelled():
        return None
    return reader.result()


class AgentStreamClient:
    """Async streaming client for the agent service.

    Usage::

        async with AgentStreamClient(api_url) as client:
            final = await client.stream(request, on_chunk=print)
    """

    def __init__(
        self,
        api_url: str,
        timeout: float = 120.0,
        max_retries: int = 3,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._api_url = api_url
        self._max_retries = max_retries
        self._wait = tenacity.wait_exponential(multiplier=1, min=1, max=30)
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout, connect=10.0),
            headers={"Content-Type": "application/json"},
        )

    @property
    def api_url(self) -> str:
        return self._api_url

    async def stream(
        self,
        request: StreamRequest,
        on_chunk: OnChunk,
        on_snapshot: OnSnapshot = None,
        cancel: asyncio.Event | None = None,
    ) -> str:
        """Stream one response, calling ``on_chunk`` with every composed update.

        Args:
            request: Query body.
            on_chunk: Called with the full composed string after each chunk.
            on_snapshot: Optional; called with the structured snapshot too.
            cancel: Optional token. Once set, no more callbacks fire, the
                response is closed and the last composed string is returned.

        Returns:
            The last composed string.

        Raises:
            StreamHTTPError: Non-2xx status (after retries for 429/5xx).
            StreamError: Connection failure, or a read failure before any
                chunk was delivered.
        """
        retryer = tenacity.AsyncRetrying(
            retry=tenacity.retry_if_exception(_is_retryable),
            wait=self._wait,
            stop=tenacity.stop_after_attempt(self._max_retries),
            before_sleep=tenacity.before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        try:
            response = await retryer(self._open, request)
        except httpx.HTTPError as e:
            raise StreamError(f"Could not reach agent service: {e}") from e

        try:
            return await self._read(response, on_chunk, on_snapshot, cancel)
        finally:
            await response.aclose()

    async def _open(self, request: StreamRequest) -> httpx.Response:
        """Send the request and return the response with its body unread."""
        logger.info(
            "Opening stream: model=%s top_k=%d", request.model_name, request.top_k
        )
        http_request = self._client.build_request(
            "POST", self._api_url, json=request.to_body()
        )
        response = await self._client.send(http_request, stream=True)
        if response.status_code >= 300:
            body = (await response.aread()).decode("utf-8", errors="replace")
            await response.aclose()
            raise StreamHTTPError(response.status_code, body)
        return response

    async def _read(
        self,
        response: httpx.Response,
        on_chunk: OnChunk,
        on_snapshot: OnSnapshot,
        cancel: asyncio.Event | None,
    ) -> str:
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        chunks = response.aiter_bytes()
        buffer = ""
        composed = ""
        delivered = False

        def _deliver(text: str) -> None:
            nonlocal composed, delivered
            composed, snapshot = render(text)
            on_chunk(composed)
            if on_snapshot:
                on_snapshot(snapshot)
            delivered = True

        while True:
            # Callbacks run outside this try so their errors propagate.
            try:
                raw_chunk = await _next_chunk(chunks, cancel)
            except (httpx.HTTPError, httpx.StreamError) as e:
                if delivered:
                    logger.error(
                        "Stream interrupted, keeping partial response: %s", e
                    )
                    return composed
                logger.error("Stream failed before any content arrived: %s", e)
                raise StreamError(f"Stream read failed: {e}") from e

            if cancel is not None and cancel.is_set():
                logger.info("Stream cancelled after %d chars", len(buffer))
                return composed
            if raw_chunk is None:
                break
            buffer += decoder.decode(raw_chunk)
            _deliver(buffer)
            # Let listeners run between chunks.
            await asyncio.sleep(0)

        # Flush any multi-byte sequence held back by the decoder.
        buffer += decoder.decode(b"", final=True)
        _deliver(buffer)
        logger.info("Stream completed: %d chars composed", len(composed))
        return composed

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> AgentStreamClient:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.aclose()
