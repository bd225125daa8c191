"""Async HTTP transport executing a :class:`StreamingConfig`.

One method per execution mode: :meth:`AsyncLLMClient.stream` reads the
body incrementally through :class:`ChunkDecoder`, and
:meth:`AsyncLLMClient.complete` parses a single JSON body.  Failed
requests are not retried.
"""

from __future__ import annotations

import inspect
import logging
import time
from typing import Any, AsyncIterator, Callable

import httpx

from toolstream.core.cancellation import CancelToken, race_cancel
from toolstream.errors import ProviderError
from toolstream.events.bus import EventBus
from toolstream.llm.adapters.base import StreamingConfig
from toolstream.llm.decoder import ChunkDecoder
from toolstream.llm.extractor import extract_thinking
from toolstream.types import AgentEvent, EventType, RoundResult

_logger = logging.getLogger(__name__)

# Receives each piece of model text as it arrives; may be async
ChunkCallback = Callable[[str], Any]


async def _next_chunk(chunks: AsyncIterator[bytes]) -> bytes | None:
    try:
        return await chunks.__anext__()
    except StopAsyncIteration:
        return None


class AsyncLLMClient:
    """Runs provider requests built by the adapters.

    Parameters
    ----------
    http_client:
        Optional pre-configured ``httpx.AsyncClient`` (e.g. with a mock
        transport).  A client created here is closed by :meth:`close`.
    timeout:
        Overall request timeout in seconds.
    event_bus:
        Receives ``FRAME_DROPPED`` events for malformed frames.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 120,
        event_bus: EventBus | None = None,
    ) -> None:
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout, connect=30, read=300),
        )
        self._event_bus = event_bus

    async def send(
        self,
        config: StreamingConfig,
        on_chunk: ChunkCallback | None = None,
        cancel: CancelToken | None = None,
        conversation_id: str | None = None,
    ) -> RoundResult:
        """Dispatch on ``config.stream``."""
        if config.stream:
            return await self.stream(config, on_chunk, cancel, conversation_id)
        return await self.complete(config, cancel)

    # ------------------------------------------------------------------
    # Streaming
    # ------------------------------------------------------------------

    async def stream(
        self,
        config: StreamingConfig,
        on_chunk: ChunkCallback | None = None,
        cancel: CancelToken | None = None,
        conversation_id: str | None = None,
    ) -> RoundResult:
        """Stream one request, delivering text to *on_chunk* in order.

        Raises
        ------
        ProviderError
            Non-2xx status, transport failure, or an error object in the
            stream.  Text already delivered stays with the caller.
        RequestCancelled
            *cancel* fired; buffered partial output is discarded.
        """
        start = time.monotonic()
        acc = config.accumulator
        parts: list[str] = []
        dropped = 0

        request = self._client.build_request(
            "POST", config.endpoint, headers=config.headers, json=config.request_body,
        )
        try:
            resp = await race_cancel(self._client.send(request, stream=True), cancel)
            try:
                if not resp.is_success:
                    body = (await race_cancel(resp.aread(), cancel)).decode(errors="replace")
                    raise self._status_error(config, resp.status_code, body)

                decoder = ChunkDecoder()
                chunks = resp.aiter_bytes()
                finished = False
                while not finished:
                    chunk = await race_cancel(_next_chunk(chunks), cancel)
                    if chunk is None:
                        frames = decoder.flush()
                        finished = True
                    else:
                        frames = decoder.feed(chunk)
                    for frame in frames:
                        if config.is_terminal(frame):
                            finished = True
                            break
                        try:
                            payload = config.decode_frame(frame)
                            if payload is None:
                                continue
                            text = self._text_of(config, payload)
                            acc.feed(payload)
                        except (ValueError, TypeError, AttributeError, KeyError, IndexError) as e:
                            # JSON that fails to parse or has the wrong shape
                            dropped += 1
                            _logger.debug("Dropping malformed frame (%s): %.200s", e, frame)
                            await self._emit(EventType.FRAME_DROPPED, {
                                "provider": config.provider_id,
                                "frame": frame[:200],
                            }, conversation_id)
                            continue
                        if text:
                            parts.append(text)
                            if on_chunk is not None:
                                result = on_chunk(text)
                                if inspect.isawaitable(result):
                                    await result
                        if acc.done:
                            finished = True
                            break
            finally:
                await resp.aclose()
        except httpx.HTTPError as e:
            raise self._transport_error(config, e) from e

        if acc.error:
            raise ProviderError(
                config.provider_id,
                f"{config.provider_id} reported an error mid-stream: {acc.error}",
                body=acc.error,
            )

        full_text = "".join(parts)
        tool_calls = config.parse_tool_calls(full_text)
        _, content = extract_thinking(full_text)
        _logger.debug(
            "%s stream finished in %.0fms: %d chars, %d tool call(s), %d dropped frame(s)",
            config.provider_id, (time.monotonic() - start) * 1000,
            len(full_text), len(tool_calls), dropped,
        )
        return RoundResult(
            content=content,
            tool_calls=tool_calls,
            usage=acc.usage,
            finish_reason=acc.finish_reason or "stop",
            model=acc.model or config.request_body.get("model", ""),
        )

    # ------------------------------------------------------------------
    # Non-streaming
    # ------------------------------------------------------------------

    async def complete(
        self,
        config: StreamingConfig,
        cancel: CancelToken | None = None,
    ) -> RoundResult:
        """Send one non-streaming request and parse its JSON body."""
        try:
            resp = await race_cancel(
                self._client.post(
                    config.endpoint, headers=config.headers, json=config.request_body,
                ),
                cancel,
            )
        except httpx.HTTPError as e:
            raise self._transport_error(config, e) from e

        if not resp.is_success:
            raise self._status_error(config, resp.status_code, resp.text)
        try:
            data = resp.json()
        except ValueError:
            raise ProviderError(
                config.provider_id,
                f"{config.provider_id} returned a response that is not valid JSON",
                resp.status_code,
                resp.text,
            ) from None
        if not isinstance(data, dict):
            raise ProviderError(
                config.provider_id,
                f"{config.provider_id} returned an unexpected response shape",
                resp.status_code,
                resp.text,
            )
        result = config.parse_response(data)
        if not result.model:
            result.model = config.request_body.get("model", "")
        return result

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _text_of(config: StreamingConfig, payload: dict[str, Any]) -> str | None:
        try:
            return config.extract_text(payload)
        except (TypeError, KeyError, IndexError, AttributeError) as e:
            _logger.debug("No text in frame from %s: %s", config.provider_id, e)
            return None

    @staticmethod
    def _status_error(config: StreamingConfig, status: int, body: str) -> ProviderError:
        _logger.warning("%s returned HTTP %d", config.provider_id, status)
        return ProviderError(
            config.provider_id, config.handle_error(status, body), status, body,
        )

    @staticmethod
    def _transport_error(config: StreamingConfig, exc: httpx.HTTPError) -> ProviderError:
        detail = str(exc) or type(exc).__name__
        _logger.warning("%s request failed: %s", config.provider_id, detail)
        return ProviderError(config.provider_id, config.handle_error(0, detail))

    async def _emit(
        self,
        event_type: EventType,
        data: dict[str, Any],
        conversation_id: str | None,
    ) -> None:
        if self._event_bus is not None:
            await self._event_bus.emit(AgentEvent(
                type=event_type, data=data, conversation_id=conversation_id,
            ))

    async def close(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._owns_client:
            await self._client.aclose()
