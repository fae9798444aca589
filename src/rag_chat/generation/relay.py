"""Ordered, cancelable forwarding of an oracle stream to the caller."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from enum import Enum
from typing import Any

from rag_chat.config import RelayConfig
from rag_chat.errors import GenerationStreamError
from rag_chat.types import ChunkKind, StreamChunk

logger = logging.getLogger(__name__)

DisconnectCheck = Callable[[], Awaitable[bool]]


class RelayState(str, Enum):
    IDLE = "idle"
    STREAMING = "streaming"
    COMPLETED = "completed"
    FAILED = "failed"


class StreamRelay:
    """Consumer loop over an oracle's async text stream.

    State machine: IDLE -> STREAMING -> {COMPLETED, FAILED}; terminal states
    are absorbing. Chunks are pulled one at a time, so the producer never runs
    ahead of the caller and nothing is buffered beyond the chunk in flight.
    Chunks are emitted in exactly the order they are received.

    `open()` waits for the first chunk. Callers commit their response only
    after it returns, so a failure before the first chunk can still be reported
    with an error status. Once streaming, a producer failure is surfaced as a
    final `ERROR` chunk; a caller disconnect stops forwarding and closes the
    producer without writing anything further.
    """

    def __init__(
        self,
        source: AsyncIterator[str],
        *,
        is_disconnected: DisconnectCheck | None = None,
        config: RelayConfig | None = None,
        on_finish: Callable[[StreamRelay], None] | None = None,
        log_context: dict[str, Any] | None = None,
    ) -> None:
        self._iterator = source.__aiter__()
        self._is_disconnected = is_disconnected
        self.config = config or RelayConfig()
        self._on_finish = on_finish
        self.log_context = dict(log_context or {})

        self.state = RelayState.IDLE
        self.delivered = 0
        self.disconnected = False
        self.error: BaseException | None = None
        self._pending: StreamChunk | None = None
        self._released = False

    @property
    def finished(self) -> bool:
        return self.state in (RelayState.COMPLETED, RelayState.FAILED)

    async def open(self) -> None:
        """Move from IDLE to STREAMING once the first chunk (or end) arrives.

        A caller that leaves before the first chunk moves the relay straight to
        FAILED with `disconnected` set; nothing is raised.
        """
        if self.state is not RelayState.IDLE:
            return
        try:
            first = await self._next_or_disconnect()
        except Exception as exc:
            self.state = RelayState.FAILED
            self.error = exc
            logger.error("Generation failed before first chunk: %s", exc, extra=self.log_context)
            await self._release()
            raise GenerationStreamError(f"Generation failed: {exc}") from exc
        except asyncio.CancelledError:
            self._mark_disconnected()
            await self._release()
            raise
        if first is None:
            self._mark_disconnected()
            await self._release()
            return
        self._pending = first
        self.state = RelayState.STREAMING

    def __aiter__(self) -> AsyncIterator[StreamChunk]:
        return self.chunks()

    async def chunks(self) -> AsyncIterator[StreamChunk]:
        """Yield text chunks followed by exactly one terminal chunk.

        No terminal chunk is produced when the caller went away.
        """
        if self.finished:
            return
        await self.open()
        try:
            while self.state is RelayState.STREAMING:
                if self._pending is not None:
                    chunk, self._pending = self._pending, None
                else:
                    chunk = await self._next_or_disconnect()
                if chunk is None:
                    self._mark_disconnected()
                    return
                if chunk.kind is ChunkKind.END:
                    self.state = RelayState.COMPLETED
                    yield chunk
                    return
                self.delivered += 1
                yield chunk
        except (asyncio.CancelledError, GeneratorExit):
            self._mark_disconnected()
            raise
        except Exception as exc:
            self.state = RelayState.FAILED
            self.error = exc
            logger.error(
                "Generation stream failed after %d chunks: %s",
                self.delivered,
                exc,
                extra=self.log_context,
            )
            yield StreamChunk.failure(str(exc) or exc.__class__.__name__)
        finally:
            await self._release()

    async def aclose(self) -> None:
        """Release the producer if iteration never ran to a terminal chunk."""
        if not self.finished:
            self._mark_disconnected()
        await self._release()

    async def _pull(self) -> StreamChunk:
        try:
            text = await self._iterator.__anext__()
        except StopAsyncIteration:
            return StreamChunk.end()
        return StreamChunk.of(text)

    async def _next_or_disconnect(self) -> StreamChunk | None:
        if self._is_disconnected is None:
            return await self._pull()
        if await self._is_disconnected():
            return None

        pull = asyncio.ensure_future(self._pull())
        watch = asyncio.ensure_future(self._watch_disconnect())
        try:
            done, _ = await asyncio.wait({pull, watch}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            await _cancel(pull)
            await _cancel(watch)
            raise
        await _cancel(watch)
        if pull in done:
            return pull.result()
        await _cancel(pull)
        return None

    async def _watch_disconnect(self) -> None:
        assert self._is_disconnected is not None
        while not await self._is_disconnected():
            await asyncio.sleep(self.config.disconnect_poll_seconds)

    def _mark_disconnected(self) -> None:
        if self.finished:
            return
        self.state = RelayState.FAILED
        self.disconnected = True
        logger.info(
            "Caller disconnected after %d chunks; cancelling generation",
            self.delivered,
            extra=self.log_context,
        )

    async def _release(self) -> None:
        if self._released:
            return
        self._released = True
        aclose = getattr(self._iterator, "aclose", None)
        if aclose is not None:
            try:
                await aclose()
            except Exception as exc:
                logger.warning("Closing generation stream raised: %s", exc, extra=self.log_context)
        if self._on_finish is not None:
            self._on_finish(self)


async def _cancel(task: asyncio.Future[Any]) -> None:
    if task.done():
        return
    task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await task
