"""Streaming generation with live forwarding and accumulation.

One provider stream feeds two consumers: the caller's output channel, which
receives every chunk as soon as it arrives, and an accumulation buffer used
for persistence once the stream ends. Once any text has been produced the
stream never raises to its consumer; failures end it early and the partial
text stays available through ``AnswerStream.text``.
"""

from typing import AsyncIterator, Awaitable, Callable, List, Optional
import asyncio
import logging

from app.modules.docchat.services.errors import DocChatError, UpstreamUnavailable
from app.modules.docchat.services.llm import ChatModel, Contents

logger = logging.getLogger(__name__)

Sink = Callable[[str], Awaitable[None]]


class AnswerStream:
    def __init__(self, chunks: AsyncIterator[str], idle_timeout: float = 60.0):
        self._chunks = chunks
        self._idle_timeout = idle_timeout
        self._parts: List[str] = []
        self._pending: List[str] = []
        self._closed = False
        self.completed = False
        self.error: Optional[BaseException] = None

    @property
    def text(self) -> str:
        return "".join(self._parts)

    async def _next(self) -> Optional[str]:
        while True:
            try:
                chunk = await asyncio.wait_for(self._chunks.__anext__(), timeout=self._idle_timeout)
            except StopAsyncIteration:
                return None
            except asyncio.TimeoutError as e:
                raise UpstreamUnavailable(f"generation stalled for {self._idle_timeout:.0f}s") from e
            if chunk:
                # Accumulate at production time so nothing generated is lost
                self._parts.append(chunk)
                return chunk

    async def prime(self) -> None:
        """Pull the first chunk so a provider failure before any output reaches the caller."""
        try:
            chunk = await self._next()
        except Exception as e:
            await self.close()
            if isinstance(e, DocChatError):
                raise
            raise UpstreamUnavailable("generation failed") from e
        if chunk is None:
            self.completed = True
            await self.close()
        else:
            self._pending.append(chunk)

    async def __aiter__(self) -> AsyncIterator[str]:
        try:
            while self._pending:
                yield self._pending.pop(0)
            if self.completed or self._closed:
                return
            while True:
                try:
                    chunk = await self._next()
                except Exception as e:
                    self.error = e
                    logger.warning(f"[generator] stream ended early after {len(self.text)} chars: {e}")
                    return
                if chunk is None:
                    self.completed = True
                    return
                yield chunk
        finally:
            await self.close()

    async def pump(self, sink: Sink) -> str:
        """Forward every chunk to sink; stop forwarding (and generating) if the sink fails."""
        chunks = self.__aiter__()
        try:
            async for chunk in chunks:
                try:
                    await sink(chunk)
                except Exception as e:
                    self.error = e
                    logger.info(f"[generator] output channel closed mid-stream: {e}")
                    break
        finally:
            await chunks.aclose()
        return self.text

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        aclose = getattr(self._chunks, "aclose", None)
        if aclose is not None:
            try:
                await aclose()
            except Exception as e:
                logger.debug(f"[generator] provider stream close failed: {e}")


class GeneratorAdapter:
    def __init__(self, llm: ChatModel, idle_timeout: float = 60.0):
        self.llm = llm
        self.idle_timeout = idle_timeout

    def stream_generate(self, contents: Contents, system_instruction: Optional[str] = None) -> AnswerStream:
        return AnswerStream(self.llm.stream_generate(contents, system_instruction), self.idle_timeout)

    async def start(self, contents: Contents, system_instruction: Optional[str] = None) -> AnswerStream:
        """Open and prime a stream; raises UpstreamUnavailable if nothing could be generated."""
        stream = self.stream_generate(contents, system_instruction)
        await stream.prime()
        return stream
