import asyncio
import logging
from typing import Awaitable, TypeVar

from app.modules.docchat.services.errors import DocChatError, UpstreamUnavailable

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def bounded(call: Awaitable[T], *, timeout: float, operation: str) -> T:
    """Await an external call with a deadline.

    Timeouts and provider exceptions become UpstreamUnavailable; pipeline errors
    raised by the collaborator itself pass through unchanged.
    """
    try:
        return await asyncio.wait_for(call, timeout=timeout)
    except asyncio.TimeoutError as e:
        logger.warning(f"[upstream] {operation} timed out after {timeout:.1f}s")
        raise UpstreamUnavailable(f"{operation} timed out") from e
    except DocChatError:
        raise
    except Exception as e:
        logger.warning(f"[upstream] {operation} failed: {e}")
        raise UpstreamUnavailable(f"{operation} failed") from e
