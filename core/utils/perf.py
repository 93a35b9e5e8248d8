import asyncio
import functools
import logging
import time

logger = logging.getLogger(__name__)


def profile_stage(stage_name: str):
    """Decorator logging how long a pipeline stage takes and whether it raised."""
    def decorator(func):
        if asyncio.iscoroutinefunction(func):
            @functools.wraps(func)
            async def wrapper(*args, **kwargs):
                t0 = time.perf_counter()
                ok = False
                try:
                    result = await func(*args, **kwargs)
                    ok = True
                    return result
                finally:
                    _report(stage_name, t0, ok)
            return wrapper

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            t0 = time.perf_counter()
            ok = False
            try:
                result = func(*args, **kwargs)
                ok = True
                return result
            finally:
                _report(stage_name, t0, ok)
        return wrapper
    return decorator


def _report(stage_name: str, t0: float, ok: bool) -> None:
    elapsed = (time.perf_counter() - t0) * 1000
    logger.info(f"[PERF] {stage_name}: {elapsed:.1f} ms{'' if ok else ' (failed)'}")
