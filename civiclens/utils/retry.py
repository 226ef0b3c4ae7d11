import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def execute_with_retry(
    operation: Callable[[], Awaitable[T]],
    max_retries: int = 3,
    base_delay_ms: int = 1000,
    timeout_ms: int = 30000,
    label: str = "external call",
    sleep: Optional[Callable[[float], Awaitable[None]]] = None,
) -> T:
    """
    Run `operation` with a per-attempt timeout and exponential backoff.

    `operation` is a zero-argument factory returning a fresh awaitable for each
    attempt. Attempts are bounded by `asyncio.wait_for`, which cancels the
    pending call when the timeout fires. Calls that hand work to a thread
    (`asyncio.to_thread`) only stop waiting; the thread itself runs on.

    Between attempts the delay is `base_delay_ms * 2**attempt` with no jitter.
    After `max_retries` failed attempts the last error is re-raised.
    """
    if max_retries < 1:
        raise ValueError("max_retries must be at least 1")
    sleep = sleep or asyncio.sleep
    timeout_s = timeout_ms / 1000.0
    last_error: Optional[BaseException] = None

    for attempt in range(max_retries):
        try:
            return await asyncio.wait_for(operation(), timeout=timeout_s)
        except asyncio.TimeoutError as e:
            last_error = e
            logger.warning(f"⏰ {label} timed out after {timeout_ms}ms (attempt {attempt + 1}/{max_retries})")
        except Exception as e:
            last_error = e
            logger.warning(f"⚠️ {label} failed (attempt {attempt + 1}/{max_retries}): {e}")

        if attempt < max_retries - 1:
            delay_ms = base_delay_ms * (2 ** attempt)
            logger.info(f"🔄 Retry attempt {attempt + 1} for {label} after {delay_ms}ms delay")
            await sleep(delay_ms / 1000.0)

    logger.error(f"❌ {label} failed after {max_retries} attempts")
    raise last_error
