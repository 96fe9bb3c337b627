#!/usr/bin/env python3
"""
Bounded polling used while waiting for worker pods to become ready.
The loop only depends on a status source and a clock, so it can be driven by
fakes in tests.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Tuple, Type

from src.orchestration.errors import ConfigurationError, ReadinessTimeout

DEFAULT_POLL_INTERVAL_SECONDS = 3.0
DEFAULT_READY_TIMEOUT_SECONDS = 30.0


@dataclass(frozen=True)
class PollPolicy:
    interval: float = DEFAULT_POLL_INTERVAL_SECONDS
    timeout: float = DEFAULT_READY_TIMEOUT_SECONDS

    def __post_init__(self):
        if self.interval <= 0:
            raise ConfigurationError(f"Poll interval must be positive, got {self.interval}")
        if self.timeout < 0:
            raise ConfigurationError(f"Poll timeout must not be negative, got {self.timeout}")


async def poll_until(fetch: Callable[[], Awaitable[Any]],
                     is_ready: Callable[[Any], bool],
                     policy: PollPolicy,
                     clock: Callable[[], float] = time.monotonic,
                     sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
                     on_error: Optional[Callable[[Exception], None]] = None,
                     fatal: Tuple[Type[BaseException], ...] = (),
                     description: str = "resource") -> Any:
    """Call ``fetch`` until ``is_ready`` accepts its value or the policy times out.

    Exceptions from ``fetch`` are treated as transient and reported to
    ``on_error``, except those listed in ``fatal``, which propagate. Sleeps are
    clipped to the remaining time so the call ends within
    ``timeout + interval`` of starting, provided ``fetch`` itself is bounded.
    """
    start = clock()
    attempts = 0

    while True:
        elapsed = clock() - start
        if elapsed >= policy.timeout:
            raise ReadinessTimeout(
                f"{description} not ready after {elapsed:.1f}s ({attempts} checks)",
                elapsed=elapsed
            )

        attempts += 1
        try:
            value = await fetch()
        except fatal:
            raise
        except Exception as e:
            if on_error:
                on_error(e)
        else:
            if is_ready(value):
                return value

        remaining = policy.timeout - (clock() - start)
        if remaining > 0:
            await sleep(min(policy.interval, remaining))
