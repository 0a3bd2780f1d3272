"""Bounded polling primitives used by steps that wait on external systems."""

from __future__ import annotations

import logging
import time
from typing import Callable, Optional, TypeVar

from ..errors import ProvisioningError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ReadinessTimeoutError(ProvisioningError):
    """Raised when an external system does not reach a usable state in time."""

    def __init__(self, description: str, attempts: int, elapsed: float) -> None:
        self.description = description
        self.attempts = attempts
        self.elapsed = elapsed
        super().__init__(
            f"{description} did not become ready after {attempts} attempts ({elapsed:.1f}s)"
        )


def await_ready(
    probe: Callable[[], bool],
    max_attempts: int = 60,
    interval: float = 5.0,
    initial_delay: float = 0.0,
    *,
    description: str = "Service",
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> int:
    """Call `probe` until it reports ready.

    Sleeps `initial_delay` once (known provisioning lag), then probes up to
    `max_attempts` times with `interval` seconds between attempts. A probe
    that raises counts as not ready. Returns the number of probe calls made.

    Raises:
        ReadinessTimeoutError: after the last attempt fails; the message names
            the wall-clock time spent, initial delay included.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    started = clock()
    if initial_delay > 0:
        logger.info("⏳ Waiting %.0fs before probing %s", initial_delay, description)
        sleep(initial_delay)

    for attempt in range(1, max_attempts + 1):
        try:
            ready = bool(probe())
        except Exception as exc:
            # 网络错误 / 连接拒绝：视为尚未就绪
            logger.debug("Probe attempt %d for %s raised: %s", attempt, description, exc)
            ready = False

        if ready:
            logger.info("✅ %s ready after %d attempt(s)", description, attempt)
            return attempt

        logger.debug("%s not ready (attempt %d/%d)", description, attempt, max_attempts)
        if attempt < max_attempts:
            sleep(interval)

    raise ReadinessTimeoutError(description, max_attempts, clock() - started)


def poll_until(
    fetch: Callable[[], Optional[T]],
    is_terminal: Callable[[T], bool],
    *,
    interval: float = 10.0,
    timeout: float = 600.0,
    initial_delay: float = 0.0,
    on_progress: Optional[Callable[[T], None]] = None,
    description: str = "Operation",
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> T:
    """Poll `fetch` until it returns a value for which `is_terminal` holds.

    Every non-None intermediate value is passed to `on_progress` so callers
    can render live status. `fetch` returning None or raising counts as
    "nothing to report yet". The whole wait, initial delay included, is
    bounded by `timeout` seconds.
    """
    started = clock()
    if initial_delay > 0:
        sleep(initial_delay)

    attempts = 0
    while True:
        attempts += 1
        try:
            value = fetch()
        except Exception as exc:
            logger.debug("Polling %s failed on attempt %d: %s", description, attempts, exc)
            value = None

        if value is not None:
            if on_progress:
                on_progress(value)
            if is_terminal(value):
                return value

        if clock() - started + interval > timeout:
            break
        sleep(interval)

    raise ReadinessTimeoutError(description, attempts, clock() - started)
