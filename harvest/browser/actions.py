"""Reusable browser actions: jittered sleep, retry, and page loading.

Design rules:
  - All delays randomized via random_sleep(); floors enforced in code.
  - Navigation is retried with exponential, jittered backoff up to a fixed
    cap, then the last error propagates to the caller.
"""

import asyncio
import logging
import random
import re
import time
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_RETRIES = 3
DEFAULT_BASE_DELAY = 3.0
DEFAULT_JITTER = 1.0

# Settle delay after a navigation before looking for content.
SETTLE_DELAY_MIN = 1.0
SETTLE_DELAY_MAX = 2.0

_COUNT_IN_TEXT = re.compile(r"([0-9][0-9,]*)")
_COUNT_IN_PAGE = re.compile(r"(\d{1,3}(?:,\d{3})*|\d+)\s*件")


async def random_sleep(min_s: float, max_s: float) -> float:
    """Sleep for a random duration between min_s and max_s seconds.

    Floor enforcement: min_s is always respected as the absolute minimum.
    If max_s < min_s, max_s is raised to min_s.

    Returns the actual sleep duration (useful for testing).
    """
    floor = max(min_s, 0.0)
    ceiling = max(max_s, floor)
    duration = random.uniform(floor, ceiling)
    await asyncio.sleep(duration)
    return duration


def backoff_delay(attempt: int, base_delay_s: float, jitter_s: float) -> float:
    """Delay before retry number ``attempt`` (1-based): base * 2^(n-1) + jitter."""
    return base_delay_s * (2 ** (attempt - 1)) + random.uniform(0.0, max(jitter_s, 0.0))


async def with_retry(
    fn: Callable[[], Awaitable[T]],
    *,
    max_retries: int = DEFAULT_MAX_RETRIES,
    base_delay_s: float = DEFAULT_BASE_DELAY,
    jitter_s: float = DEFAULT_JITTER,
    on_retry: Callable[[Exception, int], None] | None = None,
) -> T:
    """Run ``fn`` up to ``max_retries`` times, backing off between attempts.

    Args:
        fn: Zero-argument coroutine factory; called once per attempt.
        max_retries: Total attempts (>= 1).
        base_delay_s: Delay before the first retry; doubles each attempt.
        jitter_s: Upper bound of random extra delay per retry.
        on_retry: Called with (error, attempt) before each retry sleep.

    Returns:
        The first successful result.

    Raises:
        The exception from the final attempt.
    """
    attempts = max(max_retries, 1)
    for attempt in range(1, attempts + 1):
        try:
            return await fn()
        except Exception as e:
            if attempt >= attempts:
                raise
            if on_retry is not None:
                on_retry(e, attempt)
            delay = backoff_delay(attempt, base_delay_s, jitter_s)
            logger.debug("Attempt %d/%d failed (%s) — retrying in %.1fs", attempt, attempts, e, delay)
            await asyncio.sleep(delay)
    msg = "unreachable"
    raise RuntimeError(msg)


async def load_page_with_retry(
    page: Any,
    url: str,
    *,
    wait_for_selector: str | None = None,
    selector_timeout_ms: int = 15000,
    navigation_timeout_ms: int = 30000,
    max_retries: int = DEFAULT_MAX_RETRIES,
    base_delay_s: float = DEFAULT_BASE_DELAY,
    log: Callable[[str], None] | None = None,
) -> None:
    """Navigate to ``url`` with retries, then wait for the expected content.

    A missing ``wait_for_selector`` is logged, not raised: many listing pages
    render fine with a changed layout and the caller decides what to do.
    """

    def _on_retry(error: Exception, attempt: int) -> None:
        message = f"Error loading page ({attempt}/{max_retries}): {error}"
        logger.warning(message)
        if log is not None:
            log(message)

    async def _load() -> None:
        await page.goto(url, wait_until="domcontentloaded", timeout=navigation_timeout_ms)
        await random_sleep(SETTLE_DELAY_MIN, SETTLE_DELAY_MAX)

    await with_retry(_load, max_retries=max_retries, base_delay_s=base_delay_s, on_retry=_on_retry)

    if wait_for_selector:
        try:
            await page.wait_for_selector(wait_for_selector, timeout=selector_timeout_ms)
        except Exception:
            logger.warning("Selector %r not found on %s", wait_for_selector, url)
            if log is not None:
                log(f"Warning: selector {wait_for_selector!r} not found")


async def wait_for_any_selector(
    page: Any,
    selectors: tuple[str, ...],
    *,
    timeout_s: float = 10.0,
    poll_s: float = 0.5,
) -> str | None:
    """Return the first selector that matches at least one element, or None."""
    deadline = time.monotonic() + timeout_s
    while True:
        for selector in selectors:
            try:
                if await page.locator(selector).count() > 0:
                    return selector
            except Exception:
                logger.debug("Selector %r raised, skipping", selector, exc_info=True)
        if time.monotonic() >= deadline:
            return None
        await asyncio.sleep(poll_s)


async def extract_total_count(page: Any, selectors: tuple[str, ...]) -> int | None:
    """Read the site-reported total result count.

    Tries each selector's text first, then falls back to a "N件" pattern in
    the page body. Returns None when nothing positive is found.
    """
    for selector in selectors:
        element = page.locator(selector).first
        if await element.count() > 0:
            text = await element.text_content()
            count = _parse_count(_COUNT_IN_TEXT, text or "")
            if count is not None:
                return count

    body = await page.evaluate("() => document.body.innerText")
    return _parse_count(_COUNT_IN_PAGE, body or "")


def _parse_count(pattern: re.Pattern[str], text: str) -> int | None:
    match = pattern.search(text)
    if not match:
        return None
    value = int(match.group(1).replace(",", ""))
    return value if value > 0 else None
