"""PageSpeed Insights client for the primary URL's lab performance metrics.

The API key is read from ``PAGESPEED_INSIGHTS_API_KEY`` at call time. Every
value taken from the response goes through :func:`timing.validate_timings`
before it is used.
"""

from __future__ import annotations

import asyncio
import logging
import math
import os
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional

import httpx

from .document import PerformanceReport
from .errors import PerformanceServiceError
from .timing import validate_timings

LOGGER = logging.getLogger(__name__)

PAGESPEED_ENDPOINT = "https://www.googleapis.com/pagespeedonline/v5/runPagespeed"
DEFAULT_STRATEGY = "mobile"
DEFAULT_TIMEOUT = 60.0
MAX_RETRIES = 2
RETRY_BACKOFF = 2.0

AUDIT_IDS = (
    "server-response-time",
    "first-contentful-paint",
    "largest-contentful-paint",
    "cumulative-layout-shift",
    "total-blocking-time",
)

_RETRYABLE_STATUSES = frozenset({429, 500, 502, 503, 504})

Sleeper = Callable[[float], Awaitable[Any]]


def parse_pagespeed_response(
    url: str, data: Mapping[str, Any], strategy: str = DEFAULT_STRATEGY
) -> PerformanceReport:
    """Extract the performance score and validated timings from a PSI response.

    Raises:
        PerformanceServiceError: If the response has no Lighthouse result.
    """
    lighthouse = data.get("lighthouseResult")
    if not isinstance(lighthouse, Mapping):
        raise PerformanceServiceError("Response has no lighthouseResult", url=url)

    audits = lighthouse.get("audits") or {}
    raw = {
        audit_id: (audits.get(audit_id) or {}).get("numericValue")
        for audit_id in AUDIT_IDS
    }
    timing = validate_timings(raw, source="pagespeed")

    score = None
    performance = (lighthouse.get("categories") or {}).get("performance") or {}
    value = performance.get("score")
    if isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value):
        score = int(math.floor(max(0.0, min(1.0, float(value))) * 100 + 0.5))

    return PerformanceReport(url=url, strategy=strategy, score=score, timing=timing)


async def fetch_pagespeed_async(
    url: str,
    *,
    api_key: Optional[str] = None,
    strategy: str = DEFAULT_STRATEGY,
    client: Optional[httpx.AsyncClient] = None,
    timeout: float = DEFAULT_TIMEOUT,
    retries: int = MAX_RETRIES,
    sleep: Sleeper = asyncio.sleep,
) -> PerformanceReport:
    """Call PageSpeed Insights, retrying timeouts and transient HTTP errors.

    Raises:
        PerformanceServiceError: When every attempt failed.
    """
    key = api_key or os.getenv("PAGESPEED_INSIGHTS_API_KEY")
    params: Dict[str, Any] = {"url": url, "strategy": strategy, "category": "performance"}
    if key:
        params["key"] = key
    else:
        LOGGER.warning("PAGESPEED_INSIGHTS_API_KEY is not set; requests may be rate limited.")

    owns_client = client is None
    if client is None:
        client = httpx.AsyncClient(timeout=timeout)

    last_error: Optional[PerformanceServiceError] = None
    try:
        for attempt in range(retries + 1):
            if attempt:
                delay = RETRY_BACKOFF * attempt
                LOGGER.info("Retrying PageSpeed for %s in %.1fs (%s)", url, delay, last_error)
                await sleep(delay)
            try:
                response = await client.get(PAGESPEED_ENDPOINT, params=params, timeout=timeout)
                response.raise_for_status()
                data = response.json()
            except httpx.HTTPStatusError as exc:
                status = exc.response.status_code
                last_error = PerformanceServiceError(
                    f"PageSpeed API error: {status}", url=url, status_code=status
                )
                if status not in _RETRYABLE_STATUSES:
                    raise last_error from exc
                continue
            except httpx.RequestError as exc:
                last_error = PerformanceServiceError(f"Request failed: {exc}", url=url)
                continue
            except ValueError as exc:
                raise PerformanceServiceError(f"Invalid JSON from PageSpeed: {exc}", url=url) from exc
            return parse_pagespeed_response(url, data, strategy)
    finally:
        if owns_client:
            await client.aclose()

    raise last_error or PerformanceServiceError("PageSpeed request failed", url=url)


async def run_pagespeed_async(url: str, **kwargs: Any) -> PerformanceReport:
    """Like :func:`fetch_pagespeed_async`, but failures become an unavailable report."""
    strategy = kwargs.get("strategy", DEFAULT_STRATEGY)
    try:
        report = await fetch_pagespeed_async(url, **kwargs)
    except PerformanceServiceError as exc:
        LOGGER.warning("PageSpeed unavailable for %s: %s", url, exc)
        return PerformanceReport(url=url, status="unavailable", strategy=strategy, error=str(exc))
    LOGGER.info("PageSpeed score for %s: %s", url, report.score)
    return report
