"""Service tiers, audit settings and Crawl4AI configuration factories."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from crawl4ai import BrowserConfig, CrawlerRunConfig
from crawl4ai.async_configs import CacheMode

LOGGER = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "SEO-Audit-Bot/1.0"

# Weights of the category scores in the overall score. They sum to 1.0.
DEFAULT_WEIGHTS: Dict[str, float] = {
    "technical": 0.30,
    "on_page": 0.25,
    "content": 0.20,
    "accessibility": 0.10,
    "performance": 0.15,
}

# Chromium flags for containerized, GPU-less environments.
BROWSER_ARGS: List[str] = [
    "--no-sandbox",
    "--disable-dev-shm-usage",
    "--disable-gpu",
]

# Collects paint, layout-shift, long-task and navigation timings from the
# buffered performance timeline. Resolves after a short settle window so that
# late LCP entries are included.
TIMING_SNIPPET = """
return await new Promise((resolve) => {
    const metrics = {lcp: null, fcp: null, cls: 0, tbt: 0, ttfb: null};
    const nav = performance.getEntriesByType('navigation')[0];
    if (nav) {
        metrics.ttfb = nav.responseStart - nav.requestStart;
    }
    const observe = (type, handler) => {
        try {
            new PerformanceObserver((list) => list.getEntries().forEach(handler))
                .observe({type: type, buffered: true});
        } catch (err) {}
    };
    observe('paint', (entry) => {
        if (entry.name === 'first-contentful-paint') { metrics.fcp = entry.startTime; }
    });
    observe('largest-contentful-paint', (entry) => {
        metrics.lcp = entry.renderTime || entry.loadTime || entry.startTime;
    });
    observe('layout-shift', (entry) => {
        if (!entry.hadRecentInput) { metrics.cls += entry.value; }
    });
    observe('longtask', (entry) => {
        if (entry.duration > 50) { metrics.tbt += entry.duration - 50; }
    });
    setTimeout(() => resolve(metrics), 1500);
});
"""


# ---------------------------------------------------------------------------
# Service tiers
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ServiceTier:
    """Crawl limits and scoring weights bought by a service tier."""

    name: str
    max_pages: int
    max_depth: int
    workers: int
    run_deadline: float
    competitor_pages: int = 3
    max_competitors: int = 3
    weights: Dict[str, float] = field(default_factory=lambda: dict(DEFAULT_WEIGHTS))


TIERS: Dict[str, ServiceTier] = {
    "starter": ServiceTier("starter", max_pages=3, max_depth=2, workers=2, run_deadline=120.0),
    "standard": ServiceTier("standard", max_pages=20, max_depth=3, workers=4, run_deadline=300.0),
    "advanced": ServiceTier(
        "advanced",
        max_pages=50,
        max_depth=5,
        workers=6,
        run_deadline=600.0,
        competitor_pages=5,
    ),
    "default": ServiceTier("default", max_pages=50, max_depth=3, workers=4, run_deadline=600.0),
}


def get_tier(name: Optional[str]) -> ServiceTier:
    """Resolve a tier by name, falling back to ``default`` for unknown names."""
    key = (name or "default").strip().lower()
    tier = TIERS.get(key)
    if tier is None:
        LOGGER.warning("Unknown tier '%s'; falling back to default.", name)
        return TIERS["default"]
    return tier


# ---------------------------------------------------------------------------
# Audit configuration
# ---------------------------------------------------------------------------


@dataclass
class AuditConfig:
    """Settings for one audit run."""

    tier: ServiceTier = field(default_factory=lambda: TIERS["default"])
    user_agent: str = DEFAULT_USER_AGENT
    render_budget: float = 30.0
    retry_budget_ratio: float = 0.5
    min_retry_budget: float = 5.0
    debounce: float = 2.0
    probe_timeout: float = 5.0
    request_timeout: float = 15.0
    headless: bool = True
    pagespeed: bool = False
    pagespeed_strategy: str = "mobile"
    competitors: List[str] = field(default_factory=list)
    discover_competitors: bool = True

    @property
    def retry_budget(self) -> float:
        return max(self.min_retry_budget, self.render_budget * self.retry_budget_ratio)

    @classmethod
    def from_env(cls, **overrides) -> "AuditConfig":
        """Build a config whose tier and PageSpeed flag default from the environment."""
        tier_name = overrides.pop("tier", None) or os.getenv("SITEAUDIT_TIER")
        config = cls(tier=get_tier(tier_name), **overrides)
        if "pagespeed" not in overrides and os.getenv("PAGESPEED_INSIGHTS_API_KEY"):
            config.pagespeed = True
        return config


# ---------------------------------------------------------------------------
# Crawl4AI factories
# ---------------------------------------------------------------------------


def build_browser_config(config: Optional[AuditConfig] = None) -> BrowserConfig:
    """Headless Chromium configured with the audit user agent."""
    config = config or AuditConfig()
    return BrowserConfig(
        headless=config.headless,
        user_agent=config.user_agent,
        use_persistent_context=False,
        extra_args=list(BROWSER_ARGS),
        verbose=False,
    )


def build_render_run_config(budget: float) -> CrawlerRunConfig:
    """RunConfig for a full render: wait for the network to settle, then collect timings."""
    return CrawlerRunConfig(
        verbose=False,
        cache_mode=CacheMode.BYPASS,
        wait_until="networkidle",
        page_timeout=int(budget * 1000),
        delay_before_return_html=1.0,
        js_code=TIMING_SNIPPET,
        scan_full_page=False,
    )


def build_probe_run_config() -> CrawlerRunConfig:
    """Minimal RunConfig used by connectivity probes."""
    return CrawlerRunConfig(
        verbose=False,
        cache_mode=CacheMode.BYPASS,
        delay_before_return_html=0.0,
    )
