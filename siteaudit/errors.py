"""Exception types raised across the audit pipeline.

Every exception carries the context needed to record it in the final
``AuditResult`` (the failing URL, the metric name, ...), so callers that
recover from an error can log it and keep a trace of what happened.
"""

from __future__ import annotations

from typing import List, Optional, Sequence


class AuditError(Exception):
    """Base class for audit pipeline errors."""


class MalformedURL(AuditError):
    """Raised when a URL cannot be parsed into a crawlable http(s) URL."""

    def __init__(self, url: str, reason: str = "unparseable URL"):
        self.url = url
        self.reason = reason
        super().__init__(f"Malformed URL {url!r}: {reason}")


class RenderTimeout(AuditError):
    """Raised when a render attempt exceeds its time budget."""

    def __init__(self, url: str, budget: float):
        self.url = url
        self.budget = budget
        super().__init__(f"Rendering {url} exceeded {budget:.1f}s budget")


class ConfirmedDisconnect(AuditError):
    """Raised when a render session failed its probe twice across the debounce window."""

    def __init__(self, session_id: int, url: Optional[str] = None):
        self.session_id = session_id
        self.url = url
        target = f" while rendering {url}" if url else ""
        super().__init__(f"Render session {session_id} disconnected{target}")


class CrawlFailed(AuditError):
    """Raised when neither the root URL nor its fallbacks produced a valid page."""

    def __init__(
        self,
        url: str,
        attempted: Sequence[str] = (),
        reasons: Sequence[str] = (),
    ):
        self.url = url
        self.attempted: List[str] = list(attempted)
        self.reasons: List[str] = list(reasons)
        detail = "; ".join(self.reasons) if self.reasons else "no reachable pages"
        super().__init__(
            f"Could not crawl {url} ({len(self.attempted)} URL(s) attempted): {detail}"
        )


class MetricOutOfRange(AuditError):
    """Raised when a timing metric violates a ceiling or ordering rule."""

    def __init__(
        self,
        metric: str,
        raw: Optional[float],
        accepted: Optional[float],
        reason: str,
    ):
        self.metric = metric
        self.raw = raw
        self.accepted = accepted
        self.reason = reason
        super().__init__(f"{metric}={raw!r} out of range ({reason}); using {accepted!r}")


class CompetitorUnavailable(AuditError):
    """Raised when a competitor site cannot provide usable data."""

    def __init__(self, url: str, reason: str):
        self.url = url
        self.reason = reason
        super().__init__(f"Competitor {url} unavailable: {reason}")


class PerformanceServiceError(AuditError):
    """Raised when the external performance-metrics service fails."""

    def __init__(self, message: str, url: str = "", status_code: Optional[int] = None):
        self.url = url
        self.status_code = status_code
        super().__init__(message)


class SearchError(AuditError):
    """Raised when the SearXNG suggestion service fails."""

    def __init__(self, message: str, query: str = ""):
        self.query = query
        super().__init__(message)
