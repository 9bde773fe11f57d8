"""Pooled render sessions with explicit lifecycle and connection health.

A render session is one headless-browser context. Each session moves through

    Idle -> Navigating -> Stabilizing -> Ready -> (Reused | Disposed)

and a reused session goes back to Navigating. Independently, its
``ConnectionHealth`` is tracked as Connected, SuspectedDisconnect or
ConfirmedDisconnect. Health only changes through
:meth:`RenderSession.ensure_connected`, which the manager calls before every
navigation, content extraction and DOM query:

- a successful probe sets Connected;
- a failed probe, or a disconnect reported by the driver, sets
  SuspectedDisconnect;
- a suspected session is probed again after the debounce window (2s). A
  second failure confirms the disconnect and disposes the session.

The debounce keeps long-running page scripts from being mistaken for a dead
browser.

Browser specifics live behind :class:`RenderDriver`. :class:`Crawl4AIDriver`
is the production implementation.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import time
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional

import httpx
from crawl4ai import AsyncWebCrawler

from .config import (
    AuditConfig,
    build_browser_config,
    build_probe_run_config,
    build_render_run_config,
)
from .document import RenderResult
from .errors import ConfirmedDisconnect, RenderTimeout

LOGGER = logging.getLogger(__name__)

SleepFn = Callable[[float], Awaitable[None]]


class SessionState(str, Enum):
    idle = "idle"
    navigating = "navigating"
    stabilizing = "stabilizing"
    ready = "ready"
    reused = "reused"
    disposed = "disposed"


class ConnectionHealth(str, Enum):
    connected = "connected"
    suspected_disconnect = "suspected_disconnect"
    confirmed_disconnect = "confirmed_disconnect"


_TRANSITIONS: Dict[SessionState, frozenset] = {
    SessionState.idle: frozenset({SessionState.navigating, SessionState.disposed}),
    SessionState.navigating: frozenset({SessionState.stabilizing, SessionState.disposed}),
    SessionState.stabilizing: frozenset({SessionState.ready, SessionState.disposed}),
    SessionState.ready: frozenset({SessionState.reused, SessionState.disposed}),
    SessionState.reused: frozenset({SessionState.navigating, SessionState.disposed}),
    SessionState.disposed: frozenset(),
}


@dataclass(slots=True)
class NavigationInfo:
    """What the browser reported after loading a URL."""

    final_url: str
    status_code: int
    headers: Dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class InitialFetch:
    """Pre-render markup fetched over plain HTTP."""

    url: str
    final_url: str
    status_code: int
    markup: str = ""
    headers: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None


# ---------------------------------------------------------------------------
# Driver interface
# ---------------------------------------------------------------------------


class RenderDriver:
    """Browser operations the session manager relies on.

    ``handle`` is whatever object the driver returns from :meth:`open`. A
    driver signals a dropped browser connection by raising ``ConnectionError``.
    """

    async def open(self) -> Any:
        raise NotImplementedError

    async def close(self, handle: Any) -> None:
        raise NotImplementedError

    async def probe(self, handle: Any) -> bool:
        raise NotImplementedError

    async def navigate(self, handle: Any, url: str, timeout: float) -> NavigationInfo:
        raise NotImplementedError

    async def content(self, handle: Any) -> str:
        raise NotImplementedError

    async def timing(self, handle: Any) -> Dict[str, Any]:
        raise NotImplementedError

    async def fetch_initial(self, url: str, timeout: float) -> InitialFetch:
        raise NotImplementedError

    async def shutdown(self) -> None:
        """Release driver-wide resources."""


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


class RenderSession:
    """One pooled browser context and its lifecycle/health state."""

    _ids = itertools.count(1)

    def __init__(
        self,
        driver: RenderDriver,
        handle: Any,
        *,
        debounce: float = 2.0,
        probe_timeout: float = 5.0,
        sleep: SleepFn = asyncio.sleep,
    ):
        self.id = next(RenderSession._ids)
        self.handle = handle
        self.state = SessionState.idle
        self.health = ConnectionHealth.connected
        self.renders = 0
        self._driver = driver
        self._debounce = debounce
        self._probe_timeout = probe_timeout
        self._sleep = sleep

    def __repr__(self) -> str:
        return f"<RenderSession {self.id} {self.state.value}/{self.health.value}>"

    @property
    def is_disposed(self) -> bool:
        return self.state is SessionState.disposed

    def transition(self, new_state: SessionState) -> None:
        if new_state not in _TRANSITIONS[self.state]:
            raise RuntimeError(
                f"Illegal session transition {self.state.value} -> {new_state.value}"
            )
        LOGGER.debug("Session %d: %s -> %s", self.id, self.state.value, new_state.value)
        self.state = new_state

    def signal_disconnect(self) -> None:
        """Record a raw disconnect signal from the driver."""
        if self.health is ConnectionHealth.connected:
            LOGGER.debug("Session %d: suspected disconnect", self.id)
            self.health = ConnectionHealth.suspected_disconnect

    async def _probe(self) -> bool:
        try:
            return bool(
                await asyncio.wait_for(
                    self._driver.probe(self.handle), timeout=self._probe_timeout
                )
            )
        except (asyncio.TimeoutError, OSError, RuntimeError) as exc:
            LOGGER.debug("Session %d probe failed: %r", self.id, exc)
            return False

    async def is_responsive(self) -> bool:
        """Single probe without debounce, used to validate a session before reuse."""
        if self.is_disposed:
            return False
        return await self._probe()

    async def ensure_connected(self, url: Optional[str] = None) -> None:
        """Probe the session, debouncing once before declaring it disconnected.

        Raises:
            ConfirmedDisconnect: If the probe fails again after the debounce
                window. The session is disposed before raising.
        """
        if self.is_disposed:
            raise ConfirmedDisconnect(self.id, url)

        if self.health is ConnectionHealth.connected:
            if await self._probe():
                return
            self.health = ConnectionHealth.suspected_disconnect
            LOGGER.debug("Session %d: probe failed, waiting %.1fs", self.id, self._debounce)

        await self._sleep(self._debounce)
        if await self._probe():
            LOGGER.debug("Session %d: recovered after debounce", self.id)
            self.health = ConnectionHealth.connected
            return

        self.health = ConnectionHealth.confirmed_disconnect
        LOGGER.warning("Session %d: disconnect confirmed", self.id)
        await self.dispose()
        raise ConfirmedDisconnect(self.id, url)

    async def dispose(self) -> None:
        if self.is_disposed:
            return
        self.transition(SessionState.disposed)
        try:
            await self._driver.close(self.handle)
        except Exception as exc:
            LOGGER.warning("Closing session %d failed: %s", self.id, exc)


class RenderSessionPool:
    """Bounded pool of reusable render sessions."""

    def __init__(
        self,
        driver: RenderDriver,
        size: int,
        *,
        debounce: float = 2.0,
        probe_timeout: float = 5.0,
        sleep: SleepFn = asyncio.sleep,
    ):
        self.size = max(1, size)
        self._driver = driver
        self._semaphore = asyncio.Semaphore(self.size)
        self._idle: Deque[RenderSession] = deque()
        self._sessions: List[RenderSession] = []
        self._session_kwargs = {
            "debounce": debounce,
            "probe_timeout": probe_timeout,
            "sleep": sleep,
        }
        self.created = 0
        self.discarded = 0

    @property
    def live_sessions(self) -> int:
        return sum(1 for session in self._sessions if not session.is_disposed)

    async def _new_session(self) -> RenderSession:
        handle = await self._driver.open()
        session = RenderSession(self._driver, handle, **self._session_kwargs)
        self._sessions.append(session)
        self.created += 1
        LOGGER.debug("Opened render session %d", session.id)
        return session

    async def checkout(self) -> RenderSession:
        """Take a validated idle session, or open a new one, within the pool bound."""
        await self._semaphore.acquire()
        try:
            while self._idle:
                session = self._idle.popleft()
                if await session.is_responsive():
                    session.transition(SessionState.reused)
                    return session
                LOGGER.info("Discarding unresponsive render session %d", session.id)
                self.discarded += 1
                await session.dispose()
            return await self._new_session()
        except BaseException:
            self._semaphore.release()
            raise

    async def replace(self, session: RenderSession) -> RenderSession:
        """Dispose ``session`` and open a fresh one in the same pool slot."""
        await session.dispose()
        self.discarded += 1
        return await self._new_session()

    async def checkin(self, session: RenderSession) -> None:
        try:
            if (
                session.state is SessionState.ready
                and session.health is ConnectionHealth.connected
            ):
                self._idle.append(session)
            else:
                await session.dispose()
        finally:
            self._semaphore.release()

    async def close(self) -> None:
        self._idle.clear()
        for session in self._sessions:
            await session.dispose()
        self._sessions.clear()


# ---------------------------------------------------------------------------
# Manager
# ---------------------------------------------------------------------------


class RenderSessionManager:
    """Render URLs through pooled sessions with probing, retry and degradation.

    ``render`` never raises for per-page problems: a second timeout or a
    second confirmed disconnect yields a partial result built from the
    initial (pre-render) markup.
    """

    def __init__(
        self,
        driver: Optional[RenderDriver] = None,
        *,
        config: Optional[AuditConfig] = None,
        pool_size: Optional[int] = None,
        sleep: SleepFn = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config or AuditConfig()
        self.driver = driver or Crawl4AIDriver(self.config)
        self.pool = RenderSessionPool(
            self.driver,
            pool_size or self.config.tier.workers,
            debounce=self.config.debounce,
            probe_timeout=self.config.probe_timeout,
            sleep=sleep,
        )
        self._clock = clock
        self.stats: Dict[str, int] = {
            "renders": 0,
            "partial": 0,
            "timeouts": 0,
            "disconnects": 0,
        }

    async def __aenter__(self) -> "RenderSessionManager":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def close(self) -> None:
        await self.pool.close()
        await self.driver.shutdown()

    async def render(self, url: str, budget: Optional[float] = None) -> RenderResult:
        """Render ``url`` within ``budget`` seconds (default 30s)."""
        budget = budget or self.config.render_budget
        started = self._clock()
        self.stats["renders"] += 1

        initial = await self.driver.fetch_initial(
            url, min(budget, self.config.request_timeout)
        )

        try:
            try:
                result = await self._render_with_fresh_retry(url, budget, initial)
            except RenderTimeout as exc:
                self.stats["timeouts"] += 1
                retry_budget = min(budget, self.config.retry_budget)
                LOGGER.warning("%s; retrying with %.1fs budget", exc, retry_budget)
                result = await self._render_with_fresh_retry(url, retry_budget, initial)
        except RenderTimeout as exc:
            self.stats["timeouts"] += 1
            return self._partial(url, initial, "render timeout", started, exc)
        except ConfirmedDisconnect as exc:
            return self._partial(url, initial, "render session disconnected", started, exc)

        result.elapsed = round(self._clock() - started, 3)
        return result

    def _partial(
        self,
        url: str,
        initial: InitialFetch,
        error: str,
        started: float,
        exc: Exception,
    ) -> RenderResult:
        self.stats["partial"] += 1
        LOGGER.warning("Falling back to initial markup for %s: %s", url, exc)
        return RenderResult(
            request_url=url,
            final_url=initial.final_url or url,
            status_code=initial.status_code,
            initial_markup=initial.markup,
            rendered_markup=initial.markup,
            headers=dict(initial.headers),
            partial=True,
            error=initial.error or error,
            elapsed=round(self._clock() - started, 3),
        )

    async def _render_with_fresh_retry(
        self, url: str, budget: float, initial: InitialFetch
    ) -> RenderResult:
        session = await self.pool.checkout()
        try:
            try:
                return await self._render_once(session, url, budget, initial)
            except ConfirmedDisconnect as exc:
                self.stats["disconnects"] += 1
                LOGGER.warning("%s; retrying with a fresh session", exc)
                session = await self.pool.replace(session)
                return await self._render_once(session, url, budget, initial)
        finally:
            await self.pool.checkin(session)

    async def _render_once(
        self,
        session: RenderSession,
        url: str,
        budget: float,
        initial: InitialFetch,
    ) -> RenderResult:
        try:
            return await asyncio.wait_for(
                self._drive(session, url, budget, initial), timeout=budget
            )
        except asyncio.TimeoutError as exc:
            await session.dispose()
            raise RenderTimeout(url, budget) from exc
        except RenderTimeout:
            await session.dispose()
            raise

    async def _navigate(self, session: RenderSession, url: str, budget: float) -> NavigationInfo:
        try:
            return await self.driver.navigate(session.handle, url, budget)
        except ConnectionError as exc:
            LOGGER.debug("Session %d lost connection during navigation: %s", session.id, exc)
            session.signal_disconnect()
        # A transient drop recovers within the debounce window; try once more.
        await session.ensure_connected(url)
        try:
            return await self.driver.navigate(session.handle, url, budget)
        except ConnectionError as exc:
            session.health = ConnectionHealth.confirmed_disconnect
            await session.dispose()
            raise ConfirmedDisconnect(session.id, url) from exc

    async def _drive(
        self,
        session: RenderSession,
        url: str,
        budget: float,
        initial: InitialFetch,
    ) -> RenderResult:
        await session.ensure_connected(url)
        session.transition(SessionState.navigating)
        navigation = await self._navigate(session, url, budget)

        session.transition(SessionState.stabilizing)
        await session.ensure_connected(url)
        markup = await self.driver.content(session.handle)
        await session.ensure_connected(url)
        timing = await self.driver.timing(session.handle)

        session.transition(SessionState.ready)
        session.renders += 1
        return RenderResult(
            request_url=url,
            final_url=navigation.final_url or initial.final_url or url,
            status_code=navigation.status_code or initial.status_code,
            initial_markup=initial.markup,
            rendered_markup=markup or initial.markup,
            timing=timing,
            headers=dict(navigation.headers or initial.headers),
        )


# ---------------------------------------------------------------------------
# Crawl4AI driver
# ---------------------------------------------------------------------------

_PROBE_URL = "raw:<html><body>ok</body></html>"

_DISCONNECT_MARKERS = (
    "target closed",
    "has been closed",
    "connection closed",
    "browser closed",
    "disconnected",
)


@dataclass
class _CrawlerHandle:
    crawler: AsyncWebCrawler
    last_result: Any = None


def _first_result(container: Any) -> Any:
    try:
        return container[0]
    except (IndexError, KeyError):
        return None
    except TypeError:
        return container


def _find_timing_payload(value: Any) -> Dict[str, Any]:
    """Locate the metrics object returned by the timing snippet."""
    if isinstance(value, dict):
        if any(key in value for key in ("lcp", "fcp", "cls", "ttfb")):
            return value
        for nested in value.values():
            found = _find_timing_payload(nested)
            if found:
                return found
    elif isinstance(value, list):
        for item in value:
            found = _find_timing_payload(item)
            if found:
                return found
    return {}


class Crawl4AIDriver(RenderDriver):
    """Render driver backed by crawl4ai's AsyncWebCrawler and httpx."""

    def __init__(
        self,
        config: Optional[AuditConfig] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.config = config or AuditConfig()
        self._client = client
        self._owns_client = client is None

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                headers={"User-Agent": self.config.user_agent},
                follow_redirects=True,
                timeout=self.config.request_timeout,
            )
        return self._client

    async def open(self) -> _CrawlerHandle:
        crawler = AsyncWebCrawler(config=build_browser_config(self.config))
        await crawler.start()
        return _CrawlerHandle(crawler=crawler)

    async def close(self, handle: _CrawlerHandle) -> None:
        await handle.crawler.close()

    async def probe(self, handle: _CrawlerHandle) -> bool:
        container = await handle.crawler.arun(url=_PROBE_URL, config=build_probe_run_config())
        result = _first_result(container)
        return bool(result is not None and getattr(result, "success", False))

    async def navigate(self, handle: _CrawlerHandle, url: str, timeout: float) -> NavigationInfo:
        container = await handle.crawler.arun(url=url, config=build_render_run_config(timeout))
        result = _first_result(container)
        if result is None:
            raise ConnectionError(f"Crawler returned no result for {url}")

        error = str(getattr(result, "error_message", "") or "")
        if not getattr(result, "success", False):
            lowered = error.lower()
            if any(marker in lowered for marker in _DISCONNECT_MARKERS):
                raise ConnectionError(error)
            if "timeout" in lowered:
                raise RenderTimeout(url, timeout)
            LOGGER.debug("Render of %s unsuccessful: %s", url, error)

        handle.last_result = result
        return NavigationInfo(
            final_url=str(getattr(result, "redirected_url", None) or result.url or url),
            status_code=int(getattr(result, "status_code", None) or 0),
            headers=dict(getattr(result, "response_headers", None) or {}),
        )

    async def content(self, handle: _CrawlerHandle) -> str:
        if handle.last_result is None:
            return ""
        return str(getattr(handle.last_result, "html", "") or "")

    async def timing(self, handle: _CrawlerHandle) -> Dict[str, Any]:
        if handle.last_result is None:
            return {}
        return _find_timing_payload(getattr(handle.last_result, "js_execution_result", None))

    async def fetch_initial(self, url: str, timeout: float) -> InitialFetch:
        try:
            response = await self._http().get(url, timeout=timeout)
        except httpx.HTTPError as exc:
            LOGGER.debug("Initial fetch of %s failed: %s", url, exc)
            return InitialFetch(url=url, final_url=url, status_code=0, error=str(exc) or type(exc).__name__)
        return InitialFetch(
            url=url,
            final_url=str(response.url),
            status_code=response.status_code,
            markup=response.text,
            headers=dict(response.headers),
        )

    async def shutdown(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
