"""Tests for siteaudit.render module."""

from __future__ import annotations

import asyncio

import pytest

from siteaudit.config import AuditConfig
from siteaudit.errors import ConfirmedDisconnect
from siteaudit.render import (
    ConnectionHealth,
    RenderSession,
    RenderSessionManager,
    SessionState,
    _find_timing_payload,
)

URL = "https://example.com/"


class _Sleeps(list):
    async def __call__(self, delay: float) -> None:
        self.append(delay)


def _manager(driver, **kwargs):
    sleeps = _Sleeps()
    manager = RenderSessionManager(
        driver, config=kwargs.pop("config", AuditConfig()), sleep=sleeps, **kwargs
    )
    return manager, sleeps


class TestRenderSession:
    def test_illegal_transition(self, fake_driver):
        session = RenderSession(fake_driver(), handle={})
        with pytest.raises(RuntimeError):
            session.transition(SessionState.ready)

    def test_lifecycle(self, fake_driver):
        session = RenderSession(fake_driver(), handle={})
        for state in (
            SessionState.navigating,
            SessionState.stabilizing,
            SessionState.ready,
            SessionState.reused,
            SessionState.navigating,
        ):
            session.transition(state)
        assert session.state is SessionState.navigating

    @pytest.mark.asyncio
    async def test_disposed_is_terminal(self, fake_driver):
        driver = fake_driver()
        session = RenderSession(driver, handle={})
        await session.dispose()
        await session.dispose()
        assert driver.closed == 1
        with pytest.raises(RuntimeError):
            session.transition(SessionState.navigating)
        with pytest.raises(ConfirmedDisconnect):
            await session.ensure_connected(URL)

    @pytest.mark.asyncio
    async def test_debounce_recovers(self, fake_driver):
        sleeps = _Sleeps()
        session = RenderSession(
            fake_driver(probe_results=[False, True]), handle={}, sleep=sleeps
        )
        await session.ensure_connected(URL)
        assert session.health is ConnectionHealth.connected
        assert sleeps == [2.0]

    @pytest.mark.asyncio
    async def test_second_failure_confirms(self, fake_driver):
        sleeps = _Sleeps()
        driver = fake_driver(probe_results=[False, False])
        session = RenderSession(driver, handle={}, sleep=sleeps)
        with pytest.raises(ConfirmedDisconnect) as excinfo:
            await session.ensure_connected(URL)
        assert excinfo.value.url == URL
        assert session.health is ConnectionHealth.confirmed_disconnect
        assert session.is_disposed
        assert driver.closed == 1


class TestRenderSessionManager:
    @pytest.mark.asyncio
    async def test_render_success(self, fake_driver, fake_page):
        driver = fake_driver(
            {
                URL: fake_page(
                    html="<html><body><p>rendered</p></body></html>",
                    initial_html="<html><body></body></html>",
                    timing={"lcp": 1200},
                )
            }
        )
        manager, sleeps = _manager(driver)
        result = await manager.render(URL)
        await manager.close()

        assert not result.partial
        assert result.status_code == 200
        assert "rendered" in result.rendered_markup
        assert result.initial_markup == "<html><body></body></html>"
        assert result.timing == {"lcp": 1200}
        assert sleeps == []
        assert driver.probes == 3
        assert driver.shutdowns == 1
        assert driver.closed == driver.opened

    @pytest.mark.asyncio
    async def test_unknown_url_is_404_not_partial(self, fake_driver):
        manager, _ = _manager(fake_driver())
        result = await manager.render("https://example.com/missing")
        assert result.status_code == 404
        assert not result.partial

    @pytest.mark.asyncio
    async def test_transient_probe_failure_is_debounced(self, fake_driver):
        driver = fake_driver({URL: "<html><body>ok</body></html>"}, probe_results=[False, True])
        manager, sleeps = _manager(driver)
        result = await manager.render(URL)

        assert not result.partial
        assert sleeps == [2.0]
        assert manager.stats["disconnects"] == 0
        assert driver.opened == 1

    @pytest.mark.asyncio
    async def test_confirmed_disconnect_retries_with_fresh_session(self, fake_driver):
        driver = fake_driver({URL: "<html><body>ok</body></html>"}, probe_results=[False, False])
        manager, _ = _manager(driver)
        result = await manager.render(URL)

        assert not result.partial
        assert driver.opened == 2
        assert manager.stats["disconnects"] == 1
        assert manager.pool.discarded == 1

    @pytest.mark.asyncio
    async def test_second_disconnect_degrades_to_partial(self, fake_driver, fake_page):
        driver = fake_driver(
            {URL: fake_page(html="<html><body>rendered</body></html>", initial_html="<p>raw</p>")},
            probe_results=[False] * 4,
        )
        manager, _ = _manager(driver)
        result = await manager.render(URL)

        assert result.partial
        assert result.error == "render session disconnected"
        assert result.rendered_markup == "<p>raw</p>"
        assert result.status_code == 200
        assert manager.stats["partial"] == 1

    @pytest.mark.asyncio
    async def test_navigation_connection_drop_recovers(self, fake_driver, fake_page):
        page = fake_page(html="<html>ok</html>", navigate_errors=[ConnectionError("target closed")])
        driver = fake_driver({URL: page})
        manager, sleeps = _manager(driver)
        result = await manager.render(URL)

        assert not result.partial
        assert sleeps == [2.0]
        assert driver.navigations == [URL, URL]

    @pytest.mark.asyncio
    async def test_timeout_retried_once(self, fake_driver, fake_page):
        driver = fake_driver({URL: fake_page(html="<html>ok</html>", delays=[0.2])})
        manager, _ = _manager(driver)
        result = await manager.render(URL, budget=0.1)

        assert not result.partial
        assert manager.stats["timeouts"] == 1
        assert driver.opened == 2

    @pytest.mark.asyncio
    async def test_second_timeout_degrades_to_partial(self, fake_driver, fake_page):
        driver = fake_driver(
            {URL: fake_page(html="<html>ok</html>", initial_html="<p>raw</p>", delays=[0.2, 0.2])}
        )
        manager, _ = _manager(driver)
        result = await manager.render(URL, budget=0.1)

        assert result.partial
        assert result.error == "render timeout"
        assert result.rendered_markup == "<p>raw</p>"
        assert manager.stats["timeouts"] == 2

    @pytest.mark.asyncio
    async def test_sessions_are_reused(self, fake_driver):
        driver = fake_driver(
            {URL: "<html>a</html>", "https://example.com/b": "<html>b</html>"}
        )
        manager, _ = _manager(driver)
        await manager.render(URL)
        await manager.render("https://example.com/b")

        assert driver.opened == 1
        assert manager.pool.live_sessions == 1

    @pytest.mark.asyncio
    async def test_unresponsive_idle_session_discarded(self, fake_driver):
        driver = fake_driver({URL: "<html>a</html>"})
        manager, _ = _manager(driver)
        await manager.render(URL)
        driver.probe_results.extend([False])
        await manager.render(URL)

        assert driver.opened == 2
        assert manager.pool.discarded == 1

    @pytest.mark.asyncio
    async def test_pool_bound(self, fake_driver, fake_page):
        pages = {
            f"https://example.com/p{i}": fake_page(html="<html>x</html>", delays=[0.02])
            for i in range(6)
        }
        driver = fake_driver(pages)
        manager, _ = _manager(driver, pool_size=2)
        results = await asyncio.gather(*(manager.render(url) for url in pages))

        assert all(not result.partial for result in results)
        assert driver.max_active <= 2
        assert driver.opened <= 2


class TestTimingPayload:
    def test_nested(self):
        payload = {"results": [{"success": True, "result": {"lcp": 1000, "cls": 0.1}}]}
        assert _find_timing_payload(payload) == {"lcp": 1000, "cls": 0.1}

    def test_missing(self):
        assert _find_timing_payload(None) == {}
        assert _find_timing_payload({"results": []}) == {}
