"""Tests for siteaudit.config module."""

from crawl4ai.async_configs import CacheMode

from siteaudit.config import (
    DEFAULT_WEIGHTS,
    TIERS,
    TIMING_SNIPPET,
    AuditConfig,
    build_browser_config,
    build_probe_run_config,
    build_render_run_config,
    get_tier,
)


class TestTiers:
    def test_limits(self):
        assert (TIERS["starter"].max_pages, TIERS["starter"].max_depth) == (3, 2)
        assert (TIERS["standard"].max_pages, TIERS["standard"].max_depth) == (20, 3)
        assert (TIERS["advanced"].max_pages, TIERS["advanced"].max_depth) == (50, 5)
        assert (TIERS["default"].max_pages, TIERS["default"].max_depth) == (50, 3)

    def test_weights_sum_to_one(self):
        for tier in TIERS.values():
            assert abs(sum(tier.weights.values()) - 1.0) < 1e-9
        assert set(DEFAULT_WEIGHTS) == {
            "technical",
            "on_page",
            "content",
            "accessibility",
            "performance",
        }

    def test_get_tier_case_insensitive(self):
        assert get_tier(" Starter ").name == "starter"

    def test_get_tier_unknown_falls_back(self):
        assert get_tier("platinum").name == "default"
        assert get_tier(None).name == "default"


class TestAuditConfig:
    def test_defaults(self):
        config = AuditConfig()
        assert config.tier.name == "default"
        assert config.render_budget == 30.0
        assert config.debounce == 2.0
        assert config.retry_budget == 15.0
        assert config.pagespeed is False

    def test_retry_budget_floor(self):
        assert AuditConfig(render_budget=4.0).retry_budget == 5.0

    def test_from_env_tier(self, monkeypatch):
        monkeypatch.setenv("SITEAUDIT_TIER", "standard")
        monkeypatch.delenv("PAGESPEED_INSIGHTS_API_KEY", raising=False)
        config = AuditConfig.from_env()
        assert config.tier.name == "standard"
        assert config.pagespeed is False

    def test_from_env_explicit_tier_wins(self, monkeypatch):
        monkeypatch.setenv("SITEAUDIT_TIER", "standard")
        assert AuditConfig.from_env(tier="starter").tier.name == "starter"

    def test_from_env_pagespeed_key(self, monkeypatch):
        monkeypatch.setenv("PAGESPEED_INSIGHTS_API_KEY", "key")
        assert AuditConfig.from_env().pagespeed is True
        assert AuditConfig.from_env(pagespeed=False).pagespeed is False

    def test_from_env_overrides(self, monkeypatch):
        monkeypatch.delenv("SITEAUDIT_TIER", raising=False)
        config = AuditConfig.from_env(
            competitors=["https://rival.com"], discover_competitors=False
        )
        assert config.competitors == ["https://rival.com"]
        assert config.discover_competitors is False


class TestBuilders:
    def test_render_run_config(self):
        config = build_render_run_config(12.5)
        assert config.page_timeout == 12500
        assert config.cache_mode == CacheMode.BYPASS
        assert config.wait_until == "networkidle"
        assert config.js_code == TIMING_SNIPPET

    def test_probe_run_config(self):
        assert build_probe_run_config().cache_mode == CacheMode.BYPASS

    def test_browser_config(self):
        browser = build_browser_config(AuditConfig(user_agent="TestBot/2.0"))
        assert browser.headless is True
        assert browser.user_agent == "TestBot/2.0"
