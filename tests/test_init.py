from __future__ import annotations

import pytest

import siteaudit


def test_public_names_resolve() -> None:
    for name in siteaudit.__all__:
        assert getattr(siteaudit, name) is not None


def test_mcp_is_lazy_and_shared() -> None:
    from siteaudit import mcp_server

    assert siteaudit.mcp is mcp_server.mcp
    assert siteaudit.get_mcp_server() is mcp_server.mcp


def test_unknown_attribute() -> None:
    with pytest.raises(AttributeError):
        siteaudit.not_a_real_name


def test_sync_wrappers_are_exported() -> None:
    assert callable(siteaudit.run_audit)
    assert callable(siteaudit.crawl_site)
    assert siteaudit.get_tier("unknown").name == "default"
