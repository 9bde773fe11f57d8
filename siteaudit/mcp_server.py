"""MCP Server for the site audit.

Provides an ``audit_site`` tool that crawls a website and returns its SEO
issues, scores, competitor keyword gaps and performance metrics.

Supports both STDIO and HTTP transports.

Usage:
    # STDIO (for Claude Desktop, etc.)
    python -m siteaudit.mcp_server

    # HTTP (for remote access)
    python -m siteaudit.mcp_server --transport http --port 8000

    # Or via FastMCP CLI
    fastmcp run siteaudit/mcp_server.py:mcp --transport http --port 8000

Environment Variables:
    SITEAUDIT_TIER: Default service tier (default: default)
    SEARXNG_URL: SearXNG instance used for competitor discovery
    SEARXNG_USERNAME: Optional basic auth username
    SEARXNG_PASSWORD: Optional basic auth password
    PAGESPEED_INSIGHTS_API_KEY: Enables PageSpeed Insights metrics
"""

from __future__ import annotations

import argparse
import logging
import os
from enum import Enum
from typing import List, Optional

from dotenv import load_dotenv
from fastmcp import FastMCP

from .cli_output import format_report_json, format_report_markdown
from .config import AuditConfig

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
    datefmt="%H:%M:%S",
)
LOGGER = logging.getLogger(__name__)

# Load .env before reading environment variables
load_dotenv()

# Create the MCP server
mcp = FastMCP(
    name="Site Audit",
    instructions="""
    An SEO site audit server that provides:

    - audit_site: Crawl a website (rendering JavaScript), then report
      consolidated issues, category scores, competitor keyword gaps and
      PageSpeed metrics.

    Output formats:
    - markdown: Readable report (default)
    - json: Full result including every page record and site fact

    A failed crawl is reported with status "failed" and no scores.
    """,
)


class OutputFormat(str, Enum):
    """Output format for audit results."""

    markdown = "markdown"
    json = "json"


async def audit_site(
    url: str,
    tier: Optional[str] = None,
    competitors: Optional[List[str]] = None,
    output_format: str = "markdown",
    discover_competitors: bool = True,
    pagespeed: Optional[bool] = None,
) -> str:
    """
    Audit a website for SEO issues and return the report.

    Args:
        url: URL of the site to audit
        tier: Service tier - "starter", "standard", "advanced" or "default"
            (default: $SITEAUDIT_TIER or "default")
        competitors: Competitor URLs to compare keywords against. When empty,
            competitors are discovered via SearXNG or the industry taxonomy.
        output_format: Output format - "markdown" (default) or "json"
        discover_competitors: Discover competitors when none are given (default: true)
        pagespeed: Fetch PageSpeed Insights metrics (default: enabled when
            PAGESPEED_INSIGHTS_API_KEY is set)

    Returns:
        The audit report in the specified format.

    Examples:
        audit_site(url="https://example.com")
        audit_site(url="https://example.com", tier="starter", output_format="json")
        audit_site(url="https://example.com", competitors=["https://rival.com"])
    """
    from .audit import run_audit_async

    try:
        fmt = OutputFormat(output_format.lower())
    except ValueError:
        fmt = OutputFormat.markdown

    overrides = {
        "tier": tier,
        "competitors": list(competitors or []),
        "discover_competitors": discover_competitors,
    }
    if pagespeed is not None:
        overrides["pagespeed"] = pagespeed
    config = AuditConfig.from_env(**overrides)

    LOGGER.info("Auditing %s (tier=%s)", url, config.tier.name)
    result = await run_audit_async(url, config=config)
    LOGGER.info("Audit of %s finished with status %s", url, result.status)

    if fmt == OutputFormat.json:
        return format_report_json(result)
    return format_report_markdown(result)


mcp.tool(audit_site)


# =============================================================================
# CLI ENTRY POINT
# =============================================================================


def main():
    """CLI entry point for running the MCP server."""
    parser = argparse.ArgumentParser(
        description="Run the site audit MCP server.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Environment Variables:
    SITEAUDIT_TIER              Default service tier
    SEARXNG_URL                 SearXNG instance URL (default: http://localhost:8888)
    PAGESPEED_INSIGHTS_API_KEY  Enables PageSpeed Insights metrics

Examples:
    # STDIO transport (default, for Claude Desktop)
    python -m siteaudit.mcp_server

    # HTTP transport (for remote access)
    python -m siteaudit.mcp_server --transport http --port 8000

    # Custom host/port
    python -m siteaudit.mcp_server --transport http --host 0.0.0.0 --port 9000
""",
    )
    parser.add_argument(
        "--transport",
        choices=["stdio", "http"],
        default="stdio",
        help="Transport protocol (default: stdio)",
    )
    parser.add_argument(
        "--host",
        default="127.0.0.1",
        help="Host to bind to for HTTP transport (default: 127.0.0.1)",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=8000,
        help="Port to bind to for HTTP transport (default: 8000)",
    )

    args = parser.parse_args()

    LOGGER.info("SearXNG URL: %s", os.getenv("SEARXNG_URL", "http://localhost:8888"))
    LOGGER.info(
        "PageSpeed Insights: %s",
        "Enabled" if os.getenv("PAGESPEED_INSIGHTS_API_KEY") else "Disabled",
    )

    if args.transport == "http":
        LOGGER.info("Starting MCP server on http://%s:%d/mcp", args.host, args.port)
        mcp.run(transport="http", host=args.host, port=args.port)
    else:
        LOGGER.info("Starting MCP server with STDIO transport")
        mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
