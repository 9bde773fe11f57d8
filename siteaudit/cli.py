"""Command-line interface for the site audit."""

from __future__ import annotations

import argparse
import asyncio
import logging
import shutil
import sys
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

from .cli_config import load_config
from .cli_output import write_report
from .config import TIERS, AuditConfig
from .document import AuditResult
from .site import SiteCrawlOptions

# Configuration directory for global CLI usage
CONFIG_DIR = Path.home() / ".config" / "siteaudit"
CONFIG_ENV_FILE = CONFIG_DIR / ".env"

EXIT_CODES = {"success": 0, "failed": 1, "partial": 2}


def _load_config() -> Optional[Path]:
    """Load .env from the working directory or ~/.config/siteaudit/.env."""
    return load_config(
        config_dir=CONFIG_DIR,
        config_env_file=CONFIG_ENV_FILE,
        cwd=Path.cwd(),
        load_env=load_dotenv,
        copy_file=shutil.copy,
    )


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%H:%M:%S",
    )


def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="site-audit",
        description="Crawl a website and report SEO issues, scores and keyword gaps.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""\
Examples:
  # Markdown report to stdout
  site-audit https://example.com

  # Starter tier, JSON report to a file
  site-audit https://example.com --tier starter --json -o report.json

  # Compare against known competitors
  site-audit https://example.com --competitor https://rival.com --competitor https://other.com

  # Include PageSpeed Insights (reads PAGESPEED_INSIGHTS_API_KEY)
  site-audit https://example.com --pagespeed

Exit codes: 0 success, 2 partial, 1 failed.
""",
    )

    parser.add_argument("url", help="URL of the site to audit")
    parser.add_argument(
        "--tier",
        choices=sorted(TIERS),
        default=None,
        help="Service tier (default: $SITEAUDIT_TIER or 'default')",
    )
    parser.add_argument(
        "--competitor",
        action="append",
        dest="competitors",
        default=[],
        metavar="URL",
        help="Competitor URL to compare against (repeatable)",
    )
    parser.add_argument(
        "--no-discover",
        action="store_true",
        help="Do not discover competitors when none are given",
    )
    parser.add_argument(
        "--pagespeed",
        action="store_true",
        help="Fetch PageSpeed Insights metrics for the primary URL",
    )
    parser.add_argument(
        "--budget",
        type=float,
        default=None,
        metavar="SECONDS",
        help="Render time budget per page (default: 30)",
    )
    parser.add_argument(
        "--max-pages",
        type=int,
        default=None,
        help="Override the tier's page limit",
    )
    parser.add_argument(
        "--max-depth",
        type=int,
        default=None,
        help="Override the tier's crawl depth",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        dest="json_output",
        help="Output the full result as JSON",
    )
    parser.add_argument(
        "-o",
        "--output",
        type=str,
        default=None,
        help="Write the report to this file instead of stdout",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )

    return parser.parse_args(argv)


def _build_config(args: argparse.Namespace) -> AuditConfig:
    overrides = {
        "tier": args.tier,
        "competitors": list(args.competitors),
        "discover_competitors": not args.no_discover,
    }
    if args.pagespeed:
        overrides["pagespeed"] = True
    if args.budget:
        overrides["render_budget"] = args.budget
    return AuditConfig.from_env(**overrides)


async def _run_audit_async(args: argparse.Namespace) -> AuditResult:
    from .audit import run_audit_async

    config = _build_config(args)
    options = SiteCrawlOptions(max_pages=args.max_pages, max_depth=args.max_depth)
    logging.info("Auditing %s (tier=%s)", args.url, config.tier.name)
    return await run_audit_async(args.url, config=config, options=options)


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point for the site-audit command."""
    args = _parse_args(argv)
    _setup_logging(args.verbose)
    _load_config()

    try:
        result = asyncio.run(_run_audit_async(args))
    except KeyboardInterrupt:
        logging.info("Interrupted")
        return 130
    except Exception as exc:
        logging.error("Error: %s", exc)
        if args.verbose:
            logging.exception("Full traceback:")
        return 1

    write_report(result, args.output, args.json_output)
    if result.status != "success":
        for reason in result.outcome.reasons:
            logging.warning("%s: %s", result.status, reason)
    return EXIT_CODES.get(result.status, 1)


if __name__ == "__main__":
    sys.exit(main())
