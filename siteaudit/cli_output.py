"""Output and formatting helpers for the site-audit command."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from .document import AuditResult, CompetitorReport, Issue, PerformanceReport, ScoreReport

STATUS_HEADINGS = {
    "success": "Audit complete",
    "partial": "Audit partially complete",
    "failed": "Audit failed",
}

SCORE_LABELS = (
    ("overall", "Overall"),
    ("technical", "Technical"),
    ("on_page", "On-page"),
    ("content", "Content"),
    ("accessibility", "Accessibility"),
    ("performance", "Performance"),
)

MAX_LISTED_PAGES = 5
MAX_LISTED_KEYWORDS = 15


def result_to_dict(result: AuditResult, include_timestamp: bool = True) -> Dict[str, Any]:
    """Convert an audit result to a JSON-serializable dict."""
    return result.to_dict(include_timestamp=include_timestamp)


def format_report_json(result: AuditResult, include_timestamp: bool = True) -> str:
    return json.dumps(
        result_to_dict(result, include_timestamp),
        indent=2,
        ensure_ascii=False,
        sort_keys=True,
        default=str,
    )


def _format_scores(scores: ScoreReport) -> List[str]:
    lines = ["## Scores", "", "| Category | Score |", "|---|---|"]
    for field_name, label in SCORE_LABELS:
        lines.append(f"| {label} | {getattr(scores, field_name)} |")
    lines.append("")
    return lines


def _format_issue(issue: Issue) -> List[str]:
    lines = [f"- **[{issue.severity.value}] {issue.message}** ({issue.category.value})"]
    pages = issue.affected_pages
    if pages:
        shown = ", ".join(pages[:MAX_LISTED_PAGES])
        more = len(pages) - MAX_LISTED_PAGES
        suffix = f" and {more} more" if more > 0 else ""
        lines.append(f"  - Pages: {shown}{suffix}")
    for fix in issue.fixes:
        lines.append(f"  - Fix: {fix}")
    return lines


def _format_issues(issues: List[Issue]) -> List[str]:
    lines = [f"## Issues ({len(issues)})", ""]
    if not issues:
        lines.extend(["_No issues found._", ""])
        return lines
    for issue in issues:
        lines.extend(_format_issue(issue))
    lines.append("")
    return lines


def _keyword_line(label: str, keywords: List[str]) -> str:
    shown = ", ".join(keywords[:MAX_LISTED_KEYWORDS]) or "none"
    more = len(keywords) - MAX_LISTED_KEYWORDS
    if more > 0:
        shown = f"{shown} (+{more} more)"
    return f"- **{label}:** {shown}"


def _format_competitors(report: CompetitorReport) -> List[str]:
    lines = [f"## Competitors ({report.source})", ""]
    if not report.is_available:
        lines.extend([f"_Competitor analysis unavailable: {report.reason}_", ""])
    else:
        lines.append(_keyword_line("Shared keywords", report.shared_keywords))
        lines.append(_keyword_line("Keyword gaps", report.keyword_gaps))
        lines.append(_keyword_line("Target-only keywords", report.target_only_keywords))
        lines.append("")
    for diff in report.competitors:
        if diff.status == "available":
            lines.append(
                f"- {diff.competitor_url}: {diff.pages_analyzed} page(s), "
                f"{len(diff.shared_keywords)} shared, {len(diff.keyword_gaps)} gap(s)"
            )
        else:
            lines.append(f"- {diff.competitor_url}: unavailable ({diff.reason})")
    if report.competitors:
        lines.append("")
    return lines


def _format_performance(report: PerformanceReport) -> List[str]:
    lines = [f"## Performance ({report.strategy})", ""]
    if report.status != "available":
        lines.extend([f"_Performance service unavailable: {report.error}_", ""])
        return lines
    if report.score is not None:
        lines.append(f"- **Score:** {report.score}")
    for name, value in report.timing.to_dict().items():
        if name in ("source", "flags") or value is None:
            continue
        lines.append(f"- {name}: {value}")
    lines.append("")
    return lines


def format_report_markdown(result: AuditResult) -> str:
    """Format an audit result as markdown.

    Success, partial and failed outcomes get distinct headings. Partial and
    failed outcomes list their reasons right under the heading.
    """
    outcome = result.outcome
    heading = STATUS_HEADINGS.get(outcome.status, outcome.status)
    lines = [f"# {heading}: {result.url}", ""]
    lines.append(
        f"_Tier: {result.tier} | Pages: {len(outcome.valid_pages)} valid, "
        f"{len(outcome.error_pages)} error_"
    )
    lines.append("")

    if outcome.status != "success":
        label = "Failure" if outcome.status == "failed" else "Warning"
        for reason in outcome.reasons:
            lines.append(f"> **{label}:** {reason}")
        lines.append("")

    if result.scores is not None:
        lines.extend(_format_scores(result.scores))
    elif outcome.status == "failed":
        lines.extend(["_No scores: the site could not be crawled._", ""])

    lines.extend(_format_issues(result.issues))

    if result.competitors is not None:
        lines.extend(_format_competitors(result.competitors))
    if result.performance is not None:
        lines.extend(_format_performance(result.performance))

    return "\n".join(lines).rstrip() + "\n"


def write_report(result: AuditResult, output: Optional[str], json_output: bool) -> None:
    """Write the report to ``output`` or stdout."""
    text = format_report_json(result) if json_output else format_report_markdown(result)
    if output is None:
        print(text)
        return
    path = Path(output)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text)
    logging.info("Wrote %s", path)
