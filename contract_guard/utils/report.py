"""Run reports.

Writes the run summary as JSON and Markdown, with endpoint coverage
statistics (by method, by API version, GET pass rate) computed against the
full catalog.
"""

import json
import re
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from .models import HTTP_METHODS, Endpoint, RunSummary

VERSION_PATTERN = re.compile(r"/api/(v[\d.]+)")


@dataclass
class VersionCoverage:
    total: int = 0
    tested: int = 0
    passing: int = 0


@dataclass
class CoverageStats:
    """Endpoint coverage of one run."""

    total: int = 0
    tested: int = 0
    by_method: dict[str, int] = field(default_factory=lambda: dict.fromkeys(HTTP_METHODS, 0))
    by_version: dict[str, VersionCoverage] = field(default_factory=dict)
    get_passing: int = 0
    get_failing: int = 0

    @property
    def untested(self) -> int:
        return self.total - self.tested

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "total": self.total,
            "tested": self.tested,
            "untested": self.untested,
            "by_method": dict(self.by_method),
            "by_version": {
                version: {"total": v.total, "tested": v.tested, "passing": v.passing}
                for version, v in sorted(self.by_version.items())
            },
            "get_results": {
                "total": self.by_method.get("GET", 0),
                "passing": self.get_passing,
                "failing": self.get_failing,
            },
        }


def api_version(path: str) -> str:
    """API version segment of a path (``v2``, ``v3.1``), or ``other``."""
    match = VERSION_PATTERN.search(path)
    return match.group(1) if match else "other"


def analyze_coverage(endpoints: Iterable[Endpoint], summary: RunSummary) -> CoverageStats:
    """Coverage of catalog endpoints by the executed results.

    An endpoint counts as tested when a result was produced for it; several
    results for the same endpoint (hierarchical runs) pass only if all pass.
    """
    outcomes: dict[str, bool] = {}
    for result in summary.results:
        if result.endpoint is None:
            continue
        key = result.endpoint.label
        outcomes[key] = outcomes.get(key, True) and result.passed

    stats = CoverageStats()

    for endpoint in endpoints:
        stats.total += 1
        stats.by_method[endpoint.method] = stats.by_method.get(endpoint.method, 0) + 1

        version = stats.by_version.setdefault(api_version(endpoint.path), VersionCoverage())
        version.total += 1

        passed = outcomes.get(endpoint.label)
        if passed is None:
            continue

        stats.tested += 1
        version.tested += 1
        if passed:
            version.passing += 1

        if endpoint.method == "GET":
            if passed:
                stats.get_passing += 1
            else:
                stats.get_failing += 1

    return stats


def _percentage(part: int, whole: int) -> str:
    return f"{part / whole * 100:.1f}%" if whole else "0%"


def build_report(summary: RunSummary, coverage: CoverageStats | None = None) -> dict[str, Any]:
    report = {"timestamp": datetime.now(tz=timezone.utc).isoformat(), **summary.to_dict()}
    if coverage is not None:
        report["coverage"] = coverage.to_dict()
    return report


def generate_json_report(summary: RunSummary, output_path: Path, coverage: CoverageStats | None = None) -> None:
    """Generate JSON report from run results."""
    output_path.parent.mkdir(parents=True, exist_ok=True)
    with output_path.open("w") as f:
        json.dump(build_report(summary, coverage), f, indent=2, default=str)
        f.write("\n")


def generate_markdown_report(
    summary: RunSummary,
    output_path: Path,
    coverage: CoverageStats | None = None,
) -> None:
    """Generate markdown report from run results."""
    lines = [
        "# API Contract Regression Report",
        "",
        f"**Generated**: {datetime.now(tz=timezone.utc).isoformat()}",
        "",
        "## Summary",
        "",
        "| Metric | Value |",
        "|--------|-------|",
        f"| Total | {summary.total} |",
        f"| Passed | {summary.passed} |",
        f"| Failed | {summary.failed} |",
        f"| Skipped | {summary.skipped} |",
        f"| Duration | {summary.duration / 1000:.2f}s |",
        "",
    ]

    if coverage is not None:
        lines.extend(
            [
                "## Coverage",
                "",
                f"Tested {coverage.tested} of {coverage.total} endpoints "
                f"({_percentage(coverage.tested, coverage.total)}).",
                "",
                "| Method | Endpoints |",
                "|--------|-----------|",
            ],
        )
        lines.extend(f"| {method} | {count} |" for method, count in coverage.by_method.items() if count)
        lines.append("")
        get_total = coverage.by_method.get("GET", 0)
        lines.append(
            f"GET endpoints passing: {coverage.get_passing}/{get_total} ({_percentage(coverage.get_passing, get_total)})",
        )
        lines.extend(["", "| API Version | Endpoints | Tested | Passing |", "|-------------|-----------|--------|---------|"])
        lines.extend(
            f"| {version} | {v.total} | {v.tested} | {v.passing} |" for version, v in sorted(coverage.by_version.items())
        )
        lines.append("")

    failed = [r for r in summary.results if not r.passed]
    if failed:
        lines.extend(["## Failed Tests", ""])
        for result in failed:
            label = result.endpoint.label if result.endpoint else result.resource
            lines.append(f"### ❌ {label}")
            lines.append("")
            lines.append(f"**Resource**: `{result.resource}`")
            lines.append("")

            if result.steps:
                lines.append("| Step | Method | URL | Status | Error |")
                lines.append("|------|--------|-----|--------|-------|")
                for step in result.steps:
                    status = str(step.status) if step.status is not None else "-"
                    lines.append(
                        f"| {step.step.value} | {step.method or '-'} | {step.url or '-'} | {status} | {step.error or ''} |",
                    )
                lines.append("")

            if result.differences:
                lines.append("**Differences**:")
                lines.extend(f"- `{d.path}` ({d.type.value}): {d.expected!r} -> {d.actual!r}" for d in result.differences)
                lines.append("")

    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_text("\n".join(lines))
