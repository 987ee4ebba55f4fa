"""Tests for run reports and coverage statistics."""

from __future__ import annotations

import json

import pytest

from contract_guard.utils.comparator import Difference, DiffType
from contract_guard.utils.models import Endpoint, RunSummary, StepName, TestResult, TestStep
from contract_guard.utils.report import (
    analyze_coverage,
    api_version,
    generate_json_report,
    generate_markdown_report,
)


@pytest.fixture
def endpoints():
    """Catalog endpoints across versions."""
    return [
        Endpoint("GET", "/api/v2/systems"),
        Endpoint("GET", "/api/v2/systems/{system}"),
        Endpoint("DELETE", "/api/v2/systems/{system}"),
        Endpoint("GET", "/api/v3.1/ingest/list/for/{id}"),
        Endpoint("POST", "/health"),
    ]


@pytest.fixture
def summary(endpoints):
    """A run with one passing and two failing tests."""
    results = [
        TestResult(resource="/api/v2", steps=(), passed=True, duration=12, endpoint=endpoints[0]),
        TestResult(
            resource="/api/v2",
            steps=(TestStep(StepName.GET, method="GET", url="https://h/api/v2/systems/1", status=500, error="HTTP 500"),),
            passed=False,
            differences=(Difference("name", "a", "b", DiffType.CHANGED),),
            endpoint=endpoints[1],
        ),
        TestResult(resource="/api/v3.1", steps=(), passed=False, endpoint=endpoints[3]),
    ]
    return RunSummary.from_results(results, skipped=2, duration=1500)


class TestApiVersion:
    """Test version extraction."""

    @pytest.mark.parametrize(
        ("path", "expected"),
        [("/api/v2/systems", "v2"), ("/api/v3.1/ingest", "v3.1"), ("/health", "other")],
    )
    def test_api_version(self, path, expected):
        """Test version segments and the fallback bucket."""
        assert api_version(path) == expected


class TestAnalyzeCoverage:
    """Test coverage statistics."""

    def test_totals(self, endpoints, summary):
        """Test tested and untested counts."""
        coverage = analyze_coverage(endpoints, summary)
        assert coverage.total == 5
        assert coverage.tested == 3
        assert coverage.untested == 2

    def test_by_method(self, endpoints, summary):
        """Test endpoint counts per method."""
        coverage = analyze_coverage(endpoints, summary)
        assert coverage.by_method["GET"] == 3
        assert coverage.by_method["DELETE"] == 1
        assert coverage.by_method["POST"] == 1
        assert coverage.by_method["PUT"] == 0

    def test_by_version(self, endpoints, summary):
        """Test per-version totals, tested and passing counts."""
        coverage = analyze_coverage(endpoints, summary)
        v2 = coverage.by_version["v2"]
        assert (v2.total, v2.tested, v2.passing) == (3, 2, 1)
        assert coverage.by_version["v3.1"].passing == 0
        assert coverage.by_version["other"].tested == 0

    def test_get_results(self, endpoints, summary):
        """Test GET passing and failing counts."""
        coverage = analyze_coverage(endpoints, summary)
        assert coverage.get_passing == 1
        assert coverage.get_failing == 2

    def test_repeated_endpoint_fails_if_any_fails(self, endpoints):
        """Test several results for one endpoint pass only if all pass."""
        results = [
            TestResult(resource="/a", steps=(), passed=True, endpoint=endpoints[0]),
            TestResult(resource="/b", steps=(), passed=False, endpoint=endpoints[0]),
        ]
        coverage = analyze_coverage(endpoints, RunSummary.from_results(results, 0, 0))
        assert coverage.tested == 1
        assert coverage.get_failing == 1


class TestGenerateReports:
    """Test report files."""

    def test_json_report(self, tmp_path, endpoints, summary):
        """Test the JSON report carries summary, results and coverage."""
        path = tmp_path / "out" / "report.json"
        generate_json_report(summary, path, analyze_coverage(endpoints, summary))

        data = json.loads(path.read_text())
        assert data["summary"] == {"total": 3, "passed": 1, "failed": 2, "skipped": 2, "duration_ms": 1500}
        assert len(data["results"]) == 3
        assert data["results"][1]["steps"][0]["status"] == 500
        assert data["coverage"]["get_results"] == {"total": 3, "passing": 1, "failing": 2}
        assert "timestamp" in data

    def test_json_report_without_coverage(self, tmp_path, summary):
        """Test coverage is omitted when not supplied."""
        path = tmp_path / "report.json"
        generate_json_report(summary, path)
        assert "coverage" not in json.loads(path.read_text())

    def test_markdown_report(self, tmp_path, endpoints, summary):
        """Test the Markdown report lists summary, coverage and failures."""
        path = tmp_path / "reports" / "report.md"
        generate_markdown_report(summary, path, analyze_coverage(endpoints, summary))

        content = path.read_text()
        assert "# API Contract Regression Report" in content
        assert "| Failed | 2 |" in content
        assert "| Duration | 1.50s |" in content
        assert "Tested 3 of 5 endpoints (60.0%)" in content
        assert "| v3.1 | 1 | 1 | 0 |" in content
        assert "### ❌ GET /api/v2/systems/{system}" in content
        assert "| GET | GET | https://h/api/v2/systems/1 | 500 | HTTP 500 |" in content
        assert "- `name` (changed): 'a' -> 'b'" in content
        assert "### ❌ GET /api/v2/systems\n" not in content

    def test_markdown_all_passed(self, tmp_path):
        """Test a passing run has no failure section."""
        path = tmp_path / "report.md"
        generate_markdown_report(RunSummary(), path)
        assert "## Failed Tests" not in path.read_text()
