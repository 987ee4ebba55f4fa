"""Data model shared by the orchestrator, runner and reporting."""

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from .comparator import Difference, DiffType

HTTP_METHODS = ("GET", "POST", "PUT", "PATCH", "DELETE")

PLACEHOLDER_PATTERN = re.compile(r"\{([^}]+)\}")


def template_regex(template: str) -> re.Pattern[str]:
    """Anchored regex where each ``{param}`` matches exactly one path segment."""
    literals = PLACEHOLDER_PATTERN.split(template)[::2]
    return re.compile("^" + "[^/]+".join(re.escape(part) for part in literals) + "$")


class StepName(Enum):
    """Steps of the endpoint test protocol, in execution order."""

    AUTH = "AUTH"
    GET = "GET"
    DELETE = "DELETE"
    POST = "POST"
    VERIFY = "VERIFY"
    COMPARE = "COMPARE"


@dataclass(frozen=True)
class Endpoint:
    """A single operation from the endpoint catalog."""

    method: str
    path: str
    summary: str | None = None

    def __post_init__(self) -> None:
        method = self.method.upper()
        if method not in HTTP_METHODS:
            raise ValueError(f"Unsupported HTTP method: {self.method}")
        object.__setattr__(self, "method", method)

    @property
    def has_placeholder(self) -> bool:
        """Whether the path template still contains a ``{param}`` token."""
        return PLACEHOLDER_PATTERN.search(self.path) is not None

    @property
    def label(self) -> str:
        """``METHOD PATH`` form used by the blacklist and in reports."""
        return f"{self.method} {self.path}"


@dataclass(frozen=True)
class EndpointGroup:
    """Endpoints sharing a resource path prefix."""

    resource: str
    endpoints: tuple[Endpoint, ...] = ()


@dataclass
class TestStep:
    """One observed request/response event of a test run."""

    __test__ = False

    step: StepName
    method: str | None = None
    url: str | None = None
    status: int | None = None
    data: Any = None
    error: str | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "step": self.step.value,
            "method": self.method,
            "url": self.url,
            "status": self.status,
            "data": self.data,
            "error": self.error,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass(frozen=True)
class TestResult:
    """Outcome of one endpoint/resource test invocation."""

    __test__ = False

    resource: str
    steps: tuple[TestStep, ...]
    passed: bool
    differences: tuple[Difference, ...] = ()
    duration: int = 0  # milliseconds
    endpoint: Endpoint | None = None

    @property
    def errors(self) -> list[str]:
        """Step errors in protocol order, prefixed with the step name."""
        return [f"{s.step.value}: {s.error}" for s in self.steps if s.error]

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "resource": self.resource,
            "method": self.endpoint.method if self.endpoint else None,
            "path": self.endpoint.path if self.endpoint else None,
            "passed": self.passed,
            "duration_ms": self.duration,
            "differences": [d.to_dict() for d in self.differences],
            "steps": [s.to_dict() for s in self.steps],
        }


@dataclass
class RunSummary:
    """Aggregated results of one orchestrator run."""

    total: int = 0
    passed: int = 0
    failed: int = 0
    skipped: int = 0
    duration: int = 0  # milliseconds
    results: list[TestResult] = field(default_factory=list)

    @property
    def exit_code(self) -> int:
        """Process exit status: failure iff any executed test failed."""
        return 1 if self.failed > 0 else 0

    @classmethod
    def from_results(cls, results: list[TestResult], skipped: int, duration: int) -> "RunSummary":
        """Build a summary from executed results."""
        passed = len([r for r in results if r.passed])
        return cls(
            total=len(results),
            passed=passed,
            failed=len(results) - passed,
            skipped=skipped,
            duration=duration,
            results=list(results),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "summary": {
                "total": self.total,
                "passed": self.passed,
                "failed": self.failed,
                "skipped": self.skipped,
                "duration_ms": self.duration,
            },
            "results": [r.to_dict() for r in self.results],
        }


def failed_result(resource: str, message: str, endpoint: Endpoint | None = None) -> TestResult:
    """Synthetic failing result for a test that raised instead of returning."""
    return TestResult(
        resource=resource,
        steps=(),
        passed=False,
        differences=(Difference("error", "success", message, DiffType.CHANGED),),
        duration=0,
        endpoint=endpoint,
    )
