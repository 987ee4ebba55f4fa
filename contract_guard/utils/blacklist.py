"""Endpoint blacklist.

Endpoints listed here are excluded from automated regression testing
because they have side effects or operational concerns. Entries use the
``METHOD PATH`` form; ``{param}`` placeholders match any single path
segment, so a template entry excludes every concrete instantiation.
"""

from collections.abc import Iterable

from .models import PLACEHOLDER_PATTERN, Endpoint, EndpointGroup, template_regex

DEFAULT_EXCLUDED_ENDPOINTS: tuple[str, ...] = (
    # Workload management (modifies job state)
    "POST /api/v3/ingest/claim/workload",
    "POST /api/v3/ingest/start/workload",
    "POST /api/v3/ingest/completed/workload",
    "POST /api/v3/ingest/rerun/workload",
    "POST /api/v3.1/ingest/{sourcesystem}/{alias}/start/from/{startdate}",
    "POST /api/v2/claim/workload",
    "POST /api/v2/completed/workload",
    "POST /api/v2/rerun/workload",
    # Copy/migration (modifies data)
    "GET /api/v2/copy/from/{fromsystem}/{fromsourcefile}/to/{tosystem}/{tosourcefile}",
    # Schedule state changes
    "POST /api/v2/master/schedule/{sourcefile}/rundate/{rundate}",
    "POST /api/v2/schedule/{sourcefile}/state",
    "POST /api/v3/schedule/bulk/state",
    "POST /api/v2/schedule/{sourcefile}/restart",
    "POST /api/v2/schedule/{sourcefile}/rerun",
    "POST /api/v2/schedule/{sourcefile}/start",
    "POST /api/v2/schedule/processor/{extname}/state",
    "POST /api/v2/restart/source/export",
    "POST /api/v2/master/schedule/{sourcefile}/next/rundate",
    "POST /api/v3/master/schedule/bulk/next/rundate",
    # Deviations (may fix data)
    "GET /api/v2/deviations/badloadings",
    "GET /api/v2/deviations/danglingrecords/sample",
    "GET /api/v2/deviations/danglingrecords/fix",
    "GET /api/v2/deviations/danglingrecords/reload",
    "GET /api/v2/deviations/baddata/conversions",
    "GET /api/v2/deviations/baddata/conversions/sample",
    # QPI execution (runs queries)
    "GET /api/v2/run/qpi",
    # Audit operations (modifies audit logs)
    "POST /api/v2/sourcefiles/{sourcefile}/audits/{key}/use",
    "POST /api/v2/sourcefiles/{sourcefile}/audit/sync/definition",
    "POST /api/v2/auditlog",
    "POST /api/v2/auditbatch",
    "POST /api/v3/blob/undefined/file",
    "POST /api/v3/{zone}/trigger",
    "POST /api/v3/sourcefiles/{sourcefile}/statistics",
    "POST /api/v3/audit/publisher/sourcefile",
    "POST /api/v3/audit/publisher/table",
    "POST /api/v3/audit/publisher/sourcefile/trigger",
    # Required query parameters that cannot be discovered
    "GET /api/v2/get/new/hash",
    "GET /api/v2/encrypt/string",
    "GET /api/v2/auditbatch",
    "GET /api/v2/schedule/{sourcefile}/nextstep",
    "GET /api/v2/schedule/{sourcefile}/state",
    "GET /api/v3/schedule/by-time",
    "GET /api/v3/audit/publisher/sourcefile",
    "GET /api/v3/audit/publisher/table",
    "GET /api/v3/openlineage/dataset",
    "GET /api/v2/extraprocessor",
    # Known server errors
    "GET /api/v3/ingest/connection",
)


def _normalize(method: str, path: str) -> str:
    return f"{method.upper()} {path}"


def _parse_entry(entry: str) -> str:
    parts = entry.strip().split(None, 1)
    if len(parts) != 2:
        raise ValueError(f"Blacklist entry must be 'METHOD PATH': {entry}")
    return _normalize(*parts)


class EndpointBlacklist:
    """Exact and placeholder-pattern matcher over a static exclusion list."""

    def __init__(self, entries: Iterable[str] = DEFAULT_EXCLUDED_ENDPOINTS) -> None:
        """Initialize the blacklist.

        Args:
            entries: ``METHOD PATH`` strings, optionally with ``{param}`` tokens
        """
        self.entries: tuple[str, ...] = tuple(
            _parse_entry(entry) for entry in entries
        )
        self._exact = frozenset(self.entries)
        self._patterns = tuple(template_regex(e) for e in self.entries if PLACEHOLDER_PATTERN.search(e))

    @classmethod
    def with_extra(cls, extra: Iterable[str]) -> "EndpointBlacklist":
        """Default entries plus caller-supplied ones."""
        return cls((*DEFAULT_EXCLUDED_ENDPOINTS, *extra))

    def is_excluded(self, method: str, path: str) -> bool:
        """Check if an endpoint is excluded from testing.

        Args:
            method: HTTP method (any case)
            path: Path template or concrete path

        Returns:
            True if the endpoint matches an entry exactly or by pattern
        """
        normalized = _normalize(method, path)
        if normalized in self._exact:
            return True
        return any(pattern.match(normalized) for pattern in self._patterns)

    def filter(self, endpoints: Iterable[Endpoint]) -> list[Endpoint]:
        """Endpoints that are not excluded, in input order."""
        return [e for e in endpoints if not self.is_excluded(e.method, e.path)]

    def filter_groups(self, groups: Iterable[EndpointGroup]) -> tuple[list[EndpointGroup], int]:
        """Filter every group, dropping groups left empty.

        Returns:
            Tuple of (filtered groups, number of excluded endpoints)
        """
        filtered: list[EndpointGroup] = []
        excluded = 0

        for group in groups:
            kept = self.filter(group.endpoints)
            excluded += len(group.endpoints) - len(kept)
            if kept:
                filtered.append(EndpointGroup(resource=group.resource, endpoints=tuple(kept)))

        return filtered, excluded
