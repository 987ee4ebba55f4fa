"""Real test data discovery.

Fetches a curated set of list endpoints before the run so that path
parameters can be filled with identifiers that actually exist instead of
the placeholder ``"1"``. Every fetch fails soft: an unreachable or empty
endpoint only leaves its category empty. Only the token exchange is fatal.
"""

import logging
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass
from typing import Any

import httpx

from ..utils.auth import AuthConfig, obtain_auth_headers
from ..utils.errors import DiscoveryFetchError
from ..utils.models import PLACEHOLDER_PATTERN
from .extraction import DEFAULT_SAMPLE_SIZE, ExtractionRule, ResourceRecord, extract_records, first_match

logger = logging.getLogger(__name__)

CATEGORIES = (
    "sourcefiles",
    "systems",
    "modelObjects",
    "attributes",
    "auditZones",
    "auditKeys",
    "exportAliases",
    "ingestAliases",
    "schedules",
    "connections",
)

# Lower-cased path parameter name -> cache category
PARAMETER_MAPPING: Mapping[str, str] = {
    "sourcefile": "sourcefiles",
    "sourcefileid": "sourcefiles",
    "sourcefilename": "sourcefiles",
    "predecessor": "sourcefiles",
    "fromsourcefile": "sourcefiles",
    "tosourcefile": "sourcefiles",
    "id": "sourcefiles",
    "system": "systems",
    "sourcesystem": "systems",
    "systemid": "systems",
    "fromsystem": "systems",
    "tosystem": "systems",
    "mobject": "modelObjects",
    "modelobject": "modelObjects",
    "object": "modelObjects",
    "attr": "attributes",
    "attribute": "attributes",
    "zone": "auditZones",
    "key": "auditKeys",
    "alias": "exportAliases",
    "exportalias": "exportAliases",
    "ingestalias": "ingestAliases",
    "schedule": "schedules",
    "scheduleid": "schedules",
    "connection": "connections",
    "connectionid": "connections",
}

SOURCEFILE_RULE = ExtractionRule(
    id_fields=("sourceFilename", "_id", "SourceFile", "sourcefile", "name", "id"),
)
SCHEDULE_RULE = ExtractionRule(
    id_fields=("SourceFile", "_id", "sourceFilename", "sourcefile", "name", "id"),
    name_fields=("SourceFile", "name", "description"),
)
SYSTEM_RULE = ExtractionRule(id_fields=("system", "sourcesystem", "_id", "name", "id"))
MODEL_OBJECT_RULE = ExtractionRule(
    id_fields=("object", "_id", "objectName", "name", "id"),
    name_fields=("alias", "displayName", "description", "name"),
)
CONNECTION_RULE = ExtractionRule(id_fields=("id", "_id", "connection", "name"))
ATTRIBUTE_RULE = ExtractionRule(
    id_fields=("attribute", "attr", "attributeName", "name", "id", "_id"),
    name_fields=("alias", "displayName", "description"),
)
AUDIT_KEY_RULE = ExtractionRule(
    id_fields=("key", "auditKey", "id", "_id"),
    name_fields=("name", "description"),
)
AUDIT_ZONE_RULE = ExtractionRule(id_fields=("zone", "auditZone"), name_fields=())
EXPORT_ALIAS_RULE = ExtractionRule(
    id_fields=("alias", "exportAlias", "name", "id"),
    name_fields=("description", "displayName"),
)
INGEST_ALIAS_RULE = ExtractionRule(
    id_fields=("alias", "ingestAlias", "name", "id"),
    name_fields=("description", "displayName"),
)


@dataclass(frozen=True)
class DiscoveryCandidate:
    """One list endpoint tried for a category, with its field probes."""

    path: str
    rule: ExtractionRule


@dataclass(frozen=True)
class DiscoveryTarget:
    """A category and the endpoints tried for it, in order."""

    category: str
    candidates: tuple[DiscoveryCandidate, ...]


DISCOVERY_TARGETS: tuple[DiscoveryTarget, ...] = (
    DiscoveryTarget(
        "sourcefiles",
        (
            DiscoveryCandidate("/api/v3/sourcefiles", SOURCEFILE_RULE),
            DiscoveryCandidate("/api/v2/sourcefiles", SOURCEFILE_RULE),
            # Schedules carry the sourcefile in their SourceFile field
            DiscoveryCandidate("/api/v2/schedule", SCHEDULE_RULE),
        ),
    ),
    DiscoveryTarget("systems", (DiscoveryCandidate("/api/v2/systems", SYSTEM_RULE),)),
    DiscoveryTarget(
        "modelObjects",
        (
            DiscoveryCandidate("/api/v3/model", MODEL_OBJECT_RULE),
            DiscoveryCandidate("/api/v2/model", MODEL_OBJECT_RULE),
        ),
    ),
    DiscoveryTarget("schedules", (DiscoveryCandidate("/api/v2/schedule", SCHEDULE_RULE),)),
    DiscoveryTarget("connections", (DiscoveryCandidate("/api/v2/datastore/connection", CONNECTION_RULE),)),
)


class TestDataCache(Mapping[str, tuple[ResourceRecord, ...]]):
    """Read-only category -> records mapping built once per run.

    Every stored record has a non-empty id or name; records lacking both
    are dropped on construction.
    """

    __test__ = False

    def __init__(self, categories: Mapping[str, Iterable[ResourceRecord]] | None = None) -> None:
        data = {category: () for category in CATEGORIES}
        for category, records in (categories or {}).items():
            data[category] = tuple(r for r in records if r.identifier)
        self._data: dict[str, tuple[ResourceRecord, ...]] = data

    def __getitem__(self, category: str) -> tuple[ResourceRecord, ...]:
        return self._data[category]

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def records(self, category: str) -> tuple[ResourceRecord, ...]:
        """Records of a category, empty for unknown categories."""
        return self._data.get(category, ())

    def first(self, category: str) -> ResourceRecord | None:
        """First discovered record of a category."""
        records = self.records(category)
        return records[0] if records else None

    def has_data(self) -> bool:
        """Whether any of the primary categories yielded records."""
        return any(self.records(c) for c in ("sourcefiles", "systems", "modelObjects"))

    def counts(self) -> dict[str, int]:
        return {category: len(records) for category, records in self._data.items()}

    def to_dict(self) -> dict[str, list[dict[str, Any]]]:
        """Convert to dictionary for JSON serialization."""
        return {category: [r.to_dict() for r in records] for category, records in self._data.items()}


def get_parameter_value(
    name: str,
    cache: TestDataCache,
    mapping: Mapping[str, str] = PARAMETER_MAPPING,
) -> str:
    """Concrete value for one path parameter, ``"1"`` when nothing was discovered."""
    category = mapping.get(name.lower())
    record = cache.first(category) if category else None
    if record is None or not record.identifier:
        return "1"
    return record.identifier


def substitute_path_parameters(
    template: str,
    cache: TestDataCache,
    mapping: Mapping[str, str] = PARAMETER_MAPPING,
) -> str:
    """Replace every ``{param}`` token with a discovered identifier.

    Example:
        ``/api/v2/sourcefiles/{sourcefile}/mappings`` ->
        ``/api/v2/sourcefiles/ABC123/mappings``
    """
    return PLACEHOLDER_PATTERN.sub(lambda m: get_parameter_value(m.group(1), cache, mapping), template)


class DataDiscovery:
    """Builds a TestDataCache from live list endpoints."""

    def __init__(
        self,
        targets: tuple[DiscoveryTarget, ...] = DISCOVERY_TARGETS,
        sample_size: int = DEFAULT_SAMPLE_SIZE,
        timeout: float = 30,
    ) -> None:
        """Initialize discovery.

        Args:
            targets: Categories and candidate endpoints to fetch
            sample_size: Maximum records kept per category
            timeout: Per-request timeout in seconds
        """
        self.targets = targets
        self.sample_size = sample_size
        self.timeout = timeout

    async def discover(
        self,
        base_url: str,
        auth: AuthConfig | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> TestDataCache:
        """Fetch real identifiers for every category.

        Args:
            base_url: API origin prepended to every path
            auth: Authentication settings
            client: Shared HTTP client, a private one is opened when omitted

        Returns:
            Populated cache, possibly with empty categories

        Raises:
            AuthenticationError: If the discovery token cannot be obtained
        """
        if client is None:
            async with httpx.AsyncClient(follow_redirects=True) as own_client:
                return await self.discover(base_url, auth=auth, client=own_client)

        headers = await obtain_auth_headers(auth, client=client, timeout=self.timeout)
        session = _DiscoverySession(client, base_url.rstrip("/"), headers, self.timeout, self.sample_size)

        logger.info("Discovering real test data from %s", base_url)
        collected: dict[str, list[ResourceRecord]] = {}

        for target in self.targets:
            collected[target.category] = await session.fetch_target(target)

        await session.derive(collected)

        cache = TestDataCache(collected)
        log_cache_summary(cache)
        return cache


class _DiscoverySession:
    """Fetch helpers bound to one client, origin and header set."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        base_url: str,
        headers: dict[str, str],
        timeout: float,
        sample_size: int,
    ) -> None:
        self.client = client
        self.base_url = base_url
        self.headers = headers
        self.timeout = timeout
        self.sample_size = sample_size

    async def fetch_json(self, path: str) -> Any:
        url = f"{self.base_url}{path}"
        try:
            response = await self.client.get(url, headers=self.headers, timeout=self.timeout)
        except httpx.TimeoutException as e:
            raise DiscoveryFetchError(url, "Request timed out") from e
        except httpx.RequestError as e:
            raise DiscoveryFetchError(url, str(e)) from e

        if response.status_code >= 400:
            raise DiscoveryFetchError(url, f"HTTP {response.status_code}", status=response.status_code)

        try:
            return response.json()
        except ValueError:
            return None

    async def fetch_records(self, path: str, rule: ExtractionRule, label: str) -> list[ResourceRecord]:
        """Records from one endpoint, empty on any fetch failure."""
        logger.debug("Fetching %s from %s", label, path)
        try:
            body = await self.fetch_json(path)
        except DiscoveryFetchError as e:
            logger.warning("Could not fetch %s [%s]: %s", label, e.status or "ERROR", e)
            return []

        records = extract_records(body, rule, limit=self.sample_size)
        if not records:
            logger.info("No %s found at %s (empty list)", label, path)
        return records

    async def fetch_target(self, target: DiscoveryTarget) -> list[ResourceRecord]:
        """First non-empty extraction among the target's candidates."""
        for candidate in target.candidates:
            records = await self.fetch_records(candidate.path, candidate.rule, target.category)
            if records:
                logger.info("Found %d %s", len(records), target.category)
                return records
        return []

    async def derive(self, collected: dict[str, list[ResourceRecord]]) -> None:
        """Categories that need an identifier from another category."""
        sourcefile = collected["sourcefiles"][0] if collected.get("sourcefiles") else None

        if not collected.get("systems") and sourcefile is not None:
            collected["systems"] = await self._systems_from_sourcefiles(collected["sourcefiles"], sourcefile)

        model_object = collected["modelObjects"][0] if collected.get("modelObjects") else None
        if model_object is not None:
            collected["attributes"] = await self.fetch_records(
                f"/api/v2/model/{model_object.identifier}/attributes",
                ATTRIBUTE_RULE,
                "attributes",
            )

        if sourcefile is not None:
            audits_path = f"/api/v2/sourcefiles/{sourcefile.identifier}/audits"
            try:
                body = await self.fetch_json(audits_path)
            except DiscoveryFetchError as e:
                logger.warning("Could not fetch audits [%s]: %s", e.status or "ERROR", e)
                body = None
            collected["auditKeys"] = extract_records(body, AUDIT_KEY_RULE, limit=self.sample_size)
            collected["auditZones"] = _distinct(extract_records(body, AUDIT_ZONE_RULE, limit=self.sample_size))

        system = collected["systems"][0] if collected.get("systems") else None
        if system is not None:
            collected["exportAliases"] = await self.fetch_records(
                f"/api/v2/exportlist/for/{system.identifier}",
                EXPORT_ALIAS_RULE,
                "exportAliases",
            )
            collected["ingestAliases"] = await self.fetch_records(
                f"/api/v3/ingest/list/for/{system.identifier}",
                INGEST_ALIAS_RULE,
                "ingestAliases",
            )

    async def _systems_from_sourcefiles(
        self,
        sourcefiles: list[ResourceRecord],
        first: ResourceRecord,
    ) -> list[ResourceRecord]:
        systems = _distinct(ResourceRecord(id=r.system) for r in sourcefiles if r.system)
        if systems:
            logger.info("Derived %d systems from sourcefile records", len(systems))
            return systems[: self.sample_size]

        path = f"/api/v3/sourcefiles/{first.identifier}"
        try:
            body = await self.fetch_json(path)
        except DiscoveryFetchError as e:
            logger.warning("Could not fetch sourcefile detail [%s]: %s", e.status or "ERROR", e)
            return []

        detail = body.get("data") if isinstance(body, dict) and isinstance(body.get("data"), dict) else body
        if not isinstance(detail, dict):
            return []

        system = first_match(detail, SYSTEM_RULE.system_accessors)
        if system is None:
            return []

        logger.info("Derived system %s from sourcefile %s", system, first.identifier)
        return [ResourceRecord(id=system, raw=detail)]


def _distinct(records: Iterable[ResourceRecord]) -> list[ResourceRecord]:
    seen: set[str] = set()
    unique: list[ResourceRecord] = []
    for record in records:
        if record.identifier and record.identifier not in seen:
            seen.add(record.identifier)
            unique.append(record)
    return unique


def log_cache_summary(cache: TestDataCache) -> None:
    """Log the per-category count and the first three examples."""
    logger.info("Discovery summary:")
    for category, records in cache.items():
        if not records:
            logger.info("  %s: 0", category)
            continue
        examples = ", ".join(
            f"{r.id} ({r.name})" if r.id and r.name and r.name != r.id else str(r.identifier) for r in records[:3]
        )
        logger.info("  %s: %d (%s)", category, len(records), examples)
