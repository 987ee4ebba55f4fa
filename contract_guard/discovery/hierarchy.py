"""Hierarchical parent/child API definitions and expansion.

A parent API returns a list of resources; each of its child APIs needs one
of those resource identifiers as a path parameter. The expander fetches
every parent once, then plans one child test per (resource, child API)
pair without further network calls.
"""

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any

import httpx

from ..utils.auth import AuthConfig, obtain_auth_headers
from ..utils.models import PLACEHOLDER_PATTERN, template_regex
from .extraction import ResourceRecord, field_chain, first_match, unwrap_items

logger = logging.getLogger(__name__)

GENERIC_ID_FIELDS = ("id", "_id", "Id", "ID", "name", "Name")


@dataclass(frozen=True)
class ChildApiDefinition:
    """A child API whose path needs a parent resource id."""

    path_pattern: str
    description: str
    methods: tuple[str, ...] = ("GET",)


@dataclass(frozen=True)
class ParentApiDefinition:
    """A list API and the child APIs fed by its resources."""

    parent_path: str
    description: str
    id_field: str
    alternative_id_fields: tuple[str, ...] = ()
    child_apis: tuple[ChildApiDefinition, ...] = ()


@dataclass(frozen=True)
class HierarchicalTestData:
    """Resources discovered from one parent API."""

    __test__ = False

    parent_path: str
    description: str
    resources: tuple[ResourceRecord, ...]
    child_api_count: int

    @property
    def child_test_count(self) -> int:
        return len(self.resources) * self.child_api_count


@dataclass(frozen=True)
class ChildTest:
    """One planned child invocation."""

    __test__ = False

    path: str
    pattern: str
    description: str
    methods: tuple[str, ...]
    resource_id: str


HIERARCHICAL_API_DEFINITIONS: tuple[ParentApiDefinition, ...] = (
    ParentApiDefinition(
        parent_path="/api/v2/systems",
        description="Systems (v2)",
        id_field="system",
        alternative_id_fields=("sourcesystem", "id", "name", "_id"),
        child_apis=(
            ChildApiDefinition("/api/v2/systems/{id}", "Get system details", ("GET", "POST")),
            ChildApiDefinition("/api/v2/connection/for/{id}", "Connection for system", ("GET", "POST")),
            ChildApiDefinition("/api/v2/exportlist/for/{id}", "Export list for system"),
            ChildApiDefinition(
                "/api/v2/exportdefinition/for/{id}/{alias}",
                "Export definition for system",
                ("GET", "POST"),
            ),
            ChildApiDefinition("/api/v2/next/workload/for/{id}", "Next workload for system"),
            ChildApiDefinition("/api/v2/workload/history/for/{id}", "Workload history for system"),
            ChildApiDefinition("/api/v2/workload/inprogress/for/{id}", "In-progress workload for system"),
            ChildApiDefinition(
                "/api/v3/ingest/connection/for/{id}",
                "V3 Ingest connection for system",
                ("GET", "POST"),
            ),
            ChildApiDefinition("/api/v3/ingest/list/for/{id}", "V3 Ingest list for system"),
            ChildApiDefinition(
                "/api/v3/ingest/definition/for/{id}/{alias}",
                "V3 Ingest definition for system",
                ("GET", "POST"),
            ),
            ChildApiDefinition("/api/v3/ingest/next/workload/for/{id}", "V3 Ingest next workload for system"),
            ChildApiDefinition("/api/v3/ingest/workload/history/for/{id}", "V3 Ingest workload history for system"),
            ChildApiDefinition(
                "/api/v3/ingest/workload/inprogress/for/{id}",
                "V3 Ingest workload in-progress for system",
            ),
            ChildApiDefinition("/api/v3.1/ingest/list/for/{id}", "V3.1 Ingest list for system"),
            ChildApiDefinition(
                "/api/v3.1/ingest/definition/for/{id}/{alias}",
                "V3.1 Ingest definition for system",
                ("GET", "POST"),
            ),
        ),
    ),
    ParentApiDefinition(
        parent_path="/api/v2/sourcefiles",
        description="Source Files (v2)",
        id_field="sourceFilename",
        alternative_id_fields=("SourceFile", "id", "name", "_id", "sourcefile"),
        child_apis=(
            ChildApiDefinition("/api/v2/sourcefiles/{id}", "Get sourcefile details", ("GET", "POST", "DELETE")),
            ChildApiDefinition("/api/v2/sourcefiles/{id}/mappings", "Source file mappings", ("GET", "POST", "DELETE")),
            ChildApiDefinition(
                "/api/v2/sourcefiles/{id}/relationships",
                "Source file relationships",
                ("GET", "POST", "DELETE"),
            ),
            ChildApiDefinition("/api/v2/sourcefiles/{id}/audits", "Source file audits", ("GET", "POST")),
            ChildApiDefinition("/api/v2/sourcefiles/{id}/audit/by/{zone}", "Source file audit by zone"),
            ChildApiDefinition("/api/v2/sourcefiles/{id}/audits/{key}", "Source file audit by key"),
            ChildApiDefinition("/api/v2/master/schedule/{id}", "Master schedule for sourcefile", ("GET", "POST")),
            ChildApiDefinition("/api/v2/schedule/{id}", "Schedule for sourcefile", ("GET", "POST")),
            ChildApiDefinition("/api/v2/schedule/{id}/type", "Schedule type for sourcefile"),
            ChildApiDefinition("/api/v2/schedule/{id}/nextstep", "Schedule next step for sourcefile"),
            ChildApiDefinition("/api/v2/schedule/{id}/state", "Schedule state for sourcefile", ("GET", "POST")),
            ChildApiDefinition("/api/v2/schedule/{id}/processor", "Schedule processor for sourcefile"),
        ),
    ),
    ParentApiDefinition(
        parent_path="/api/v3/sourcefiles",
        description="Source Files (v3)",
        id_field="sourceFilename",
        alternative_id_fields=("id", "name", "_id", "sourcefile"),
        child_apis=(
            ChildApiDefinition(
                "/api/v3/sourcefiles/{id}",
                "Get sourcefile details (v3)",
                ("GET", "POST", "DELETE"),
            ),
            ChildApiDefinition(
                "/api/v3/sourcefiles/{id}/mappings",
                "Source file mappings (v3)",
                ("GET", "POST", "DELETE"),
            ),
            ChildApiDefinition(
                "/api/v3/sourcefiles/{id}/mappings/groups",
                "Source file mapping groups (v3)",
                ("GET", "POST"),
            ),
            ChildApiDefinition(
                "/api/v3/sourcefiles/{id}/relationships",
                "Source file relationships (v3)",
                ("GET", "POST", "DELETE"),
            ),
            ChildApiDefinition("/api/v3/sourcefiles/{id}/audits", "Source file audits (v3)", ("POST",)),
            ChildApiDefinition(
                "/api/v3/sourcefiles/{id}/statistics",
                "Source file loading statistics (v3)",
                ("POST",),
            ),
        ),
    ),
    ParentApiDefinition(
        parent_path="/api/v3.1/sourcefiles",
        description="Source Files (v3.1)",
        id_field="sourceFilename",
        alternative_id_fields=("id", "name", "_id", "sourcefile"),
        child_apis=(
            ChildApiDefinition(
                "/api/v3.1/sourcefiles/{id}",
                "Get sourcefile details (v3.1)",
                ("GET", "POST", "DELETE"),
            ),
        ),
    ),
    ParentApiDefinition(
        parent_path="/api/v3.2/sourcefiles",
        description="Source Files (v3.2)",
        id_field="sourceFilename",
        alternative_id_fields=("id", "name", "_id", "sourcefile"),
        child_apis=(
            ChildApiDefinition(
                "/api/v3.2/sourcefiles/{id}",
                "Get sourcefile details (v3.2)",
                ("GET", "POST", "PUT", "DELETE"),
            ),
            ChildApiDefinition(
                "/api/v3.2/sourcefiles/{id}/mappings",
                "Source file mappings (v3.2)",
                ("GET", "POST", "DELETE"),
            ),
        ),
    ),
    ParentApiDefinition(
        parent_path="/api/v2/model",
        description="Model Objects (v2)",
        id_field="object",
        alternative_id_fields=("name", "id", "objectName", "_id"),
        child_apis=(
            ChildApiDefinition("/api/v2/model/{id}", "Model object details", ("GET", "POST", "DELETE")),
            ChildApiDefinition("/api/v2/model/{id}/attributes", "Model object attributes"),
            ChildApiDefinition(
                "/api/v2/model/{id}/attributes/{attr}",
                "Model object specific attribute",
                ("GET", "POST"),
            ),
            ChildApiDefinition("/api/v2/model/{id}/relations", "Model object relations", ("GET", "POST", "DELETE")),
        ),
    ),
    ParentApiDefinition(
        parent_path="/api/v3/model",
        description="Model Objects (v3)",
        id_field="object",
        alternative_id_fields=("name", "id", "objectName", "_id"),
        child_apis=(
            ChildApiDefinition("/api/v3/model/{id}", "Model object details (v3)", ("GET", "POST")),
            ChildApiDefinition(
                "/api/v3/model/loadingpattern/{id}",
                "Model object loading pattern (v3)",
                ("GET", "POST"),
            ),
        ),
    ),
)


def extract_resource_id(
    item: Any,
    id_field: str,
    alternative_id_fields: Iterable[str] = (),
) -> str | None:
    """Resource id from the primary field, then alternatives, then generic fields."""
    if isinstance(item, dict):
        return first_match(item, field_chain(id_field, *alternative_id_fields, *GENERIC_ID_FIELDS))

    # Bare identifiers in a list of strings or numbers
    if isinstance(item, (str, int)) and not isinstance(item, bool) and str(item):
        return str(item)
    return None


def _resource_name(item: Any) -> str | None:
    if not isinstance(item, dict):
        return None
    return first_match(item, field_chain("name", "displayName", "title"))


def expand_child_paths(definition: ParentApiDefinition, resource_id: str) -> list[ChildTest]:
    """Concrete child paths for one resource, in catalog order.

    ``{id}`` is replaced when present, otherwise the first placeholder.
    Other placeholders are left for the path resolver.
    """
    tests: list[ChildTest] = []
    for child in definition.child_apis:
        if "{id}" in child.path_pattern:
            path = child.path_pattern.replace("{id}", resource_id, 1)
        else:
            path = PLACEHOLDER_PATTERN.sub(lambda _: resource_id, child.path_pattern, count=1)
        tests.append(
            ChildTest(
                path=path,
                pattern=child.path_pattern,
                description=child.description,
                methods=child.methods,
                resource_id=resource_id,
            ),
        )
    return tests


def find_parent_definition(
    parent_path: str,
    definitions: Iterable[ParentApiDefinition] = HIERARCHICAL_API_DEFINITIONS,
) -> ParentApiDefinition | None:
    """Definition whose parent path equals ``parent_path``."""
    return next((d for d in definitions if d.parent_path == parent_path), None)


def find_parent_for_child_path(
    child_path: str,
    definitions: Iterable[ParentApiDefinition] = HIERARCHICAL_API_DEFINITIONS,
) -> ParentApiDefinition | None:
    """Definition owning a child pattern that matches ``child_path``."""
    for definition in definitions:
        for child in definition.child_apis:
            if template_regex(child.path_pattern).match(child_path):
                return definition
    return None


class HierarchicalExpander:
    """Fetches parent APIs and plans their child tests."""

    def __init__(
        self,
        definitions: tuple[ParentApiDefinition, ...] = HIERARCHICAL_API_DEFINITIONS,
        timeout: float = 30,
        max_child_tests: int | None = None,
    ) -> None:
        """Initialize the expander.

        Args:
            definitions: Parent/child catalog
            timeout: Per-request timeout in seconds
            max_child_tests: Optional cap on child tests per parent, None for no cap
        """
        self.definitions = definitions
        self.timeout = timeout
        self.max_child_tests = max_child_tests

    async def discover(
        self,
        base_url: str,
        auth: AuthConfig | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> list[HierarchicalTestData]:
        """Fetch every parent API and collect its resources.

        Parents that cannot be fetched or yield no resources are skipped.

        Raises:
            AuthenticationError: If the discovery token cannot be obtained
        """
        if client is None:
            async with httpx.AsyncClient(follow_redirects=True) as own_client:
                return await self.discover(base_url, auth=auth, client=own_client)

        headers = await obtain_auth_headers(auth, client=client, timeout=self.timeout)
        origin = base_url.rstrip("/")
        entries: list[HierarchicalTestData] = []

        for definition in self.definitions:
            resources = await self._fetch_resources(client, origin, headers, definition)
            if not resources:
                logger.warning("No resources found for parent API %s", definition.parent_path)
                continue

            entry = HierarchicalTestData(
                parent_path=definition.parent_path,
                description=definition.description,
                resources=tuple(resources),
                child_api_count=len(definition.child_apis),
            )
            entries.append(entry)
            logger.info(
                "%s: %d resources x %d child APIs = %d tests",
                entry.description,
                len(entry.resources),
                entry.child_api_count,
                entry.child_test_count,
            )

        log_hierarchy_summary(entries)
        return entries

    async def _fetch_resources(
        self,
        client: httpx.AsyncClient,
        origin: str,
        headers: Mapping[str, str],
        definition: ParentApiDefinition,
    ) -> list[ResourceRecord]:
        url = f"{origin}{definition.parent_path}"
        logger.debug("Fetching parent API %s", url)

        try:
            response = await client.get(url, headers=dict(headers), timeout=self.timeout)
        except httpx.TimeoutException:
            logger.warning("Could not fetch parent API [timeout]: %s", definition.parent_path)
            return []
        except httpx.RequestError as e:
            logger.warning("Could not fetch parent API [%s]: %s", e, definition.parent_path)
            return []

        if response.status_code >= 400:
            logger.warning("Could not fetch parent API [%d]: %s", response.status_code, definition.parent_path)
            return []

        try:
            body = response.json()
        except ValueError:
            return []

        resources: list[ResourceRecord] = []
        for item in unwrap_items(body):
            resource_id = extract_resource_id(item, definition.id_field, definition.alternative_id_fields)
            if resource_id:
                resources.append(ResourceRecord(id=resource_id, name=_resource_name(item), raw=item))
        return resources

    def plan(self, entry: HierarchicalTestData) -> list[ChildTest]:
        """Child tests for every resource of an entry, resources in discovery order.

        Returns an empty plan for entries without a matching definition.
        """
        definition = find_parent_definition(entry.parent_path, self.definitions)
        if definition is None:
            return []

        tests: list[ChildTest] = []
        for resource in entry.resources:
            if resource.identifier:
                tests.extend(expand_child_paths(definition, resource.identifier))

        if self.max_child_tests is not None and len(tests) > self.max_child_tests:
            logger.warning(
                "Capping %s child tests at %d of %d",
                entry.parent_path,
                self.max_child_tests,
                len(tests),
            )
            tests = tests[: self.max_child_tests]

        return tests


def log_hierarchy_summary(entries: Iterable[HierarchicalTestData]) -> None:
    """Log resource and child test totals before execution."""
    entries = list(entries)
    total_resources = sum(len(e.resources) for e in entries)
    total_tests = sum(e.child_test_count for e in entries)
    logger.info(
        "Hierarchical discovery: %d parent APIs, %d resources, %d child tests",
        len(entries),
        total_resources,
        total_tests,
    )
