"""Test orchestrator.

Coordinates a regression run:
- Parses the endpoint catalog
- Filters blacklisted endpoints
- Discovers real data or parent/child hierarchies when configured
- Runs one test per endpoint, sequentially or in bounded batches
- Aggregates results into a RunSummary
"""

import asyncio
import logging
import re
import time
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass

import httpx

from ..discovery.data_discovery import DataDiscovery
from ..discovery.hierarchy import ChildTest, HierarchicalExpander, HierarchicalTestData
from .blacklist import EndpointBlacklist
from .endpoint_tester import EndpointTester, PathResolver
from .errors import SwaggerParseError
from .models import PLACEHOLDER_PATTERN, Endpoint, EndpointGroup, RunSummary, TestResult, failed_result
from .run_config import RunOptions
from .swagger import SwaggerCatalog, parse_swagger_url

logger = logging.getLogger(__name__)

TesterFactory = Callable[[httpx.AsyncClient, str], EndpointTester]

PROTOCOL_METHODS = frozenset({"GET", "POST", "DELETE"})
READONLY_METHODS = frozenset({"GET"})


@dataclass(frozen=True)
class TestTarget:
    """One scheduled runner invocation."""

    __test__ = False

    endpoint: Endpoint
    group: EndpointGroup
    resolver: PathResolver | None = None

    @property
    def label(self) -> str:
        return self.endpoint.label


def flatten_targets(groups: Iterable[EndpointGroup], mode: str = "full") -> list[TestTarget]:
    """One target per endpoint in catalog order.

    Readonly keeps GET endpoints only. Full mode keeps the methods the
    protocol issues; PUT and PATCH endpoints are never requested by it.
    """
    methods = READONLY_METHODS if mode == "readonly" else PROTOCOL_METHODS
    targets: list[TestTarget] = []
    for group in groups:
        for endpoint in group.endpoints:
            if endpoint.method not in methods:
                continue
            targets.append(TestTarget(endpoint=endpoint, group=group))
    return targets


def match_template(template: str, path: str) -> dict[str, str] | None:
    """Placeholder captures when ``path`` instantiates ``template``, else None.

    Segments of ``path`` that are themselves placeholders are not captured.
    """
    names = PLACEHOLDER_PATTERN.findall(template)
    literals = PLACEHOLDER_PATTERN.split(template)[::2]
    match = re.match("^" + "([^/]+)".join(re.escape(part) for part in literals) + "$", path)
    if match is None:
        return None
    return {
        name: value
        for name, value in zip(names, match.groups())
        if PLACEHOLDER_PATTERN.fullmatch(value) is None
    }


class TestOrchestrator:
    """Runs the regression protocol over a whole catalog."""

    __test__ = False

    def __init__(
        self,
        options: RunOptions,
        swagger_url: str | None = None,
        blacklist: EndpointBlacklist | None = None,
        discovery: DataDiscovery | None = None,
        expander: HierarchicalExpander | None = None,
        tester_factory: TesterFactory | None = None,
        verify_ssl: bool = True,
        validate_document: bool = False,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            options: Run options
            swagger_url: Catalog URL, required unless run_all gets a catalog
            blacklist: Endpoint exclusions, the default list when omitted
            discovery: Real-data discovery engine
            expander: Hierarchical expander
            tester_factory: Builds the runner for a client and base URL
            verify_ssl: Verify TLS certificates
            validate_document: Validate the fetched Swagger document
        """
        self.options = options
        self.swagger_url = swagger_url
        self.blacklist = blacklist or EndpointBlacklist()
        self.discovery = discovery or DataDiscovery(sample_size=options.sample_size, timeout=options.timeout)
        self.expander = expander or HierarchicalExpander(
            timeout=options.timeout,
            max_child_tests=options.max_child_tests,
        )
        self.tester_factory = tester_factory or self._default_tester
        self.verify_ssl = verify_ssl
        self.validate_document = validate_document

    def _default_tester(self, client: httpx.AsyncClient, base_url: str) -> EndpointTester:
        return EndpointTester(
            client,
            base_url,
            auth=self.options.auth,
            mode=self.options.mode,
            timeout=self.options.timeout,
        )

    async def run_all(
        self,
        catalog: SwaggerCatalog | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> RunSummary:
        """Run every non-excluded endpoint.

        Args:
            catalog: Pre-parsed catalog, fetched from swagger_url when omitted
            client: Shared HTTP client, a private one is opened when omitted

        Raises:
            SwaggerParseError: If the catalog cannot be loaded
            AuthenticationError: If discovery cannot obtain a token
        """
        if client is None:
            async with httpx.AsyncClient(verify=self.verify_ssl, follow_redirects=True) as own_client:
                return await self.run_all(catalog, own_client)

        start = time.monotonic()

        if catalog is None:
            catalog = await self.load_catalog(client)

        groups, blacklisted = self.blacklist.filter_groups(catalog.groups)
        testable = sum(len(g.endpoints) for g in groups)
        logger.info("Testing %d endpoints (%d blacklisted)", testable, blacklisted)

        tester = self.tester_factory(client, catalog.base_url)

        if self.options.use_hierarchical:
            if self.options.use_real_data:
                logger.warning("Hierarchical discovery takes precedence; --use-real-data ignored")
            entries = await self.expander.discover(catalog.base_url, auth=self.options.auth, client=client)
            targets, excluded = self.plan_hierarchical(groups, entries)
            if self.options.parallel:
                logger.info("Hierarchical runs are sequential; --parallel ignored")
            results = await self.run_sequential(tester, targets, PathResolver())
            skipped = blacklisted + excluded
        else:
            cache = None
            if self.options.use_real_data:
                cache = await self.discovery.discover(catalog.base_url, auth=self.options.auth, client=client)
                if not cache.has_data():
                    logger.warning("No real data discovered; falling back to placeholder values")
            resolver = PathResolver(cache)

            targets = flatten_targets(groups, self.options.mode)
            skipped = blacklisted + (testable - len(targets))

            if self.options.parallel:
                results = await self.run_parallel(tester, targets, resolver, self.options.max_parallel)
            else:
                results = await self.run_sequential(tester, targets, resolver)

        duration = int((time.monotonic() - start) * 1000)
        return RunSummary.from_results(results, skipped=skipped, duration=duration)

    async def load_catalog(self, client: httpx.AsyncClient) -> SwaggerCatalog:
        if not self.swagger_url:
            raise SwaggerParseError("No Swagger URL configured")

        logger.info("Parsing Swagger from: %s", self.swagger_url)
        return await parse_swagger_url(
            self.swagger_url,
            client=client,
            timeout=self.options.timeout,
            validate_document=self.validate_document,
        )

    async def _safe_run(self, tester: EndpointTester, target: TestTarget, resolver: PathResolver) -> TestResult:
        """Run one target, converting any escaping exception into a failing result."""
        try:
            return await tester.run(target.group, focus=target.endpoint, resolver=target.resolver or resolver)
        except Exception as e:
            logger.exception("Test for %s raised", target.label)
            return failed_result(target.group.resource, str(e), target.endpoint)

    async def run_sequential(
        self,
        tester: EndpointTester,
        targets: Sequence[TestTarget],
        resolver: PathResolver,
    ) -> list[TestResult]:
        """Run targets one at a time in list order."""
        results: list[TestResult] = []
        total = len(targets)

        for index, target in enumerate(targets, start=1):
            logger.info("[%d/%d] Testing: %s", index, total, target.label)
            result = await self._safe_run(tester, target, resolver)
            results.append(result)

            if result.passed:
                logger.info("  PASSED (%dms)", result.duration)
            else:
                logger.info("  FAILED (%d differences)", len(result.differences))

        return results

    async def run_parallel(
        self,
        tester: EndpointTester,
        targets: Sequence[TestTarget],
        resolver: PathResolver,
        max_parallel: int = 5,
    ) -> list[TestResult]:
        """Run targets in fixed-size batches.

        All targets of a batch start together; the next batch starts only
        after every result of the current one is in.
        """
        batches = [targets[i : i + max_parallel] for i in range(0, len(targets), max_parallel)]
        results: list[TestResult] = []

        logger.info("Running tests in parallel (max %d concurrent)", max_parallel)

        for number, batch in enumerate(batches, start=1):
            logger.info("Batch %d/%d (%d tests)", number, len(batches), len(batch))
            batch_results = await asyncio.gather(*(self._safe_run(tester, t, resolver) for t in batch))
            results.extend(batch_results)

            for target, result in zip(batch, batch_results):
                logger.info("  %s %s (%dms)", "PASSED" if result.passed else "FAILED", target.label, result.duration)

        return results

    def plan_hierarchical(
        self,
        groups: Sequence[EndpointGroup],
        entries: Iterable[HierarchicalTestData],
    ) -> tuple[list[TestTarget], int]:
        """Parent and child targets for every discovered entry.

        Each entry contributes its parent endpoint (when present in the
        catalog) followed by every resource's child paths in catalog order.

        Returns:
            Tuple of (targets, number of blacklisted child paths)
        """
        targets: list[TestTarget] = []
        excluded = 0

        for entry in entries:
            parent = self._find_catalog_get(groups, entry.parent_path)
            if parent is not None:
                endpoint, group = parent
                targets.append(TestTarget(endpoint=endpoint, group=group))

            children = self.expander.plan(entry)
            logger.info(
                "%s: %d parent + %d child tests",
                entry.description,
                1 if parent is not None else 0,
                len(children),
            )

            for child in children:
                if self.blacklist.is_excluded("GET", child.path):
                    excluded += 1
                    continue
                targets.append(self.resolve_child(groups, child))

        logger.info("Hierarchical plan: %d tests", len(targets))
        return targets, excluded

    @staticmethod
    def _find_catalog_get(groups: Sequence[EndpointGroup], path: str) -> tuple[Endpoint, EndpointGroup] | None:
        for group in groups:
            for endpoint in group.endpoints:
                if endpoint.method == "GET" and endpoint.path == path:
                    return endpoint, group
        return None

    @staticmethod
    def resolve_child(groups: Sequence[EndpointGroup], child: ChildTest) -> TestTarget:
        """Catalog GET endpoint whose template matches the child path.

        Captured segments become resolver overrides. An unmatched path is
        still exercised through a synthesized GET endpoint.
        """
        for group in groups:
            for endpoint in group.endpoints:
                if endpoint.method != "GET":
                    continue
                captures = match_template(endpoint.path, child.path)
                if captures is None:
                    continue
                return TestTarget(
                    endpoint=endpoint,
                    group=EndpointGroup(resource=child.path, endpoints=group.endpoints),
                    resolver=PathResolver(overrides=captures),
                )

        synthesized = Endpoint(method="GET", path=child.path, summary=child.description)
        return TestTarget(
            endpoint=synthesized,
            group=EndpointGroup(resource=child.path, endpoints=(synthesized,)),
        )
