"""Endpoint test runner.

Executes the regression protocol for one endpoint group:

    AUTH -> GET -> DELETE -> POST -> VERIFY -> COMPARE

The original resource is read, deleted, recreated from its own body, read
back, and compared with the original after volatile fields are stripped.
In readonly mode only AUTH and GET run, and the test passes iff GET
answers 200.

Every step appends a TestStep. Network failures are recorded on the step
and never raised out of ``run``.
"""

import logging
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

import httpx

from ..discovery.data_discovery import PARAMETER_MAPPING, TestDataCache, get_parameter_value
from ..discovery.extraction import unwrap_items
from .auth import AuthConfig, obtain_auth_headers
from .comparator import Difference, DiffType, deep_compare, strip_meta_fields
from .errors import AuthenticationError, StepExecutionError
from .models import PLACEHOLDER_PATTERN, Endpoint, EndpointGroup, StepName, TestResult, TestStep

logger = logging.getLogger(__name__)

ABSENT_ON_DELETE = {"message": "Resource already absent"}


class PathResolver:
    """Fills ``{param}`` tokens in a path template.

    The last placeholder takes the explicit resource id when one is given.
    Other placeholders are looked up by name in the overrides, then in the
    discovery cache through the parameter mapping, falling back to ``"1"``.
    """

    def __init__(
        self,
        cache: TestDataCache | None = None,
        mapping: Mapping[str, str] = PARAMETER_MAPPING,
        overrides: Mapping[str, str] | None = None,
    ) -> None:
        self.cache = cache
        self.mapping = mapping
        self.overrides = {name.lower(): value for name, value in (overrides or {}).items()}

    def value_for(self, name: str) -> str:
        """Concrete value for one parameter name."""
        override = self.overrides.get(name.lower())
        if override is not None:
            return override
        if self.cache is None:
            return "1"
        return get_parameter_value(name, self.cache, self.mapping)

    def resolve(self, template: str, resource_id: str | None = None) -> str:
        """Concrete path for a template."""
        matches = list(PLACEHOLDER_PATTERN.finditer(template))
        if not matches:
            return template

        parts: list[str] = []
        position = 0
        for index, match in enumerate(matches):
            parts.append(template[position : match.start()])
            if resource_id is not None and index == len(matches) - 1:
                parts.append(resource_id)
            else:
                parts.append(self.value_for(match.group(1)))
            position = match.end()
        parts.append(template[position:])
        return "".join(parts)

    def identifier_for(self, template: str) -> str | None:
        """Value the last placeholder of a template resolves to."""
        names = PLACEHOLDER_PATTERN.findall(template)
        return self.value_for(names[-1]) if names else None


@dataclass(frozen=True)
class EndpointPlan:
    """Endpoints chosen for each protocol slot."""

    item_get: Endpoint | None = None
    list_get: Endpoint | None = None
    delete: Endpoint | None = None
    post: Endpoint | None = None


def select_endpoints(group: EndpointGroup, focus: Endpoint | None = None) -> EndpointPlan:
    """Pick the first endpoint of each kind, the focus endpoint taking its own slot."""
    item_get = next((e for e in group.endpoints if e.method == "GET" and e.has_placeholder), None)
    list_get = next((e for e in group.endpoints if e.method == "GET" and not e.has_placeholder), None)
    delete = next((e for e in group.endpoints if e.method == "DELETE"), None)
    post = next((e for e in group.endpoints if e.method == "POST"), None)

    if focus is not None:
        if focus.method == "GET" and focus.has_placeholder:
            item_get = focus
        elif focus.method == "GET":
            list_get = focus
        elif focus.method == "DELETE":
            delete = focus
        elif focus.method == "POST":
            post = focus

    return EndpointPlan(item_get=item_get, list_get=list_get, delete=delete, post=post)


def _is_success(status: int) -> bool:
    return 200 <= status < 300


def _new_resource_id(body: Any) -> str | None:
    if not isinstance(body, dict):
        return None
    value = body.get("id") or body.get("_id")
    return str(value) if value else None


class EndpointTester:
    """Runs the test protocol against one API origin."""

    __test__ = False

    def __init__(
        self,
        client: httpx.AsyncClient,
        base_url: str,
        auth: AuthConfig | None = None,
        mode: str = "full",
        timeout: float = 30,
        on_step: Callable[[TestStep], None] | None = None,
    ) -> None:
        """Initialize the tester.

        Args:
            client: Shared HTTP client
            base_url: API origin prepended to every path
            auth: Authentication settings, obtained once per test
            mode: "full" or "readonly"
            timeout: Per-request timeout in seconds
            on_step: Callback invoked after every recorded step
        """
        self.client = client
        self.base_url = base_url.rstrip("/")
        self.auth = auth
        self.mode = mode
        self.timeout = timeout
        self.on_step = on_step

    async def run(
        self,
        group: EndpointGroup,
        focus: Endpoint | None = None,
        resolver: PathResolver | None = None,
    ) -> TestResult:
        """Execute the protocol for one group.

        Args:
            group: Endpoints of one resource
            focus: Endpoint under test, preferred for its protocol slot
            resolver: Path parameter resolver, placeholder "1" when omitted

        Returns:
            TestResult with one step per protocol stage reached
        """
        start = time.monotonic()
        resolver = resolver or PathResolver()
        steps: list[TestStep] = []

        def elapsed() -> int:
            return int((time.monotonic() - start) * 1000)

        def finish(passed: bool, differences: list[Difference] | tuple[Difference, ...] = ()) -> TestResult:
            return TestResult(
                resource=group.resource,
                steps=tuple(steps),
                passed=passed,
                differences=tuple(differences),
                duration=elapsed(),
                endpoint=focus,
            )

        # 1. AUTH
        try:
            headers = await obtain_auth_headers(self.auth, client=self.client, timeout=self.timeout)
            self._record(steps, self._auth_step(succeeded=True))
        except AuthenticationError as e:
            step = self._auth_step(status=e.status)
            step.error = f"Authentication failed: {e}"
            self._record(steps, step)
            return finish(False, (Difference("auth", "success", "failed", DiffType.CHANGED),))

        plan = select_endpoints(group, focus)

        if self.mode == "readonly":
            get_endpoint = focus if focus is not None and focus.method == "GET" else plan.item_get or plan.list_get
            step = await self._get_readonly(get_endpoint, resolver, headers)
            self._record(steps, step)
            return finish(step.status == 200)

        # 2. GET
        if focus is not None and focus.method == "GET" and not focus.has_placeholder:
            original, resource_id = await self._get_from_list(focus, resolver, headers, steps)
        else:
            original, resource_id = await self._get_original(plan, resolver, headers, steps)

        # 3. DELETE
        self._record(steps, await self._delete(plan.delete, resource_id, resolver, headers))

        # 4. POST
        post_step, new_id = await self._post(plan.post, original, resource_id, resolver, headers)
        self._record(steps, post_step)

        # 5. VERIFY
        verify_step, verified = await self._verify(plan.item_get, new_id, resolver, headers)
        self._record(steps, verify_step)

        # 6. COMPARE
        compare_step, differences, passed = self._compare(original, verified)
        self._record(steps, compare_step)

        return finish(passed, differences)

    def _record(self, steps: list[TestStep], step: TestStep) -> None:
        steps.append(step)
        if step.error:
            logger.info("  %s: %s", step.step.value, step.error)
        else:
            logger.info("  %s: %s", step.step.value, step.status if step.status is not None else "ok")
        if self.on_step is not None:
            self.on_step(step)

    def _auth_step(self, status: int | None = None, succeeded: bool = False) -> TestStep:
        if self.auth is not None and self.auth.type == "oauth2":
            if succeeded:
                status = 200
            return TestStep(step=StepName.AUTH, method="POST", url=self.auth.token_url, status=status)
        return TestStep(step=StepName.AUTH, data={"type": self.auth.type if self.auth else "none"}, status=status)

    async def _request(
        self,
        method: str,
        path: str,
        headers: Mapping[str, str],
        payload: Any = None,
    ) -> tuple[int, Any]:
        """Execute one HTTP request.

        Returns:
            Tuple of (status_code, decoded body or None)

        Raises:
            StepExecutionError: If no response was received
        """
        url = f"{self.base_url}{path}"
        try:
            response = await self.client.request(
                method,
                url,
                headers=dict(headers),
                json=payload,
                timeout=self.timeout,
            )
        except httpx.TimeoutException as e:
            raise StepExecutionError("Request timed out") from e
        except httpx.RequestError as e:
            raise StepExecutionError(str(e) or type(e).__name__) from e

        try:
            body = response.json()
        except ValueError:
            body = None

        return response.status_code, body

    async def _get_readonly(
        self,
        endpoint: Endpoint | None,
        resolver: PathResolver,
        headers: Mapping[str, str],
    ) -> TestStep:
        if endpoint is None:
            return TestStep(step=StepName.GET, method="GET", error="No GET endpoint available")

        path = resolver.resolve(endpoint.path)
        url = f"{self.base_url}{path}"
        try:
            status, body = await self._request("GET", path, headers)
        except StepExecutionError as e:
            return TestStep(step=StepName.GET, method="GET", url=url, error=str(e))

        error = None if status == 200 else f"HTTP {status}"
        return TestStep(step=StepName.GET, method="GET", url=url, status=status, data=body, error=error)

    async def _get_original(
        self,
        plan: EndpointPlan,
        resolver: PathResolver,
        headers: Mapping[str, str],
        steps: list[TestStep],
    ) -> tuple[Any, str | None]:
        """Read the original resource.

        Returns:
            Tuple of (original data, resource id), both None when GET failed
        """
        if plan.item_get is not None:
            path = resolver.resolve(plan.item_get.path)
            url = f"{self.base_url}{path}"
            try:
                status, body = await self._request("GET", path, headers)
            except StepExecutionError as e:
                self._record(steps, TestStep(step=StepName.GET, method="GET", url=url, error=str(e)))
                return None, None

            if _is_success(status):
                self._record(steps, TestStep(step=StepName.GET, method="GET", url=url, status=status, data=body))
                return body, resolver.identifier_for(plan.item_get.path)

            if status == 404 and plan.list_get is not None:
                logger.debug("Item GET returned 404, falling back to %s", plan.list_get.path)
                return await self._get_from_list(plan.list_get, resolver, headers, steps)

            step = TestStep(step=StepName.GET, method="GET", url=url, status=status, data=body, error=f"HTTP {status}")
            self._record(steps, step)
            return None, None

        if plan.list_get is not None:
            return await self._get_from_list(plan.list_get, resolver, headers, steps)

        self._record(steps, TestStep(step=StepName.GET, method="GET", error="No GET endpoint available"))
        return None, None

    async def _get_from_list(
        self,
        endpoint: Endpoint,
        resolver: PathResolver,
        headers: Mapping[str, str],
        steps: list[TestStep],
    ) -> tuple[Any, str | None]:
        path = resolver.resolve(endpoint.path)
        url = f"{self.base_url}{path}"
        try:
            status, body = await self._request("GET", path, headers)
        except StepExecutionError as e:
            self._record(steps, TestStep(step=StepName.GET, method="GET", url=url, error=str(e)))
            return None, None

        if not _is_success(status):
            step = TestStep(step=StepName.GET, method="GET", url=url, status=status, data=body, error=f"HTTP {status}")
            self._record(steps, step)
            return None, None

        items = unwrap_items(body)
        if not items:
            step = TestStep(
                step=StepName.GET,
                method="GET",
                url=url,
                status=status,
                error="No resources found in collection",
            )
            self._record(steps, step)
            return None, None

        original = items[0]
        if isinstance(original, dict):
            resource_id = str(original.get("id") or original.get("_id") or "1")
        else:
            resource_id = str(original)

        self._record(steps, TestStep(step=StepName.GET, method="GET", url=url, status=status, data=original))
        return original, resource_id

    async def _delete(
        self,
        endpoint: Endpoint | None,
        resource_id: str | None,
        resolver: PathResolver,
        headers: Mapping[str, str],
    ) -> TestStep:
        if endpoint is None:
            return TestStep(step=StepName.DELETE, error="No DELETE endpoint available")
        if resource_id is None:
            return TestStep(step=StepName.DELETE, method="DELETE", error="No resource ID to delete")

        path = resolver.resolve(endpoint.path, resource_id)
        url = f"{self.base_url}{path}"
        try:
            status, body = await self._request("DELETE", path, headers)
        except StepExecutionError as e:
            return TestStep(step=StepName.DELETE, method="DELETE", url=url, error=str(e))

        if status == 404:
            return TestStep(step=StepName.DELETE, method="DELETE", url=url, status=status, data=dict(ABSENT_ON_DELETE))
        if _is_success(status):
            return TestStep(step=StepName.DELETE, method="DELETE", url=url, status=status, data=body)

        logger.warning("DELETE %s returned %d", url, status)
        return TestStep(step=StepName.DELETE, method="DELETE", url=url, status=status, data=body, error=f"HTTP {status}")

    async def _post(
        self,
        endpoint: Endpoint | None,
        original: Any,
        resource_id: str | None,
        resolver: PathResolver,
        headers: Mapping[str, str],
    ) -> tuple[TestStep, str | None]:
        if endpoint is None:
            return TestStep(step=StepName.POST, error="No POST endpoint available"), None
        if original is None:
            return TestStep(step=StepName.POST, method="POST", error="No original data to recreate"), None

        payload = strip_meta_fields(original)
        path = resolver.resolve(endpoint.path, resource_id)
        url = f"{self.base_url}{path}"
        try:
            status, body = await self._request("POST", path, headers, payload)
        except StepExecutionError as e:
            return TestStep(step=StepName.POST, method="POST", url=url, data=payload, error=str(e)), None

        if not _is_success(status):
            message = body.get("message") if isinstance(body, dict) else None
            step = TestStep(
                step=StepName.POST,
                method="POST",
                url=url,
                status=status,
                data=payload,
                error=str(message) if message else f"HTTP {status}",
            )
            return step, None

        return TestStep(step=StepName.POST, method="POST", url=url, status=status, data=body), _new_resource_id(body)

    async def _verify(
        self,
        item_get: Endpoint | None,
        new_id: str | None,
        resolver: PathResolver,
        headers: Mapping[str, str],
    ) -> tuple[TestStep, Any]:
        if new_id is None:
            return TestStep(step=StepName.VERIFY, method="GET", error="No new resource ID to verify"), None
        if item_get is None:
            return TestStep(step=StepName.VERIFY, method="GET", error="No GET endpoint available"), None

        path = resolver.resolve(item_get.path, new_id)
        url = f"{self.base_url}{path}"
        try:
            status, body = await self._request("GET", path, headers)
        except StepExecutionError as e:
            return TestStep(step=StepName.VERIFY, method="GET", url=url, error=str(e)), None

        if not _is_success(status):
            step = TestStep(step=StepName.VERIFY, method="GET", url=url, status=status, data=body, error=f"HTTP {status}")
            return step, None

        return TestStep(step=StepName.VERIFY, method="GET", url=url, status=status, data=body), body

    def _compare(self, original: Any, verified: Any) -> tuple[TestStep, list[Difference], bool]:
        cleaned_original = strip_meta_fields(original) if original is not None else None
        cleaned_verified = strip_meta_fields(verified) if verified is not None else None

        if original is None or verified is None:
            missing = "original" if original is None else "verify"
            step = TestStep(
                step=StepName.COMPARE,
                data={"original": cleaned_original, "verified": cleaned_verified, "differences": []},
                error=f"No {missing} data to compare",
            )
            return step, [], False

        differences = deep_compare(cleaned_original, cleaned_verified)
        step = TestStep(
            step=StepName.COMPARE,
            data={
                "original": cleaned_original,
                "verified": cleaned_verified,
                "differences": [d.to_dict() for d in differences],
            },
        )
        return step, differences, not differences
