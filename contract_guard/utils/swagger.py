"""Endpoint catalog from an OpenAPI/Swagger document.

Fetches the document, resolves the API origin, and flattens ``paths`` into
endpoint groups keyed by resource prefix (``/api/v1/users/{id}`` belongs to
``/api/v1``, ``/pet/findByStatus`` to ``/pet``).
"""

import json
import logging
import re
from dataclasses import dataclass
from typing import Any
from urllib.parse import urljoin, urlsplit

import httpx
import yaml
from openapi_spec_validator import validate
from openapi_spec_validator.validation.exceptions import OpenAPIValidationError

from .errors import SwaggerParseError
from .models import HTTP_METHODS, Endpoint, EndpointGroup

logger = logging.getLogger(__name__)

METHOD_ORDER = {method: index for index, method in enumerate(HTTP_METHODS)}

VERSIONED_PREFIX = re.compile(r"^(api|v\d+)$", re.IGNORECASE)


@dataclass(frozen=True)
class SwaggerCatalog:
    """Parsed catalog: endpoint groups plus the origin their paths are relative to."""

    groups: tuple[EndpointGroup, ...]
    base_url: str

    @property
    def endpoint_count(self) -> int:
        return sum(len(g.endpoints) for g in self.groups)


def resolve_base_url(spec: dict[str, Any], source_url: str) -> str:
    """API origin from ``servers`` (OpenAPI 3), ``host``/``basePath`` (Swagger 2),
    or the document URL itself.
    """
    parts = urlsplit(source_url)
    origin = f"{parts.scheme}://{parts.netloc}"

    servers = spec.get("servers") or []
    if servers and isinstance(servers[0], dict) and servers[0].get("url"):
        base_url = servers[0]["url"]
        if not base_url.startswith(("http://", "https://")):
            # Relative server URLs resolve against the document location
            base_url = urljoin(source_url, base_url)
    elif spec.get("host"):
        schemes = spec.get("schemes") or ["https"]
        base_url = f"{schemes[0]}://{spec['host']}{spec.get('basePath', '')}"
    else:
        base_url = origin

    return base_url.rstrip("/")


def resource_for_path(path: str) -> str:
    """Group key: first segment, or first two when the first is ``api`` or ``vN``."""
    segments = [s for s in path.split("/") if s]
    if not segments:
        return "/root"
    if VERSIONED_PREFIX.match(segments[0]) and len(segments) > 1:
        return "/" + "/".join(segments[:2])
    return "/" + segments[0]


def parse_swagger_document(spec: dict[str, Any], source_url: str) -> SwaggerCatalog:
    """Flatten a decoded OpenAPI/Swagger document into endpoint groups.

    Args:
        spec: Decoded document
        source_url: URL the document was loaded from

    Returns:
        Groups sorted by resource, endpoints ordered GET, POST, PUT, PATCH, DELETE
    """
    if not isinstance(spec, dict):
        raise SwaggerParseError("Swagger document is not an object")

    grouped: dict[str, list[Endpoint]] = {}

    for path, operations in (spec.get("paths") or {}).items():
        if not isinstance(operations, dict):
            continue
        for method, details in operations.items():
            if method.upper() not in HTTP_METHODS:
                continue
            details = details if isinstance(details, dict) else {}
            endpoint = Endpoint(
                method=method,
                path=path,
                summary=details.get("summary") or details.get("description"),
            )
            grouped.setdefault(resource_for_path(path), []).append(endpoint)

    groups = tuple(
        EndpointGroup(
            resource=resource,
            endpoints=tuple(sorted(endpoints, key=lambda e: METHOD_ORDER[e.method])),
        )
        for resource, endpoints in sorted(grouped.items())
    )

    return SwaggerCatalog(groups=groups, base_url=resolve_base_url(spec, source_url))


def validate_spec(spec: dict[str, Any]) -> tuple[bool, str | None]:
    """Validate an OpenAPI specification."""
    try:
        validate(spec)
        return True, None
    except OpenAPIValidationError as e:
        return False, str(e)
    except Exception as e:
        return False, f"Validation error: {e}"


def _decode(text: str) -> Any:
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return yaml.safe_load(text)


async def parse_swagger_url(
    url: str,
    client: httpx.AsyncClient | None = None,
    timeout: float = 30,
    verify_ssl: bool = True,
    validate_document: bool = False,
) -> SwaggerCatalog:
    """Fetch and parse a Swagger document.

    Args:
        url: Document URL (JSON or YAML)
        client: Shared HTTP client, a private one is opened when omitted
        timeout: Request timeout in seconds
        verify_ssl: Verify TLS certificates for a private client
        validate_document: Log schema violations as warnings

    Raises:
        SwaggerParseError: If the document cannot be fetched or decoded
    """
    if client is None:
        async with httpx.AsyncClient(verify=verify_ssl, follow_redirects=True) as own_client:
            return await parse_swagger_url(url, own_client, timeout, verify_ssl, validate_document)

    try:
        response = await client.get(url, timeout=timeout)
    except httpx.TimeoutException as e:
        raise SwaggerParseError(f"Timed out fetching Swagger from {url}") from e
    except httpx.RequestError as e:
        raise SwaggerParseError(f"Failed to fetch Swagger: {e}") from e

    if response.status_code >= 400:
        raise SwaggerParseError(f"Failed to fetch Swagger: HTTP {response.status_code}")

    try:
        spec = _decode(response.text)
    except yaml.YAMLError as e:
        raise SwaggerParseError(f"Failed to parse Swagger: {e}") from e

    if validate_document and isinstance(spec, dict):
        valid, error = validate_spec(spec)
        if not valid:
            logger.warning("Swagger document failed validation: %s", error)

    catalog = parse_swagger_document(spec, url)
    logger.info("Found %d endpoint groups (%d endpoints)", len(catalog.groups), catalog.endpoint_count)
    logger.info("Base URL: %s", catalog.base_url)
    return catalog
