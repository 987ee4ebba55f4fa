"""Utility modules for API contract regression testing."""

from .auth import AuthConfig, obtain_auth_headers
from .blacklist import DEFAULT_EXCLUDED_ENDPOINTS, EndpointBlacklist
from .comparator import Difference, DiffType, deep_compare, strip_meta_fields
from .errors import (
    AuthenticationError,
    ContractGuardError,
    DiscoveryFetchError,
    StepExecutionError,
    SwaggerParseError,
)
from .models import Endpoint, EndpointGroup, RunSummary, StepName, TestResult, TestStep
from .report import CoverageStats, analyze_coverage, generate_json_report, generate_markdown_report
from .run_config import RunOptions, load_config
from .swagger import SwaggerCatalog, parse_swagger_document, parse_swagger_url

__all__ = [
    "DEFAULT_EXCLUDED_ENDPOINTS",
    "AuthConfig",
    "AuthenticationError",
    "ContractGuardError",
    "CoverageStats",
    "DiffType",
    "Difference",
    "DiscoveryFetchError",
    "Endpoint",
    "EndpointBlacklist",
    "EndpointGroup",
    "RunOptions",
    "RunSummary",
    "StepExecutionError",
    "StepName",
    "SwaggerCatalog",
    "SwaggerParseError",
    "TestResult",
    "TestStep",
    "analyze_coverage",
    "deep_compare",
    "generate_json_report",
    "generate_markdown_report",
    "load_config",
    "obtain_auth_headers",
    "parse_swagger_document",
    "parse_swagger_url",
    "strip_meta_fields",
]
