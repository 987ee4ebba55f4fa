"""Run configuration.

Values are resolved from three layers, later layers winning:
1. ``DEFAULT_CONFIG``
2. A YAML file (``config/contract_guard.yaml`` by default)
3. Environment variables (``API_USERNAME``, ``API_PASSWORD``, ``API_TOKEN``,
   ``GRANT_TYPE``, ``SWAGGER_URL``, ``ACCEPT_SELF_SIGNED_CERT``)

Command-line flags are applied on top by the CLI with ``apply_overrides``.
"""

import copy
import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .auth import AuthConfig

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("config/contract_guard.yaml")

RUN_MODES = ("full", "readonly")

DEFAULT_CONFIG: dict[str, Any] = {
    "api": {
        "swagger_url": "",
        "timeout": 30,
        "verify_ssl": True,
        "validate_document": False,
    },
    "auth": {
        "type": "none",
        "token": None,
        "username": None,
        "password": None,
        "token_url": None,
        "grant_type": "password",
    },
    "run": {
        "mode": "full",
        "parallel": False,
        "max_parallel": 5,
        "use_real_data": False,
        "use_hierarchical": False,
        "max_child_tests": None,
    },
    "discovery": {
        "sample_size": 10,
    },
    "blacklist": {
        "extra": [],
    },
    "reports": {
        "json": "reports/contract-guard-report.json",
        "markdown": "reports/contract-guard-report.md",
    },
}


def load_config(config_path: Path | None = None, environ: Mapping[str, str] | None = None) -> dict:
    """Load configuration from YAML file and environment, over defaults.

    Args:
        config_path: YAML file, defaults to config/contract_guard.yaml
        environ: Environment mapping, defaults to os.environ

    Returns:
        Merged configuration dictionary
    """
    config_path = config_path or DEFAULT_CONFIG_PATH
    config = copy.deepcopy(DEFAULT_CONFIG)

    if config_path.exists():
        with config_path.open() as f:
            loaded = yaml.safe_load(f) or {}
        if not isinstance(loaded, dict):
            raise ValueError(f"Config file {config_path} must contain a mapping")
        config = _deep_merge(config, loaded)
    else:
        logger.warning("Config not found: %s, using defaults", config_path)

    return apply_environment(config, os.environ if environ is None else environ)


def _deep_merge(base: dict, override: dict) -> dict:
    """Deep merge two dictionaries."""
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def apply_environment(config: dict, environ: Mapping[str, str]) -> dict:
    """Overlay credential and endpoint environment variables."""
    overrides: dict[str, Any] = {"auth": {}, "api": {}}

    if environ.get("API_USERNAME"):
        overrides["auth"]["username"] = environ["API_USERNAME"]
    if environ.get("API_PASSWORD"):
        overrides["auth"]["password"] = environ["API_PASSWORD"]
    if environ.get("API_TOKEN"):
        overrides["auth"]["token"] = environ["API_TOKEN"]
    if environ.get("GRANT_TYPE"):
        overrides["auth"]["grant_type"] = environ["GRANT_TYPE"]
    if environ.get("SWAGGER_URL"):
        overrides["api"]["swagger_url"] = environ["SWAGGER_URL"]
    if environ.get("ACCEPT_SELF_SIGNED_CERT", "").lower() == "true":
        overrides["api"]["verify_ssl"] = False

    return _deep_merge(config, overrides)


def apply_overrides(config: dict, overrides: Mapping[str, Mapping[str, Any]]) -> dict:
    """Overlay non-None values, e.g. command-line flags, section by section."""
    cleaned = {
        section: {key: value for key, value in values.items() if value is not None}
        for section, values in overrides.items()
    }
    return _deep_merge(config, cleaned)


def build_auth_config(section: Mapping[str, Any]) -> AuthConfig:
    """AuthConfig from the ``auth`` section.

    With ``type: none``, the scheme is inferred from the credentials present:
    a token URL with username and password selects OAuth2, a bare token
    selects bearer.
    """
    auth_type = section.get("type") or "none"

    if auth_type == "none":
        if section.get("token_url") and section.get("username") and section.get("password"):
            auth_type = "oauth2"
        elif section.get("token"):
            auth_type = "bearer"

    return AuthConfig(
        type=auth_type,
        token=section.get("token"),
        username=section.get("username"),
        password=section.get("password"),
        token_url=section.get("token_url"),
        grant_type=section.get("grant_type") or "password",
    )


@dataclass(frozen=True)
class RunOptions:
    """Immutable values consumed by the orchestrator."""

    mode: str = "full"
    parallel: bool = False
    max_parallel: int = 5
    use_real_data: bool = False
    use_hierarchical: bool = False
    timeout: float = 30
    max_child_tests: int | None = None
    sample_size: int = 10
    auth: AuthConfig = field(default_factory=AuthConfig)

    def __post_init__(self) -> None:
        if self.mode not in RUN_MODES:
            raise ValueError(f"Invalid mode: {self.mode} (expected one of {', '.join(RUN_MODES)})")
        if self.max_parallel < 1:
            raise ValueError(f"max_parallel must be at least 1, got {self.max_parallel}")

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "RunOptions":
        """Build run options from a merged configuration dictionary.

        Raises:
            ValueError: For an unknown mode or a non-positive max_parallel
        """
        run = config.get("run", {})
        api = config.get("api", {})
        discovery = config.get("discovery", {})

        max_child_tests = run.get("max_child_tests")

        return cls(
            mode=str(run.get("mode", "full")).lower(),
            parallel=bool(run.get("parallel", False)),
            max_parallel=int(run.get("max_parallel", 5)),
            use_real_data=bool(run.get("use_real_data", False)),
            use_hierarchical=bool(run.get("use_hierarchical", False)),
            timeout=float(api.get("timeout", 30)),
            max_child_tests=int(max_child_tests) if max_child_tests is not None else None,
            sample_size=int(discovery.get("sample_size", 10)),
            auth=build_auth_config(config.get("auth", {})),
        )
