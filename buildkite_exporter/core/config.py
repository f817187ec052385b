"""
Configuration for the Buildkite exporter.

Values are read from environment variables:
- BUILDKITE_TOKEN: Buildkite API access token (required)
- BUILDKITE_ORG: Buildkite organization slug (required)
- BUILDKITE_PIPELINE: Comma-separated list of pipeline slugs (required)
- BUILDKITE_API_URL: Buildkite REST API base URL (default: "https://api.buildkite.com")
- BUILDKITE_PAGE_SIZE: Builds per listing page (default: 100, the API maximum)
- OTEL_EXPORTER_OTLP_ENDPOINT: OTLP gRPC endpoint (default: "api.honeycomb.io:443")
- OTEL_EXPORTER_OTLP_HEADERS: Comma-separated key=value headers sent with every export
- OTEL_EXPORTER_OTLP_INSECURE: Disable TLS for the OTLP endpoint (default: false)
- HONEYCOMB_API_KEY / HONEYCOMB_DATASET: Shorthands for the Honeycomb auth headers
- OTEL_SERVICE_NAME: Service name for traces (default: "BuildKiteExporter")
- BUILDKITE_ID_CACHE_PATH: File holding the ids of exported builds
  (default: "/tmp/buildkite-id-cache.txt")
- POLL_INTERVAL_SECONDS: Time between ingestion cycles (default: 900)
- RETENTION_DAYS: How far back to query and how long to remember builds (default: 60)
- MAX_CONCURRENT_BUILDS: Builds exported concurrently within a cycle (default: 16)
- MAX_PAGE_ATTEMPTS: Attempts per listing page before the cycle is aborted (default: 10)
- DEBUG_EXPORTER: Print spans to stdout instead of sending them (default: false)

A YAML file (BUILDKITE_EXPORTER_CONFIG_PATH, or --config) may override any of these fields.
"""

import inspect
import os
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Dict, List, Optional, Sequence

import yaml
from buildkite_exporter import __version__
from buildkite_exporter.core.loggers import logger_name, make_logger
from buildkite_exporter.domain.exceptions import InvalidConfigurationException

logger = make_logger(logger_name())

__all__: Sequence[str] = (
    "CONFIG_PATH",
    "ExporterConfig",
    "get_boolean_env_var",
    "parse_headers",
)

CONFIG_PATH: Optional[str] = os.getenv("BUILDKITE_EXPORTER_CONFIG_PATH")

HONEYCOMB_ENDPOINT = "api.honeycomb.io:443"
DEFAULT_CACHE_PATH = "/tmp/buildkite-id-cache.txt"
BUILDKITE_MAX_PAGE_SIZE = 100


def get_boolean_env_var(name: str) -> bool:
    """An env var is ON iff it is defined and its value is the literal string 'true'."""
    value = os.environ.get(name)
    if value is None:
        return False
    return value.strip().lower() == "true"


def _parse_list(value: str) -> List[str]:
    """Parse comma-separated string into list."""
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


def parse_headers(value: str) -> Dict[str, str]:
    """Parse comma-separated key=value pairs, as in OTEL_EXPORTER_OTLP_HEADERS."""
    headers = {}
    for item in _parse_list(value):
        if "=" not in item:
            raise InvalidConfigurationException(f"Malformed header {item!r}, expected key=value")
        key, header_value = item.split("=", 1)
        headers[key.strip()] = header_value.strip()
    return headers


def _default_headers() -> Dict[str, str]:
    headers = parse_headers(os.environ.get("OTEL_EXPORTER_OTLP_HEADERS", ""))
    if os.environ.get("HONEYCOMB_API_KEY"):
        headers["x-honeycomb-team"] = os.environ["HONEYCOMB_API_KEY"]
    if os.environ.get("HONEYCOMB_DATASET"):
        headers["x-honeycomb-dataset"] = os.environ["HONEYCOMB_DATASET"]
    return headers


def _int_env(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise InvalidConfigurationException(f"{name} must be an integer, got {raw!r}") from exc


@dataclass
class ExporterConfig:
    buildkite_token: str = field(default_factory=lambda: os.environ.get("BUILDKITE_TOKEN", ""))
    buildkite_org: str = field(default_factory=lambda: os.environ.get("BUILDKITE_ORG", ""))
    buildkite_pipelines: List[str] = field(
        default_factory=lambda: _parse_list(os.environ.get("BUILDKITE_PIPELINE", ""))
    )
    buildkite_api_url: str = field(
        default_factory=lambda: os.environ.get("BUILDKITE_API_URL", "https://api.buildkite.com")
    )
    page_size: int = field(
        default_factory=lambda: _int_env("BUILDKITE_PAGE_SIZE", BUILDKITE_MAX_PAGE_SIZE)
    )

    otlp_endpoint: str = field(
        default_factory=lambda: os.environ.get("OTEL_EXPORTER_OTLP_ENDPOINT", HONEYCOMB_ENDPOINT)
    )
    otlp_headers: Dict[str, str] = field(default_factory=_default_headers)
    otlp_insecure: bool = field(
        default_factory=lambda: get_boolean_env_var("OTEL_EXPORTER_OTLP_INSECURE")
    )
    service_name: str = field(
        default_factory=lambda: os.environ.get("OTEL_SERVICE_NAME", "BuildKiteExporter")
    )
    service_version: str = __version__
    debug_exporter: bool = field(default_factory=lambda: get_boolean_env_var("DEBUG_EXPORTER"))

    cache_path: str = field(
        default_factory=lambda: os.environ.get("BUILDKITE_ID_CACHE_PATH", DEFAULT_CACHE_PATH)
    )
    poll_interval_seconds: int = field(
        default_factory=lambda: _int_env("POLL_INTERVAL_SECONDS", 900)
    )
    retention_days: int = field(default_factory=lambda: _int_env("RETENTION_DAYS", 60))
    max_concurrent_builds: int = field(
        default_factory=lambda: _int_env("MAX_CONCURRENT_BUILDS", 16)
    )
    max_page_attempts: int = field(default_factory=lambda: _int_env("MAX_PAGE_ATTEMPTS", 10))

    @classmethod
    def from_json(cls, json) -> "ExporterConfig":
        json = dict(json)
        if isinstance(json.get("buildkite_pipelines"), str):
            json["buildkite_pipelines"] = _parse_list(json["buildkite_pipelines"])
        return cls(**{k: v for k, v in json.items() if k in inspect.signature(cls).parameters})

    @classmethod
    def from_yaml(cls, yaml_path: str) -> "ExporterConfig":
        with open(yaml_path, "r") as f:
            raw_data = yaml.safe_load(f) or {}
        return cls.from_json(raw_data)

    @classmethod
    def load(cls, yaml_path: Optional[str] = None) -> "ExporterConfig":
        yaml_path = yaml_path or CONFIG_PATH
        if yaml_path:
            logger.info(f"Using config file path: `{yaml_path}`")
            return cls.from_yaml(yaml_path)
        return cls()

    @property
    def poll_interval(self) -> timedelta:
        return timedelta(seconds=self.poll_interval_seconds)

    @property
    def retention(self) -> timedelta:
        return timedelta(days=self.retention_days)

    def validate(self) -> None:
        missing = [
            name
            for name, value in (
                ("BUILDKITE_TOKEN", self.buildkite_token),
                ("BUILDKITE_ORG", self.buildkite_org),
                ("BUILDKITE_PIPELINE", self.buildkite_pipelines),
            )
            if not value
        ]
        if missing:
            raise InvalidConfigurationException(f"Missing required settings: {', '.join(missing)}")
        if not 1 <= self.page_size <= BUILDKITE_MAX_PAGE_SIZE:
            raise InvalidConfigurationException(
                f"page_size must be between 1 and {BUILDKITE_MAX_PAGE_SIZE}"
            )
        for name in (
            "poll_interval_seconds",
            "retention_days",
            "max_concurrent_builds",
            "max_page_attempts",
        ):
            if getattr(self, name) < 1:
                raise InvalidConfigurationException(f"{name} should be at least 1")
