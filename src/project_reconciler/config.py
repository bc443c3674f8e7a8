"""Configuration management with validation.

Connection settings for the Harbor API are read from the environment and
validated at load time so a misconfigured reconciler fails before issuing
any request.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass


class ConfigurationError(Exception):
    """Raised when configuration validation fails."""

    pass


# Configuration constants with documented bounds
DEFAULT_API_VERSION = 2
SUPPORTED_API_VERSIONS = (1, 2)

DEFAULT_REQUEST_TIMEOUT_SECONDS = 30
MIN_REQUEST_TIMEOUT_SECONDS = 1
MAX_REQUEST_TIMEOUT_SECONDS = 300

# Harbor caps page_size at 100 for repository listings
DEFAULT_REPOSITORY_PAGE_SIZE = 100
MAX_REPOSITORY_PAGE_SIZE = 100

MAX_SPEC_FILE_SIZE_BYTES = 1024 * 1024  # 1MB max spec file
MAX_STATE_FILE_SIZE_BYTES = 1024 * 1024

# Input validation patterns
VALID_URL_PATTERN = r"^https?://[^\s/$.?#][^\s]*$"


def api_base_path(api_version: int) -> str:
    """Return the API base path for a Harbor API version.

    Args:
        api_version: Harbor API major version (1 or 2).

    Returns:
        "/api" for version 1, "/api/v2.0" for version 2.
    """
    if api_version == 1:
        return "/api"
    return "/api/v2.0"


@dataclass(frozen=True)
class Config:
    """Reconciler configuration loaded from environment variables.

    All fields are validated at construction time. Invalid configurations
    raise ConfigurationError immediately rather than failing at runtime.
    """

    # Required fields
    url: str

    # Credentials (basic auth; anonymous when username is empty)
    username: str = ""
    password: str = ""

    # Transport
    api_version: int = DEFAULT_API_VERSION
    insecure: bool = False
    request_timeout_seconds: int = DEFAULT_REQUEST_TIMEOUT_SECONDS
    repository_page_size: int = DEFAULT_REPOSITORY_PAGE_SIZE

    # Logging
    json_logging: bool = True

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        errors: list[str] = []

        if not self.url:
            errors.append("HARBOR_URL is required")
        elif not re.match(VALID_URL_PATTERN, self.url):
            errors.append(f"HARBOR_URL must be an http(s) URL: {self.url}")

        if self.username and not self.password:
            errors.append("HARBOR_PASSWORD is required when HARBOR_USERNAME is set")

        if self.api_version not in SUPPORTED_API_VERSIONS:
            errors.append(
                f"HARBOR_API_VERSION must be one of {list(SUPPORTED_API_VERSIONS)}: "
                f"{self.api_version}"
            )

        if not (
            MIN_REQUEST_TIMEOUT_SECONDS
            <= self.request_timeout_seconds
            <= MAX_REQUEST_TIMEOUT_SECONDS
        ):
            errors.append(
                f"HARBOR_REQUEST_TIMEOUT must be between {MIN_REQUEST_TIMEOUT_SECONDS} "
                f"and {MAX_REQUEST_TIMEOUT_SECONDS} seconds"
            )

        if not 1 <= self.repository_page_size <= MAX_REPOSITORY_PAGE_SIZE:
            errors.append(
                f"HARBOR_REPOSITORY_PAGE_SIZE must be between 1 and {MAX_REPOSITORY_PAGE_SIZE}"
            )

        if errors:
            error_msg = "Configuration validation failed:\n  - " + "\n  - ".join(errors)
            raise ConfigurationError(error_msg)

    @property
    def base_url(self) -> str:
        """Full API base URL, e.g. https://harbor.example.com/api/v2.0."""
        return self.url.rstrip("/") + api_base_path(self.api_version)

    @property
    def api_path(self) -> str:
        """API base path without the host."""
        return api_base_path(self.api_version)

    @classmethod
    def from_env(cls) -> Config:
        """Load configuration from environment variables.

        Environment Variables:
            HARBOR_URL: Harbor instance URL (required)
            HARBOR_USERNAME: Basic auth user (default: anonymous)
            HARBOR_PASSWORD: Basic auth password
            HARBOR_API_VERSION: 1 or 2 (default: 2)
            HARBOR_INSECURE: If "true", skip TLS verification (default: false)
            HARBOR_REQUEST_TIMEOUT: Per-request timeout in seconds (default: 30)
            HARBOR_REPOSITORY_PAGE_SIZE: Page size for repository listings (default: 100)
            ENABLE_JSON_LOGGING: Emit JSON logs on stderr (default: true)
        """

        def get_int(key: str, default: int) -> int:
            value = os.environ.get(key)
            if value is None:
                return default
            try:
                return int(value)
            except ValueError as e:
                raise ConfigurationError(f"{key} must be an integer: {value}") from e

        def get_bool(key: str, default: bool) -> bool:
            value = os.environ.get(key, "").lower()
            if not value:
                return default
            return value in ("true", "1", "yes")

        return cls(
            url=os.environ.get("HARBOR_URL", ""),
            username=os.environ.get("HARBOR_USERNAME", ""),
            password=os.environ.get("HARBOR_PASSWORD", ""),
            api_version=get_int("HARBOR_API_VERSION", DEFAULT_API_VERSION),
            insecure=get_bool("HARBOR_INSECURE", False),
            request_timeout_seconds=get_int(
                "HARBOR_REQUEST_TIMEOUT", DEFAULT_REQUEST_TIMEOUT_SECONDS
            ),
            repository_page_size=get_int(
                "HARBOR_REPOSITORY_PAGE_SIZE", DEFAULT_REPOSITORY_PAGE_SIZE
            ),
            json_logging=get_bool("ENABLE_JSON_LOGGING", True),
        )
