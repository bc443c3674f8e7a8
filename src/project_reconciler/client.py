"""Harbor HTTP client.

Implements the transport the reconciler consumes: a status-checked
request function plus the repository and quota helpers needed around
project deletion and update.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Protocol
from urllib.parse import quote, urlparse

import httpx
from pydantic import TypeAdapter, ValidationError

from .config import Config
from .errors import DecodeError, IdentityExtractionError, TransportError, UnexpectedStatusError
from .models import Repository

logger = logging.getLogger(__name__)

PATH_PROJECTS = "/projects"
PATH_QUOTAS = "/quotas"

_repository_list = TypeAdapter(list[Repository])


@dataclass(frozen=True)
class HarborResponse:
    """Body, headers and status of a successful request."""

    body: bytes
    status: int
    headers: Mapping[str, str] = field(default_factory=dict)


class HarborTransport(Protocol):
    """Operations the reconciler needs from the remote system."""

    def send(
        self, method: str, path: str, body: dict[str, Any] | None, expected_status: int
    ) -> HarborResponse: ...

    def identity_from_headers(self, headers: Mapping[str, str]) -> str: ...

    def list_repositories(self, project_name: str) -> list[Repository]: ...

    def delete_all_repositories(self, project_name: str) -> None: ...

    def update_storage_quota(self, identity: str, storage_quota: int) -> None: ...


def project_id_from_identity(identity: str) -> str:
    """Numeric project id at the end of an identity such as /projects/42."""
    return identity.rstrip("/").rsplit("/", 1)[-1]


def repository_path(project_name: str, repository: str) -> str:
    """Path of a repository below its project.

    Harbor expects slashes inside repository names double-encoded
    (``a/b`` -> ``a%252Fb``).
    """
    escaped = quote(quote(repository, safe=""), safe="")
    return f"{PATH_PROJECTS}/{quote(project_name, safe='')}/repositories/{escaped}"


def _error_detail(response: httpx.Response) -> str:
    """Extract Harbor's error message from a failed response."""
    try:
        payload = response.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return response.text.strip()
    if isinstance(payload, dict):
        errors = payload.get("errors")
        if isinstance(errors, list) and errors and isinstance(errors[0], dict):
            return str(errors[0].get("message", ""))
        if "message" in payload:
            return str(payload["message"])
    return response.text.strip()


class HarborClient:
    """Synchronous HTTP client for the Harbor v2 REST API."""

    def __init__(self, config: Config, transport: httpx.BaseTransport | None = None) -> None:
        self._config = config
        auth = (config.username, config.password) if config.username else None
        if config.insecure:
            logger.warning("TLS certificate verification is disabled", extra={"url": config.url})
        self._client = httpx.Client(
            base_url=config.base_url,
            auth=auth,
            verify=not config.insecure,
            timeout=config.request_timeout_seconds,
            transport=transport,
            headers={"Accept": "application/json"},
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> HarborClient:
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    def send(
        self, method: str, path: str, body: dict[str, Any] | None, expected_status: int
    ) -> HarborResponse:
        """Issue one request and check its status.

        Args:
            method: HTTP method.
            path: Path below the API base, e.g. /projects/42.
            body: JSON body, or None.
            expected_status: The only status treated as success.

        Returns:
            HarborResponse of the successful request.

        Raises:
            TransportError: If no response was received.
            UnexpectedStatusError: If the status differs from expected_status.
        """
        kwargs: dict[str, Any] = {}
        if body is not None:
            kwargs["json"] = body

        logger.debug("Harbor request", extra={"method": method, "path": path})
        try:
            response = self._client.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            raise TransportError(f"{method} {path} timed out: {e}") from e
        except (httpx.InvalidURL, httpx.UnsupportedProtocol) as e:
            raise TransportError(f"Invalid URL for Harbor at {self._config.url}: {e}") from e
        except httpx.TransportError as e:
            raise TransportError(f"Cannot reach Harbor at {self._config.url}: {e}") from e

        if response.status_code != expected_status:
            raise UnexpectedStatusError(
                method, path, response.status_code, expected_status, _error_detail(response)
            )

        return HarborResponse(
            body=response.content,
            status=response.status_code,
            headers=response.headers,
        )

    def identity_from_headers(self, headers: Mapping[str, str]) -> str:
        """Derive the project identity from a create response.

        Harbor answers 201 with ``Location: /api/v2.0/projects/<id>``; the
        identity is that path without the API base.

        Raises:
            IdentityExtractionError: If the Location header is missing or empty.
        """
        location = headers.get("Location") or headers.get("location")
        if not location:
            raise IdentityExtractionError("create response carried no Location header")

        path = urlparse(location).path or location
        api_path = self._config.api_path
        if path.startswith(api_path + "/"):
            path = path[len(api_path):]
        if not path.strip("/"):
            raise IdentityExtractionError(f"Location header has no project path: {location}")
        return path

    def list_repositories(self, project_name: str) -> list[Repository]:
        """List every repository of a project, following pagination."""
        page_size = self._config.repository_page_size
        path = f"{PATH_PROJECTS}/{quote(project_name, safe='')}/repositories"
        repositories: list[Repository] = []
        page = 1

        while True:
            response = self.send("GET", f"{path}?page={page}&page_size={page_size}", None, 200)
            try:
                batch = _repository_list.validate_json(response.body)
            except ValidationError as e:
                raise DecodeError(f"repository listing for {project_name} is malformed: {e}") from e
            repositories.extend(batch)
            if len(batch) < page_size:
                break
            page += 1

        return repositories

    def delete_all_repositories(self, project_name: str) -> None:
        """Delete every repository of a project.

        Stops at the first failure; repositories deleted before it stay deleted.
        """
        repositories = self.list_repositories(project_name)
        for repository in repositories:
            short_name = repository.short_name(project_name)
            self.send("DELETE", repository_path(project_name, short_name), None, 200)
            logger.info(
                "Deleted repository",
                extra={"project": project_name, "repository": short_name},
            )

    def update_storage_quota(self, identity: str, storage_quota: int) -> None:
        """Set the storage quota (bytes, -1 unlimited) of a project.

        Harbor allocates the quota record with the project, under the same id.
        """
        quota_path = f"{PATH_QUOTAS}/{project_id_from_identity(identity)}"
        self.send("PUT", quota_path, {"hard": {"storage": storage_quota}}, 200)
