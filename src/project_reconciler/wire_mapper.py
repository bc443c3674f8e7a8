"""Translation between ProjectSpec and Harbor project payloads.

Outbound bodies are always fully populated: Harbor's project PUT has
replace semantics, so any metadata key left out is reset remotely.
Metadata values are strings because Harbor stores project metadata as a
string map.
"""

from __future__ import annotations

import json
from typing import Any

from pydantic import ValidationError

from .errors import DecodeError
from .models import ObservedProject, ProjectSpec



def _flag(value: bool) -> str:
    return "true" if value else "false"


def _security_metadata(level: str) -> dict[str, str]:
    """Map deploymentSecurity onto Harbor's severity/prevent_vul pair.

    The pair mirrors the patterns the drift normalizer accepts as
    consistent, so a value written here reads back unchanged.
    """
    if not level:
        return {"prevent_vul": "false"}
    if level == "none":
        return {"severity": "none", "prevent_vul": "false"}
    return {"severity": level, "prevent_vul": "true"}


def build_request_body(spec: ProjectSpec, *, for_create: bool = False) -> dict[str, Any]:
    """Build the JSON body for a project create or update request.

    Args:
        spec: Desired project configuration.
        for_create: Include the creation-only fields (storage_limit, registry_id).

    Returns:
        Request body ready for JSON encoding.
    """
    metadata: dict[str, str] = {
        "public": _flag(spec.public),
        "auto_scan": _flag(spec.vulnerability_scanning),
        "enable_content_trust": _flag(spec.enable_content_trust),
        "enable_content_trust_cosign": _flag(spec.enable_content_trust_cosign),
        "auto_sbom_generation": _flag(spec.auto_sbom_generation),
    }
    metadata.update(_security_metadata(spec.deployment_security))

    body: dict[str, Any] = {
        "name": spec.name,
        "public": spec.public,
        "metadata": metadata,
        "cve_allowlist": {"items": [{"cve_id": cve_id} for cve_id in spec.cve_allowlist]},
    }

    if for_create:
        body["storage_limit"] = spec.storage_quota
        if spec.registry_id is not None:
            body["registry_id"] = spec.registry_id

    return body


def parse_response(raw: bytes | str) -> ObservedProject:
    """Parse a project GET response body.

    Args:
        raw: Response body.

    Returns:
        Observed project record.

    Raises:
        DecodeError: If the body is not a JSON object of the project shape.
    """
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise DecodeError(f"project response is not valid JSON: {e}") from e

    if not isinstance(data, dict):
        raise DecodeError(f"project response must be a JSON object, got {type(data).__name__}")

    try:
        return ObservedProject.model_validate(data)
    except ValidationError as e:
        errors = []
        for error in e.errors():
            loc = ".".join(str(x) for x in error["loc"])
            errors.append(f"{loc}: {error['msg']}")
        raise DecodeError("project response has unexpected shape: " + "; ".join(errors)) from e
