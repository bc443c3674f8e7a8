"""Pydantic models for project specifications and Harbor API payloads.

These models provide:
1. Type-safe YAML parsing of the desired project configuration
2. Validation at the boundary (fail fast, fail loudly)
3. Lenient decoding of what the Harbor API reports back
"""

from __future__ import annotations

from typing import Annotated, Any

from pydantic import BaseModel, Field, field_validator

# Allowed values for deploymentSecurity; "" means unset
DEPLOYMENT_SECURITY_LEVELS: tuple[str, ...] = ("none", "low", "medium", "high", "critical")

UNLIMITED_STORAGE_QUOTA = -1


# =============================================================================
# Desired State
# =============================================================================


class ProjectSpec(BaseModel):
    """Desired configuration of a Harbor project.

    ``name`` and ``registry_id`` are immutable: changing either one replaces
    the project. ``storage_quota`` and ``registry_id`` only travel in the
    create body; later quota changes go through the quota endpoint.
    ``force_destroy`` never leaves this process.
    """

    model_config = {"extra": "ignore", "populate_by_name": True}

    name: Annotated[str, Field(min_length=1, max_length=255)]
    registry_id: int | None = Field(None, alias="registryId")
    public: bool = False
    vulnerability_scanning: bool = Field(True, alias="vulnerabilityScanning")
    storage_quota: int = Field(UNLIMITED_STORAGE_QUOTA, alias="storageQuota")
    cve_allowlist: list[str] = Field(default_factory=list, alias="cveAllowlist")
    enable_content_trust: bool = Field(False, alias="enableContentTrust")
    enable_content_trust_cosign: bool = Field(False, alias="enableContentTrustCosign")
    force_destroy: bool = Field(False, alias="forceDestroy")
    auto_sbom_generation: bool = Field(False, alias="autoSbomGeneration")
    deployment_security: str = Field("", alias="deploymentSecurity")

    @field_validator("deployment_security")
    @classmethod
    def validate_deployment_security(cls, v: str) -> str:
        if v and v not in DEPLOYMENT_SECURITY_LEVELS:
            raise ValueError(
                f"deploymentSecurity must be one of [{', '.join(DEPLOYMENT_SECURITY_LEVELS)}], got {v}"
            )
        return v

    @field_validator("storage_quota")
    @classmethod
    def validate_storage_quota(cls, v: int) -> int:
        if v < UNLIMITED_STORAGE_QUOTA:
            raise ValueError("storageQuota must be -1 (unlimited) or a non-negative byte count")
        return v

    @field_validator("cve_allowlist")
    @classmethod
    def validate_cve_allowlist(cls, v: list[str]) -> list[str]:
        for cve_id in v:
            if not cve_id.strip():
                raise ValueError("cveAllowlist entries must not be empty")
        return v


# =============================================================================
# Observed State
# =============================================================================


class ObservedMetadata(BaseModel):
    """Project metadata as reported by Harbor.

    Harbor stores metadata as a string map, so flags usually arrive as
    "true"/"false", but older releases send real booleans and unset keys
    are simply missing. Values are kept raw here and interpreted by the
    drift normalizer.
    """

    model_config = {"extra": "ignore"}

    auto_scan: Any = None
    enable_content_trust: Any = None
    enable_content_trust_cosign: Any = None
    public: Any = None
    prevent_vul: Any = None
    severity: Any = None
    auto_sbom_generation: Any = None


class CveItem(BaseModel):
    """Single allow-list entry."""

    model_config = {"extra": "ignore"}

    cve_id: str


class ObservedAllowlist(BaseModel):
    """Project CVE allow-list as reported by Harbor."""

    model_config = {"extra": "ignore"}

    items: list[CveItem] | None = None


class ObservedProject(BaseModel):
    """Project record parsed from a GET response."""

    model_config = {"extra": "ignore"}

    name: Annotated[str, Field(min_length=1)]
    project_id: int
    registry_id: int | None = None
    metadata: ObservedMetadata | None = None
    cve_allowlist: ObservedAllowlist | None = None


class Repository(BaseModel):
    """Repository entry from the project repositories listing.

    Harbor reports the full name including the project prefix,
    e.g. ``team-a/backend/api``.
    """

    model_config = {"extra": "ignore"}

    name: str
    id: int | None = None
    artifact_count: int = 0

    def short_name(self, project_name: str) -> str:
        """Repository name relative to its project."""
        prefix = f"{project_name}/"
        if self.name.startswith(prefix):
            return self.name[len(prefix):]
        return self.name
