"""Normalization of observed Harbor project state.

Harbor reports project settings in a loosely typed form. This module
turns an ObservedProject into the values stored in resource state, and
compares stored state against a desired ProjectSpec.

COMMON IRREGULARITIES HANDLED:
1. Boolean flags sent as "true"/"false" strings, real booleans, or not at all
2. deploymentSecurity has no remote field of its own: it is rebuilt from
   the severity string and the prevent_vul flag
3. The CVE allow-list is nested as {"items": [{"cve_id": ...}]}
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .models import (
    DEPLOYMENT_SECURITY_LEVELS,
    UNLIMITED_STORAGE_QUOTA,
    ObservedMetadata,
    ObservedProject,
    ProjectSpec,
)

logger = logging.getLogger(__name__)

# Strings accepted as booleans
_TRUE_STRINGS = frozenset({"1", "t", "true"})
_FALSE_STRINGS = frozenset({"0", "f", "false"})


def parse_flexible_bool(value: Any, default: bool) -> bool:
    """Interpret a loosely typed remote flag.

    Args:
        value: Raw value (bool, string, None, or anything else).
        default: Returned when the value is absent or not a boolean.

    Returns:
        The parsed flag, or ``default``. Never raises.
    """
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUE_STRINGS:
            return True
        if lowered in _FALSE_STRINGS:
            return False
    if value is not None and value != "":
        logger.debug(
            "Unparseable flag, using default",
            extra={"value": repr(value), "default": default},
        )
    return default


class SecurityResolution(str, Enum):
    """Outcome of rebuilding deploymentSecurity from the remote signals."""

    PASS_THROUGH_NONE = "pass_through_none"
    PASS_THROUGH_LEVEL = "pass_through_level"
    CLEAR = "clear"


# Keyed by (severity == "none", prevent_vul)
DEPLOYMENT_SECURITY_DECISIONS: dict[tuple[bool, bool], SecurityResolution] = {
    (True, False): SecurityResolution.PASS_THROUGH_NONE,
    (True, True): SecurityResolution.CLEAR,
    (False, True): SecurityResolution.PASS_THROUGH_LEVEL,
    (False, False): SecurityResolution.CLEAR,
}


def resolve_deployment_security(severity: Any, prevent_vul: bool) -> str:
    """Rebuild deploymentSecurity from severity and prevent_vul.

    Returns "" when the two signals disagree or the severity is not one of
    the allowed levels; "" is stored as unset and recomputed on the next
    read once the remote side is consistent again.

    An unknown severity is cleared even with prevent_vul enabled, rather
    than passed through: state values must stay valid for ProjectSpec, so
    the next apply rewrites the project with a supported level.
    """
    if not isinstance(severity, str) or severity not in DEPLOYMENT_SECURITY_LEVELS:
        return ""

    resolution = DEPLOYMENT_SECURITY_DECISIONS[(severity == "none", prevent_vul)]
    match resolution:
        case SecurityResolution.PASS_THROUGH_NONE:
            return "none"
        case SecurityResolution.PASS_THROUGH_LEVEL:
            return severity
        case SecurityResolution.CLEAR:
            logger.info(
                "Inconsistent deployment security, clearing",
                extra={"severity": severity, "prevent_vul": prevent_vul},
            )
            return ""


@dataclass(frozen=True)
class NormalizedProject:
    """Project values derived from an observed record, ready for state."""

    name: str
    project_id: int
    registry_id: int
    public: bool
    vulnerability_scanning: bool
    enable_content_trust: bool
    enable_content_trust_cosign: bool
    auto_sbom_generation: bool
    deployment_security: str
    cve_allowlist: list[str] = field(default_factory=list)

    def to_attributes(self) -> dict[str, Any]:
        """Attribute mapping written into resource state."""
        return {
            "name": self.name,
            "project_id": self.project_id,
            "registry_id": self.registry_id,
            "public": self.public,
            "vulnerability_scanning": self.vulnerability_scanning,
            "enable_content_trust": self.enable_content_trust,
            "enable_content_trust_cosign": self.enable_content_trust_cosign,
            "auto_sbom_generation": self.auto_sbom_generation,
            "deployment_security": self.deployment_security,
            "cve_allowlist": list(self.cve_allowlist),
        }


class DriftNormalizer:
    """Derives state values from observed Harbor project records."""

    def __init__(self, flag_default: bool = False) -> None:
        """Initialize normalizer.

        Args:
            flag_default: Value used for absent or unparseable flags. Harbor
                omits unset metadata keys, which it treats as false.
        """
        self._flag_default = flag_default

    def normalize(self, observed: ObservedProject) -> NormalizedProject:
        """Normalize an observed project.

        Args:
            observed: Parsed GET response.

        Returns:
            NormalizedProject with every field resolved.
        """
        metadata = observed.metadata or ObservedMetadata()

        def flag(value: Any) -> bool:
            return parse_flexible_bool(value, self._flag_default)

        prevent_vul = flag(metadata.prevent_vul)

        allowlist: list[str] = []
        if observed.cve_allowlist is not None and observed.cve_allowlist.items:
            allowlist = [item.cve_id for item in observed.cve_allowlist.items]

        return NormalizedProject(
            name=observed.name,
            project_id=observed.project_id,
            registry_id=observed.registry_id or 0,
            public=flag(metadata.public),
            vulnerability_scanning=flag(metadata.auto_scan),
            enable_content_trust=flag(metadata.enable_content_trust),
            enable_content_trust_cosign=flag(metadata.enable_content_trust_cosign),
            auto_sbom_generation=flag(metadata.auto_sbom_generation),
            deployment_security=resolve_deployment_security(metadata.severity, prevent_vul),
            cve_allowlist=allowlist,
        )


# =============================================================================
# Drift Detection
# =============================================================================


@dataclass(frozen=True)
class FieldDrift:
    """One attribute whose stored value differs from the desired value."""

    attribute: str
    desired: Any
    actual: Any
    forces_replacement: bool = False


# Attributes that cannot change in place
REPLACEMENT_ATTRIBUTES = frozenset({"name", "registry_id"})


def desired_attributes(spec: ProjectSpec) -> dict[str, Any]:
    """Attribute values a spec asks for, keyed like resource state."""
    return {
        "name": spec.name,
        "public": spec.public,
        "vulnerability_scanning": spec.vulnerability_scanning,
        "storage_quota": spec.storage_quota,
        "cve_allowlist": list(spec.cve_allowlist),
        "enable_content_trust": spec.enable_content_trust,
        "enable_content_trust_cosign": spec.enable_content_trust_cosign,
        "auto_sbom_generation": spec.auto_sbom_generation,
        "deployment_security": spec.deployment_security,
    }


def detect_drift(spec: ProjectSpec, attributes: dict[str, Any]) -> list[FieldDrift]:
    """Compare a desired spec against stored state attributes.

    Args:
        spec: Desired configuration.
        attributes: Attributes from resource state (after a read).

    Returns:
        Drifted attributes, in a stable order.
    """
    drift: list[FieldDrift] = []

    for attribute, desired in desired_attributes(spec).items():
        if attribute == "storage_quota":
            actual = attributes.get(attribute, UNLIMITED_STORAGE_QUOTA)
        else:
            actual = attributes.get(attribute)
        if actual != desired:
            drift.append(
                FieldDrift(
                    attribute=attribute,
                    desired=desired,
                    actual=actual,
                    forces_replacement=attribute in REPLACEMENT_ATTRIBUTES,
                )
            )

    # registry_id is only compared when the spec pins one
    if spec.registry_id is not None and attributes.get("registry_id") != spec.registry_id:
        drift.append(
            FieldDrift(
                attribute="registry_id",
                desired=spec.registry_id,
                actual=attributes.get("registry_id"),
                forces_replacement=True,
            )
        )

    return drift
