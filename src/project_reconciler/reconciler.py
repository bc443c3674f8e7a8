"""Project lifecycle operations against the Harbor API.

This module drives a single Harbor project toward its desired configuration:
1. Create the project, then write its CVE allow-list in a second request
2. Read the project back and normalize it into resource state
3. Update with a full replacement body, then the storage quota
4. Delete, refusing non-empty projects unless forceDestroy cascades first

All requests of one operation run sequentially; later requests depend on
identifiers produced by earlier ones. Nothing is rolled back: a failure
between two requests leaves the remote side partially applied and is
surfaced as-is, for the next apply to repair.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum

from .client import PATH_PROJECTS, HarborTransport
from .drift_normalizer import DriftNormalizer, FieldDrift, NormalizedProject, detect_drift
from .errors import NotEmptyError, UnexpectedStatusError
from .models import ProjectSpec, Repository
from .state import ResourceState
from .wire_mapper import build_request_body, parse_response

logger = logging.getLogger(__name__)


class ReconcileAction(str, Enum):
    """What a reconciliation call did to the remote project."""

    CREATE = "create"
    UPDATE = "update"
    REPLACE = "replace"
    DELETE = "delete"
    IMPORT = "import"
    NOOP = "noop"


@dataclass
class ReconcileResult:
    """Result of a single reconciliation call."""

    project: str
    action: ReconcileAction = ReconcileAction.NOOP
    identity: str = ""
    drift: list[FieldDrift] = field(default_factory=list)
    start_time: datetime = field(default_factory=lambda: datetime.now(UTC))
    end_time: datetime | None = None

    @property
    def duration_seconds(self) -> float:
        """Calculate duration in seconds."""
        if self.end_time is None:
            return 0.0
        return (self.end_time - self.start_time).total_seconds()

    @property
    def drift_found(self) -> bool:
        return bool(self.drift)

    def finish(self) -> ReconcileResult:
        self.end_time = datetime.now(UTC)
        return self


class ProjectReconciler:
    """Create, read, update and delete one Harbor project at a time.

    The transport is injected so each operation can run against a fake.
    The reconciler keeps no state between calls; everything persistent
    lives in the ResourceState passed in.
    """

    def __init__(
        self,
        transport: HarborTransport,
        normalizer: DriftNormalizer | None = None,
    ) -> None:
        """Initialize reconciler.

        Args:
            transport: Harbor transport (HarborClient or a test double).
            normalizer: Custom DriftNormalizer instance.
        """
        self._transport = transport
        self._normalizer = normalizer or DriftNormalizer()

    def create(self, spec: ProjectSpec, state: ResourceState) -> ReconcileResult:
        """Create the project and read it back into state.

        Raises:
            IdentityExtractionError: If the create response has no Location.
            ReconcilerError: Any request failure, including the allow-list
                write after a successful create (the project then exists
                without its allow-list and state already holds its id).
        """
        result = ReconcileResult(project=spec.name, action=ReconcileAction.CREATE)
        body = build_request_body(spec, for_create=True)

        response = self._transport.send("POST", PATH_PROJECTS, body, 201)
        identity = self._transport.identity_from_headers(response.headers)
        state.id = identity
        self._record_desired_only(spec, state)
        result.identity = identity

        logger.info("Created project", extra={"project": spec.name, "identity": identity})

        # The create endpoint does not apply the allow-list on every release
        if spec.cve_allowlist:
            self._transport.send("PUT", identity, body, 200)
            logger.info(
                "Applied CVE allow-list",
                extra={"project": spec.name, "cve_count": len(spec.cve_allowlist)},
            )

        self.read(state)
        return result.finish()

    def read(self, state: ResourceState) -> NormalizedProject | None:
        """Read the project and fold it into state.

        Returns:
            The normalized project, or None when Harbor no longer knows it.
            In that case the state is cleared; this is not an error.

        Raises:
            DecodeError: If the response body is not a project record.
            ReconcilerError: Any other request failure.
        """
        try:
            response = self._transport.send("GET", state.id, None, 200)
        except UnexpectedStatusError as e:
            if e.not_found:
                logger.warning(
                    "Project no longer exists, removing from state",
                    extra={"identity": state.id},
                )
                state.clear()
                return None
            raise

        observed = parse_response(response.body)
        normalized = self._normalizer.normalize(observed)
        state.update(normalized.to_attributes())

        logger.debug(
            "Read project",
            extra={"project": normalized.name, "project_id": normalized.project_id},
        )
        return normalized

    def update(self, spec: ProjectSpec, state: ResourceState) -> ReconcileResult:
        """Replace the project's settings, then its storage quota.

        Harbor's PUT resets omitted metadata, so the body is always the
        full spec. The quota endpoint is called on every update; it is a
        no-op when the quota is unchanged.
        """
        result = ReconcileResult(
            project=spec.name, action=ReconcileAction.UPDATE, identity=state.id
        )
        body = build_request_body(spec)

        self._transport.send("PUT", state.id, body, 200)
        self._transport.update_storage_quota(state.id, spec.storage_quota)
        self._record_desired_only(spec, state)

        logger.info("Updated project", extra={"project": spec.name, "identity": state.id})

        self.read(state)
        return result.finish()

    def delete(self, spec: ProjectSpec, state: ResourceState) -> ReconcileResult:
        """Delete the project.

        With force_destroy every repository is deleted first; without it a
        project that still has repositories is refused.

        Raises:
            NotEmptyError: If repositories exist and force_destroy is off.
            ReconcilerError: Any request failure other than a 404 on the
                project delete. A failed cascade aborts before the project
                delete is sent.
        """
        result = ReconcileResult(
            project=spec.name, action=ReconcileAction.DELETE, identity=state.id
        )

        if spec.force_destroy:
            self._transport.delete_all_repositories(spec.name)
        else:
            repositories = self._list_repositories(spec.name)
            if repositories:
                raise NotEmptyError(spec.name, len(repositories))

        try:
            self._transport.send("DELETE", state.id, None, 200)
        except UnexpectedStatusError as e:
            if not e.not_found:
                raise
            logger.info("Project already deleted", extra={"identity": state.id})
        else:
            logger.info("Deleted project", extra={"project": spec.name, "identity": state.id})

        state.clear()
        return result.finish()

    def import_project(self, identity: str, state: ResourceState) -> ReconcileResult:
        """Adopt an existing project by identity, e.g. /projects/42."""
        state.id = identity
        normalized = self.read(state)
        result = ReconcileResult(
            project=normalized.name if normalized else "",
            action=ReconcileAction.IMPORT,
            identity=state.id,
        )
        if normalized is None:
            logger.warning("Nothing to import", extra={"identity": identity})
        return result.finish()

    def apply(self, spec: ProjectSpec, state: ResourceState) -> ReconcileResult:
        """Drive the remote project to the spec, choosing the lifecycle step.

        - no tracked project, or it vanished remotely: create
        - name or registry changed: delete then create
        - any other drift: update
        - otherwise: nothing
        """
        if state.exists:
            self.read(state)

        if not state.exists:
            return self.create(spec, state)

        drift = detect_drift(spec, state.attributes)
        if not drift:
            logger.info("No drift detected", extra={"project": spec.name})
            return ReconcileResult(
                project=spec.name, action=ReconcileAction.NOOP, identity=state.id
            ).finish()

        for change in drift:
            logger.info(
                "Drift detected",
                extra={
                    "project": spec.name,
                    "attribute": change.attribute,
                    "desired": change.desired,
                    "actual": change.actual,
                },
            )

        if any(change.forces_replacement for change in drift):
            current = spec.model_copy(
                update={"name": state.get("name", spec.name)}
            )
            self.delete(current, state)
            result = self.create(spec, state)
            result.action = ReconcileAction.REPLACE
        else:
            result = self.update(spec, state)

        result.drift = drift
        return result

    def _list_repositories(self, project_name: str) -> list[Repository]:
        """List repositories; a project Harbor no longer knows has none."""
        try:
            return self._transport.list_repositories(project_name)
        except UnexpectedStatusError as e:
            if e.not_found:
                return []
            raise

    def _record_desired_only(self, spec: ProjectSpec, state: ResourceState) -> None:
        """Store values Harbor does not report back on read."""
        state.set("storage_quota", spec.storage_quota)
        state.set("force_destroy", spec.force_destroy)
