"""Tests for project lifecycle operations.

These tests use MockHarborTransport to exercise create, read, update and
delete without a Harbor instance, asserting on the exact request sequence.
"""

from __future__ import annotations

import pytest
from harbor_mock import MockHarborState, MockHarborTransport

from project_reconciler.errors import (
    DecodeError,
    IdentityExtractionError,
    NotEmptyError,
    TransportError,
    UnexpectedStatusError,
)
from project_reconciler.models import ProjectSpec
from project_reconciler.reconciler import ProjectReconciler, ReconcileAction
from project_reconciler.state import ResourceState


@pytest.fixture
def transport() -> MockHarborTransport:
    return MockHarborTransport()


@pytest.fixture
def reconciler(transport: MockHarborTransport) -> ProjectReconciler:
    return ProjectReconciler(transport)


def created_state(reconciler: ProjectReconciler, spec: ProjectSpec) -> ResourceState:
    state = ResourceState()
    reconciler.create(spec, state)
    return state


class TestCreate:
    """Tests for ProjectReconciler.create."""

    def test_create_without_allowlist_single_write(
        self, reconciler: ProjectReconciler, transport: MockHarborTransport
    ) -> None:
        """Test that an empty allow-list means exactly one write."""
        state = ResourceState()

        result = reconciler.create(ProjectSpec(name="team-a"), state)

        assert transport.write_methods() == ["POST"]
        assert result.action == ReconcileAction.CREATE
        assert result.identity == "/projects/1"
        assert state.id == "/projects/1"

    def test_create_with_allowlist_two_writes(
        self, reconciler: ProjectReconciler, transport: MockHarborTransport
    ) -> None:
        """Test create followed by the allow-list write, in order."""
        spec = ProjectSpec(name="team-a", cve_allowlist=["CVE-2023-1234", "CVE-2021-44228"])
        state = ResourceState()

        reconciler.create(spec, state)

        writes = transport.write_calls()
        assert [(c.method, c.path) for c in writes] == [
            ("POST", "/projects"),
            ("PUT", "/projects/1"),
        ]
        # The allow-list write carries the same body as the create
        assert writes[1].body == writes[0].body
        assert state.get("cve_allowlist") == ["CVE-2023-1234", "CVE-2021-44228"]

    def test_create_reads_back(
        self, reconciler: ProjectReconciler, transport: MockHarborTransport
    ) -> None:
        """Test that create ends with a read populating state."""
        spec = ProjectSpec(
            name="team-a",
            public=True,
            deployment_security="medium",
            storage_quota=5368709120,
            force_destroy=True,
        )
        state = ResourceState()

        reconciler.create(spec, state)

        assert transport.operations()[-1] == "GET /projects/1"
        assert state.get("name") == "team-a"
        assert state.get("project_id") == 1
        assert state.get("public") is True
        assert state.get("vulnerability_scanning") is True
        assert state.get("deployment_security") == "medium"
        assert state.get("storage_quota") == 5368709120
        assert state.get("force_destroy") is True
        assert transport.state.quotas[1] == 5368709120

    def test_create_without_identity(self) -> None:
        """Test that a missing Location header is fatal."""
        transport = MockHarborTransport(omit_location=True)
        state = ResourceState()

        with pytest.raises(IdentityExtractionError):
            ProjectReconciler(transport).create(ProjectSpec(name="team-a", cve_allowlist=["CVE-1"]), state)

        assert state.id == ""
        # No allow-list write without an identity
        assert transport.write_methods() == ["POST"]

    def test_create_conflict(self, reconciler: ProjectReconciler, transport: MockHarborTransport) -> None:
        """Test that a name clash surfaces the status error."""
        transport.state.add_project("team-a")

        with pytest.raises(UnexpectedStatusError) as exc_info:
            reconciler.create(ProjectSpec(name="team-a"), ResourceState())

        assert exc_info.value.status == 409

    def test_allowlist_failure_keeps_identity(
        self, reconciler: ProjectReconciler, transport: MockHarborTransport
    ) -> None:
        """Test partial failure: project exists, allow-list write failed, no rollback."""
        transport.fail_on("PUT", "/projects/1", 500)
        state = ResourceState()

        with pytest.raises(UnexpectedStatusError):
            reconciler.create(ProjectSpec(name="team-a", cve_allowlist=["CVE-1"]), state)

        assert state.id == "/projects/1"
        assert 1 in transport.state.projects
        assert "DELETE /projects/1" not in transport.operations()


class TestRead:
    """Tests for ProjectReconciler.read."""

    def test_read_not_found_clears_state(self, reconciler: ProjectReconciler) -> None:
        """Test that a 404 clears the identity and is not an error."""
        state = ResourceState(id="/projects/99", attributes={"name": "gone"})

        assert reconciler.read(state) is None
        assert state.id == ""
        assert state.attributes == {}

    def test_read_other_error_propagates(
        self, reconciler: ProjectReconciler, transport: MockHarborTransport
    ) -> None:
        """Test that non-404 failures are fatal and leave state alone."""
        project_id = transport.state.add_project("team-a")
        transport.fail_on("GET", f"/projects/{project_id}", 500)
        state = ResourceState(id=f"/projects/{project_id}")

        with pytest.raises(UnexpectedStatusError):
            reconciler.read(state)

        assert state.id == f"/projects/{project_id}"

    def test_read_normalizes_loose_values(
        self, reconciler: ProjectReconciler, transport: MockHarborTransport
    ) -> None:
        """Test that string and boolean flags, and inconsistent security, are normalized."""
        project_id = transport.state.add_project(
            "team-a",
            metadata={
                "public": True,
                "auto_scan": "false",
                "enable_content_trust": "true",
                "severity": "critical",
                "prevent_vul": "false",
            },
            cve_ids=["CVE-2024-9", "CVE-2020-1"],
            registry_id=2,
        )
        state = ResourceState(id=f"/projects/{project_id}")

        project = reconciler.read(state)

        assert project is not None
        assert state.get("public") is True
        assert state.get("vulnerability_scanning") is False
        assert state.get("enable_content_trust") is True
        assert state.get("enable_content_trust_cosign") is False
        assert state.get("deployment_security") == ""
        assert state.get("cve_allowlist") == ["CVE-2024-9", "CVE-2020-1"]
        assert state.get("registry_id") == 2

    def test_read_undecodable_body(self, transport: MockHarborTransport) -> None:
        """Test that a malformed body is a hard failure, not a not-found."""
        project_id = transport.state.add_project("team-a")
        del transport.state.projects[project_id]["project_id"]
        state = ResourceState(id=f"/projects/{project_id}")

        with pytest.raises(DecodeError):
            ProjectReconciler(transport).read(state)

        assert state.id == f"/projects/{project_id}"

    def test_read_transport_error_propagates(self) -> None:
        """Test that network failures are not mistaken for absence."""

        class FailingTransport(MockHarborTransport):
            def send(self, method, path, body, expected_status):  # type: ignore[override]
                raise TransportError("connection refused")

        state = ResourceState(id="/projects/1")
        with pytest.raises(TransportError):
            ProjectReconciler(FailingTransport()).read(state)
        assert state.id == "/projects/1"


class TestUpdate:
    """Tests for ProjectReconciler.update."""

    def test_update_writes_then_quota(
        self, reconciler: ProjectReconciler, transport: MockHarborTransport
    ) -> None:
        """Test the primary write is followed by the quota update, then a read."""
        state = created_state(reconciler, ProjectSpec(name="team-a"))
        transport.calls.clear()

        result = reconciler.update(ProjectSpec(name="team-a", public=True), state)

        assert transport.operations() == [
            "PUT /projects/1",
            "update_storage_quota",
            "GET /projects/1",
        ]
        assert result.action == ReconcileAction.UPDATE
        assert state.get("public") is True

    def test_update_calls_quota_even_when_unchanged(
        self, reconciler: ProjectReconciler, transport: MockHarborTransport
    ) -> None:
        """Test the quota collaborator is called regardless of change."""
        spec = ProjectSpec(name="team-a", storage_quota=1024)
        state = created_state(reconciler, spec)
        transport.calls.clear()

        reconciler.update(spec, state)

        quota_calls = [c for c in transport.calls if c.operation == "update_storage_quota"]
        assert len(quota_calls) == 1
        assert quota_calls[0].body == {"storage": 1024}

    def test_update_sends_full_body(
        self, reconciler: ProjectReconciler, transport: MockHarborTransport
    ) -> None:
        """Test that the update body carries every metadata key."""
        state = created_state(reconciler, ProjectSpec(name="team-a"))
        transport.calls.clear()

        reconciler.update(ProjectSpec(name="team-a", storage_quota=2048, registry_id=1), state)

        body = transport.write_calls()[0].body
        assert body is not None
        assert set(body["metadata"]) >= {
            "public",
            "auto_scan",
            "prevent_vul",
            "enable_content_trust",
            "enable_content_trust_cosign",
            "auto_sbom_generation",
        }
        assert "storage_limit" not in body
        assert "registry_id" not in body
        assert state.get("storage_quota") == 2048

    def test_update_clears_security_then_restores(
        self, reconciler: ProjectReconciler, transport: MockHarborTransport
    ) -> None:
        """Test that a security level drifted out-of-band is written back."""
        state = created_state(reconciler, ProjectSpec(name="team-a", deployment_security="high"))
        transport.state.projects[1]["metadata"]["prevent_vul"] = "false"
        reconciler.read(state)
        assert state.get("deployment_security") == ""

        reconciler.update(ProjectSpec(name="team-a", deployment_security="high"), state)

        assert state.get("deployment_security") == "high"

    def test_update_failure_skips_quota(
        self, reconciler: ProjectReconciler, transport: MockHarborTransport
    ) -> None:
        """Test that a failed write stops the sequence."""
        state = created_state(reconciler, ProjectSpec(name="team-a"))
        transport.fail_on("PUT", "/projects/1", 400)
        transport.calls.clear()

        with pytest.raises(UnexpectedStatusError):
            reconciler.update(ProjectSpec(name="team-a"), state)

        assert transport.operations() == ["PUT /projects/1"]

    def test_quota_failure_propagates(
        self, reconciler: ProjectReconciler, transport: MockHarborTransport
    ) -> None:
        """Test that quota errors are surfaced."""
        state = created_state(reconciler, ProjectSpec(name="team-a"))
        transport.fail_on("QUOTA", "/projects/1", 403)

        with pytest.raises(UnexpectedStatusError):
            reconciler.update(ProjectSpec(name="team-a", storage_quota=1), state)


class TestDelete:
    """Tests for ProjectReconciler.delete."""

    def test_not_empty_without_force(
        self, reconciler: ProjectReconciler, transport: MockHarborTransport
    ) -> None:
        """Test refusal to delete a project that still has repositories."""
        spec = ProjectSpec(name="team-a")
        state = created_state(reconciler, spec)
        transport.state.repositories["team-a"] = ["api", "web"]
        transport.calls.clear()

        with pytest.raises(NotEmptyError) as exc_info:
            reconciler.delete(spec, state)

        assert "team-a" in str(exc_info.value)
        assert "forceDestroy" in str(exc_info.value)
        assert "DELETE" not in transport.write_methods()
        assert state.id == "/projects/1"

    def test_empty_without_force_deletes(
        self, reconciler: ProjectReconciler, transport: MockHarborTransport
    ) -> None:
        """Test that an empty project is deleted after the listing check."""
        spec = ProjectSpec(name="team-a")
        state = created_state(reconciler, spec)
        transport.calls.clear()

        result = reconciler.delete(spec, state)

        assert transport.operations() == ["list_repositories", "DELETE /projects/1"]
        assert result.action == ReconcileAction.DELETE
        assert state.id == ""
        assert transport.state.projects == {}

    def test_force_destroy_cascades(
        self, reconciler: ProjectReconciler, transport: MockHarborTransport
    ) -> None:
        """Test repositories are deleted before the project."""
        spec = ProjectSpec(name="team-a", force_destroy=True)
        state = created_state(reconciler, spec)
        transport.state.repositories["team-a"] = ["api"]
        transport.calls.clear()

        reconciler.delete(spec, state)

        assert transport.operations() == ["delete_all_repositories", "DELETE /projects/1"]
        assert transport.state.repositories["team-a"] == []

    def test_force_destroy_failure_aborts(
        self, reconciler: ProjectReconciler, transport: MockHarborTransport
    ) -> None:
        """Test that a failed cascade never deletes the project."""
        spec = ProjectSpec(name="team-a", force_destroy=True)
        state = created_state(reconciler, spec)
        transport.fail_on("DELETE_ALL", "team-a", 500)
        transport.calls.clear()

        with pytest.raises(UnexpectedStatusError):
            reconciler.delete(spec, state)

        assert transport.write_methods() == []
        assert 1 in transport.state.projects

    def test_force_destroy_not_found_aborts(
        self, reconciler: ProjectReconciler, transport: MockHarborTransport
    ) -> None:
        """Test that a 404 during the cascade is not mistaken for success."""
        spec = ProjectSpec(name="team-a", force_destroy=True)
        state = created_state(reconciler, spec)
        transport.state.repositories["team-a"] = ["api", "web"]
        transport.fail_on("DELETE_ALL", "team-a", 404)
        transport.calls.clear()

        with pytest.raises(UnexpectedStatusError) as exc_info:
            reconciler.delete(spec, state)

        assert exc_info.value.status == 404
        assert transport.operations() == ["delete_all_repositories"]
        assert 1 in transport.state.projects
        assert state.id == "/projects/1"

    def test_delete_not_found_is_success(
        self, reconciler: ProjectReconciler, transport: MockHarborTransport
    ) -> None:
        """Test idempotent delete when the project is already gone."""
        state = ResourceState(id="/projects/77", attributes={"name": "team-a"})

        reconciler.delete(ProjectSpec(name="team-a"), state)

        assert transport.operations() == ["list_repositories", "DELETE /projects/77"]
        assert state.id == ""

    def test_delete_listing_not_found_is_empty(
        self, reconciler: ProjectReconciler, transport: MockHarborTransport
    ) -> None:
        """Test a 404 on the repository listing counts as no repositories."""
        transport.fail_on("LIST", "team-a", 404)
        state = ResourceState(id="/projects/77")

        reconciler.delete(ProjectSpec(name="team-a"), state)

        assert state.id == ""

    def test_delete_other_error_propagates(
        self, reconciler: ProjectReconciler, transport: MockHarborTransport
    ) -> None:
        """Test that a non-404 delete failure is fatal."""
        spec = ProjectSpec(name="team-a")
        state = created_state(reconciler, spec)
        transport.fail_on("DELETE", "/projects/1", 412)

        with pytest.raises(UnexpectedStatusError):
            reconciler.delete(spec, state)

        assert state.id == "/projects/1"


class TestImport:
    """Tests for ProjectReconciler.import_project."""

    def test_import_existing(
        self, reconciler: ProjectReconciler, transport: MockHarborTransport
    ) -> None:
        """Test adopting an existing project."""
        project_id = transport.state.add_project("library", metadata={"public": "true"})
        state = ResourceState()

        result = reconciler.import_project(f"/projects/{project_id}", state)

        assert result.action == ReconcileAction.IMPORT
        assert result.project == "library"
        assert state.id == f"/projects/{project_id}"
        assert state.get("public") is True

    def test_import_missing(self, reconciler: ProjectReconciler) -> None:
        """Test importing a project that does not exist."""
        state = ResourceState()

        result = reconciler.import_project("/projects/404", state)

        assert result.identity == ""
        assert state.id == ""


class TestApply:
    """Tests for ProjectReconciler.apply."""

    def test_apply_creates_when_untracked(
        self, reconciler: ProjectReconciler, transport: MockHarborTransport
    ) -> None:
        """Test that an empty state leads to create."""
        state = ResourceState()

        result = reconciler.apply(ProjectSpec(name="team-a"), state)

        assert result.action == ReconcileAction.CREATE
        assert state.exists

    def test_apply_noop_when_in_sync(
        self, reconciler: ProjectReconciler, transport: MockHarborTransport
    ) -> None:
        """Test that a second apply of the same spec does nothing."""
        spec = ProjectSpec(
            name="team-a",
            deployment_security="none",
            cve_allowlist=["CVE-1"],
            storage_quota=100,
        )
        state = ResourceState()
        reconciler.apply(spec, state)
        transport.calls.clear()

        result = reconciler.apply(spec, state)

        assert result.action == ReconcileAction.NOOP
        assert transport.write_methods() == []

    def test_apply_updates_on_drift(
        self, reconciler: ProjectReconciler, transport: MockHarborTransport
    ) -> None:
        """Test that out-of-band changes are detected and reverted."""
        spec = ProjectSpec(name="team-a")
        state = ResourceState()
        reconciler.apply(spec, state)
        transport.state.projects[1]["metadata"]["public"] = "true"

        result = reconciler.apply(spec, state)

        assert result.action == ReconcileAction.UPDATE
        assert [d.attribute for d in result.drift] == ["public"]
        assert transport.state.projects[1]["metadata"]["public"] == "false"

    def test_apply_recreates_when_deleted_out_of_band(
        self, reconciler: ProjectReconciler, transport: MockHarborTransport
    ) -> None:
        """Test that a vanished project is created again."""
        spec = ProjectSpec(name="team-a")
        state = ResourceState()
        reconciler.apply(spec, state)
        transport.state.projects.clear()

        result = reconciler.apply(spec, state)

        assert result.action == ReconcileAction.CREATE
        assert state.id == "/projects/2"

    def test_apply_rename_replaces(
        self, reconciler: ProjectReconciler, transport: MockHarborTransport
    ) -> None:
        """Test that a rename deletes the old project and creates a new one."""
        state = ResourceState()
        reconciler.apply(ProjectSpec(name="team-a"), state)
        transport.calls.clear()

        result = reconciler.apply(ProjectSpec(name="team-b"), state)

        assert result.action == ReconcileAction.REPLACE
        assert transport.write_methods() == ["DELETE", "POST"]
        # The emptiness check targets the old name
        assert transport.calls[1].operation == "list_repositories"
        assert transport.calls[1].path == "team-a"
        assert state.get("name") == "team-b"
        assert [p["name"] for p in transport.state.projects.values()] == ["team-b"]


class TestIsolation:
    """The reconciler holds no state between calls."""

    def test_independent_states(self) -> None:
        transport = MockHarborTransport(MockHarborState())
        reconciler = ProjectReconciler(transport)
        first, second = ResourceState(), ResourceState()

        reconciler.create(ProjectSpec(name="team-a"), first)
        reconciler.create(ProjectSpec(name="team-b"), second)

        assert first.id == "/projects/1"
        assert second.id == "/projects/2"
        assert first.get("name") == "team-a"
        assert second.get("name") == "team-b"
