"""Harbor project reconciler CLI (harbor-project).

Usage:
    harbor-project apply project.yaml --state team-a.state.yaml
    harbor-project refresh --state team-a.state.yaml
    harbor-project destroy project.yaml --state team-a.state.yaml
    harbor-project import /projects/42 --state team-a.state.yaml

Connection settings come from the environment (HARBOR_URL, HARBOR_USERNAME,
HARBOR_PASSWORD, ...), see config.Config.from_env.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from pathlib import Path

import click

from .client import HarborClient
from .config import Config, ConfigurationError
from .drift_normalizer import detect_drift
from .errors import NotEmptyError, ReconcilerError
from .main import setup_logging
from .models import ProjectSpec
from .reconciler import ProjectReconciler, ReconcileResult
from .spec_loader import SpecLoadError, load_spec, load_state, save_state
from .state import ResourceState

logger = logging.getLogger(__name__)

DEFAULT_STATE_FILE = "harbor-project.state.yaml"

state_option = click.option(
    "--state",
    "state_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=DEFAULT_STATE_FILE,
    show_default=True,
    help="State file tracking the managed project",
)


def load_config() -> Config:
    """Load configuration and set up logging, as a click error on failure."""
    try:
        config = Config.from_env()
    except ConfigurationError as e:
        raise click.ClickException(str(e)) from e
    setup_logging(json_output=config.json_logging)
    return config


@contextmanager
def reconciler_session(state_path: Path) -> Iterator[tuple[ProjectReconciler, ResourceState]]:
    """Open a client and the state file; state is saved even when a step fails.

    A failure after create (allow-list write, read back) must not lose the
    identity Harbor just assigned.
    """
    config = load_config()
    state_file_existed = state_path.exists()
    try:
        state = load_state(state_path)
    except SpecLoadError as e:
        raise click.ClickException(str(e)) from e

    try:
        with HarborClient(config) as client:
            yield ProjectReconciler(client), state
    except NotEmptyError as e:
        raise click.ClickException(str(e)) from e
    except ReconcilerError as e:
        logger.error("Reconciliation failed", extra={"error": str(e), "error_type": type(e).__name__})
        raise click.ClickException(str(e)) from e
    finally:
        # Nothing was tracked before and nothing is now: leave no file behind
        if state_file_existed or state.exists:
            try:
                save_state(state_path, state)
            except SpecLoadError as e:
                logger.error("Failed to save state", extra={"error": str(e)})


def read_spec(spec_path: Path) -> ProjectSpec:
    try:
        return load_spec(spec_path)
    except SpecLoadError as e:
        raise click.ClickException(str(e)) from e


def report(result: ReconcileResult, echo: Callable[[str], None] = click.echo) -> None:
    """Print a one-line summary plus any drift."""
    echo(f"{result.action.value}: {result.project or '-'} {result.identity or ''}".rstrip())
    for change in result.drift:
        marker = " (forces replacement)" if change.forces_replacement else ""
        echo(f"  ~ {change.attribute}: {change.actual!r} -> {change.desired!r}{marker}")


# =============================================================================
# Main CLI Group
# =============================================================================


@click.group()
@click.version_option(version="0.1.0", prog_name="harbor-project")
def cli() -> None:
    """Harbor project reconciler (harbor-project).

    Keeps a Harbor project in line with a declarative YAML spec.
    """
    pass


@cli.command()
@click.argument("spec_path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@state_option
def apply(spec_path: Path, state_path: Path) -> None:
    """Create or update the project described by SPEC_PATH."""
    spec = read_spec(spec_path)
    with reconciler_session(state_path) as (reconciler, state):
        result = reconciler.apply(spec, state)
    report(result)


@cli.command()
@click.option("--spec", "spec_path", type=click.Path(exists=True, dir_okay=False, path_type=Path),
              help="Also report drift against this spec")
@state_option
def refresh(spec_path: Path | None, state_path: Path) -> None:
    """Re-read the tracked project into the state file."""
    spec = read_spec(spec_path) if spec_path else None
    with reconciler_session(state_path) as (reconciler, state):
        if not state.exists:
            raise click.ClickException(f"No project tracked in {state_path}")
        identity = state.id
        project = reconciler.read(state)

    if project is None:
        click.echo(f"gone: {identity} no longer exists, removed from state")
        return

    click.echo(f"read: {project.name} {state.id}")
    if spec is not None:
        for change in detect_drift(spec, state.attributes):
            click.echo(f"  ~ {change.attribute}: {change.actual!r} -> {change.desired!r}")


@cli.command()
@click.argument("spec_path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@state_option
def destroy(spec_path: Path, state_path: Path) -> None:
    """Delete the tracked project (set forceDestroy to drop its repositories)."""
    spec = read_spec(spec_path)
    with reconciler_session(state_path) as (reconciler, state):
        if not state.exists:
            click.echo("Nothing to destroy")
            return
        result = reconciler.delete(spec, state)
    report(result)


@cli.command("import")
@click.argument("identity")
@state_option
def import_(identity: str, state_path: Path) -> None:
    """Start tracking an existing project, e.g. /projects/42."""
    if not identity.startswith("/projects/"):
        raise click.BadParameter("identity must look like /projects/<id>", param_hint="IDENTITY")
    with reconciler_session(state_path) as (reconciler, state):
        if state.exists:
            raise click.ClickException(f"{state_path} already tracks {state.id}")
        result = reconciler.import_project(identity, state)

    if not result.identity:
        raise click.ClickException(f"Project {identity} does not exist")
    report(result)
