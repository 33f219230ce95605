"""
CLI interface for the mcruntime package execution engine.

Provides commands to inspect the backend registry, check which backend a
package would run on, and execute a package with files bound to its
parameters.
"""

import mimetypes
import sys
from pathlib import Path
from typing import Optional

import click
from rich.table import Table

from mcruntime import __version__
from mcruntime.config import BackendRegistry, load_config
from mcruntime.descriptors import DescriptorError, load_descriptor
from mcruntime.errors import (
    ConfigError,
    NoCompatibleBackendError,
    ProcessorStateError,
    RunFailedError,
    WorkspaceError,
)
from mcruntime.factory import ProcessorFactory
from mcruntime.schemas import MediaPayload, PackageDescriptor, ParameterID
from mcruntime.utils import console, setup_logging
from mcruntime.workspace import extension_for

EXIT_RUN_FAILED = 1
EXIT_NOT_FEASIBLE = 2


def _parse_identity(raw: str) -> ParameterID:
    """Digits address a parameter by position, anything else by name."""
    return ParameterID(int(raw)) if raw.isdigit() else ParameterID(raw)


def _parse_input(spec: str) -> tuple[ParameterID, Path, Optional[str]]:
    """Parse ID=PATH[:MIME]; the MIME part is recognised by its slash."""
    if "=" not in spec:
        raise click.BadParameter(f"Expected ID=PATH[:MIME], got {spec!r}")
    raw_id, rest = spec.split("=", 1)
    mime_type = None
    if ":" in rest:
        head, tail = rest.rsplit(":", 1)
        if "/" in tail and not tail.startswith(("/", "\\")):
            rest, mime_type = head, tail
    return _parse_identity(raw_id), Path(rest), mime_type


def _parse_output(spec: str) -> tuple[ParameterID, Optional[str]]:
    """Parse ID[=MIME]."""
    if "=" in spec:
        raw_id, mime_type = spec.split("=", 1)
        return _parse_identity(raw_id), mime_type or None
    return _parse_identity(spec), None


def _get_registry(ctx) -> BackendRegistry:
    if "registry" not in ctx.obj:
        click.echo(f"✗ Backend registry not loaded: {ctx.obj.get('config_error', 'Unknown error')}", err=True)
        raise SystemExit(EXIT_RUN_FAILED)
    return ctx.obj["registry"]


def _get_factory(ctx, retain_workspace: bool = False) -> ProcessorFactory:
    return ProcessorFactory(
        _get_registry(ctx),
        retain_workspace=retain_workspace or ctx.obj.get("retain_workspace", False),
    )


def _load_descriptor_or_exit(path: Path) -> PackageDescriptor:
    try:
        return load_descriptor(path)
    except DescriptorError as e:
        click.echo(f"✗ {e}", err=True)
        raise SystemExit(EXIT_RUN_FAILED)


@click.group()
@click.version_option(version=__version__, prog_name="mcruntime")
@click.option("--config", "config_path", type=click.Path(path_type=Path), default=None,
              help="Runtime config file (default: $MCRUNTIME_HOME/config.yaml)")
@click.option("--backends", "backends_path", type=click.Path(path_type=Path), default=None,
              help="Backend registry file (overrides the config's backends_file)")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
@click.pass_context
def main(ctx, config_path, backends_path, verbose):
    """
    mcruntime - run code packages on compatible execution backends.
    """
    ctx.ensure_object(dict)

    config = None
    try:
        config = load_config(config_path)
        ctx.obj["config"] = config
        ctx.obj["retain_workspace"] = config.retain_workspace
    except (FileNotFoundError, ConfigError) as e:
        # A --backends file is enough to work without a config
        ctx.obj["config_error"] = str(e)

    if config is not None:
        setup_logging(
            log_file=config.get_log_file_path(),
            log_level="DEBUG" if verbose else config.log_level,
            log_format=config.log_format,
        )
    else:
        setup_logging(log_level="DEBUG" if verbose else "WARNING")

    try:
        if backends_path is not None:
            ctx.obj["registry"] = BackendRegistry.from_file(backends_path)
        elif config is not None:
            ctx.obj["registry"] = config.load_registry()
    except ConfigError as e:
        ctx.obj["config_error"] = str(e)


@main.command("backends")
@click.pass_context
def list_backends(ctx):
    """List registered backends."""
    registry = _get_registry(ctx)

    table = Table(title="Registered backends")
    table.add_column("ID", style="cyan")
    table.add_column("Containers")
    table.add_column("Platforms")
    table.add_column("Runner")
    table.add_column("Workspace")
    for backend in registry.backends():
        table.add_row(
            backend.backend_id,
            ", ".join(sorted(backend.containers)) or "-",
            ", ".join(sorted(backend.platforms)) or "any",
            backend.runner_kind,
            backend.workspace_template or "-",
        )
    console.print(table)


@main.command("match")
@click.argument("descriptor", type=click.Path(path_type=Path))
@click.pass_context
def match(ctx, descriptor):
    """Show which backend would run DESCRIPTOR."""
    package = _load_descriptor_or_exit(descriptor)
    factory = _get_factory(ctx)

    try:
        selected = factory.select_backend(package)
    except NoCompatibleBackendError as e:
        click.echo(f"✗ {e}", err=True)
        raise SystemExit(EXIT_RUN_FAILED)

    for backend in factory.compatible_backends(package):
        marker = "→" if backend.backend_id == selected.backend_id else " "
        click.echo(f"{marker} {backend.backend_id}")
    click.echo(f"Selected backend: {selected.backend_id}")


@main.command("run")
@click.argument("descriptor", type=click.Path(path_type=Path))
@click.option("-i", "--input", "inputs", multiple=True, help="Input binding ID=PATH[:MIME]")
@click.option("-o", "--output", "outputs", multiple=True, help="Output declaration ID[=MIME]")
@click.option("--out-dir", type=click.Path(path_type=Path), default=Path("."), show_default=True,
              help="Directory to write produced outputs to")
@click.option("--timeout", type=float, default=0, show_default=True,
              help="Seconds to wait for the backend (0 = no limit)")
@click.option("--keep-workspace", is_flag=True, help="Do not remove the run workspace")
@click.pass_context
def run(ctx, descriptor, inputs, outputs, out_dir, timeout, keep_workspace):
    """Execute DESCRIPTOR with the given inputs."""
    package = _load_descriptor_or_exit(descriptor)
    factory = _get_factory(ctx, retain_workspace=keep_workspace)

    try:
        processor = factory.new_processor(package)
    except NoCompatibleBackendError as e:
        click.echo(f"✗ {e}", err=True)
        raise SystemExit(EXIT_RUN_FAILED)

    with processor:
        for spec in inputs:
            pid, path, mime_type = _parse_input(spec)
            param = package.get_parameter(pid)
            if mime_type is None:
                mime_type = mimetypes.guess_type(path.name)[0] or (param.mime_types[0] if param else "application/octet-stream")
            if not path.is_file():
                click.echo(f"✗ Input file not found: {path}", err=True)
                raise SystemExit(EXIT_NOT_FEASIBLE)
            payload = MediaPayload.from_path(path, mime_type)
            if not processor.add_data(pid, payload):
                payload.close()
                click.echo(f"✗ Input {pid} rejected: {processor.last_rejection.value}", err=True)
                raise SystemExit(EXIT_NOT_FEASIBLE)

        declared = set()
        for spec in outputs:
            pid, mime_type = _parse_output(spec)
            param = package.get_parameter(pid)
            if mime_type is None and param is not None:
                mime_type = param.mime_types[0]
            if not processor.add_data(pid, MediaPayload.declaration(mime_type or "application/octet-stream")):
                click.echo(f"✗ Output {pid} rejected: {processor.last_rejection.value}", err=True)
                raise SystemExit(EXIT_NOT_FEASIBLE)
            declared.add(pid)

        # Outputs not named on the command line are declared with their first permitted type
        for param in package.outputs:
            if param.identifier not in declared:
                processor.add_data(param.identifier, MediaPayload.declaration(param.mime_types[0]))

        if not processor.is_feasible():
            missing = ", ".join(str(m) for m in processor.missing_parameters())
            click.echo(f"✗ Package is not feasible, missing: {missing}", err=True)
            raise SystemExit(EXIT_NOT_FEASIBLE)

        click.echo(f"Running {package.package_id} on {processor.backend.backend_id}...")
        try:
            record = processor.execute(timeout=timeout or None)
        except ProcessorStateError as e:
            click.echo(f"✗ {e}", err=True)
            raise SystemExit(EXIT_NOT_FEASIBLE)
        except (RunFailedError, WorkspaceError) as e:
            click.echo(f"✗ Run failed: {e}", err=True)
            error_output = getattr(e, "error_output", None)
            if error_output:
                click.echo(error_output, err=True)
            raise SystemExit(EXIT_RUN_FAILED)

        out_dir.mkdir(parents=True, exist_ok=True)
        for pid, payload in processor.outputs().items():
            if payload.is_declaration:
                continue
            target = out_dir / f"{pid.slug}{extension_for(payload.mime_type)}"
            target.write_bytes(payload.read())
            click.echo(f"  {pid} → {target}")

        click.echo(f"✓ Run {record.run_id} completed in {record.duration_ms} ms")
        if keep_workspace and record.workspace:
            click.echo(f"Workspace kept at {record.workspace}")


if __name__ == "__main__":
    sys.exit(main())
