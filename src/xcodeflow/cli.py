"""CLI for xcodeflow."""

import asyncio
import sys
from pathlib import Path
from typing import Optional

import click
from dotenv import load_dotenv
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from . import __version__
from .build import (
    BuildAction,
    BuildParams,
    BuildResult,
    PlatformOptions,
    ProjectRef,
    clean,
    list_schemes,
    run_build,
    show_build_settings,
)
from .config import Settings, load_settings
from .destination import DestinationSpec, resolve_destination
from .errors import BuildError, XcodeflowError
from .executor import CommandExecutor
from .log_capture import LogCaptureRegistry
from .logging_config import setup_logging
from .platforms import XcodePlatform, coerce_platform
from .progress import ProgressChannel, ProgressUpdate
from .simulator import list_simulators


console = Console()

PLATFORM_CHOICES = [p.value for p in XcodePlatform]


class _State:
    def __init__(self, settings: Settings):
        self.settings = settings
        self.executor = CommandExecutor(progress_interval=settings.progress_interval)


def _fail(e: object) -> None:
    console.print(f"[red]Error: {e}[/red]")
    sys.exit(1)


def _project_options(f):
    f = click.option("--workspace", "workspace_path", type=click.Path(), help="Path to the .xcworkspace")(f)
    f = click.option("--project", "project_path", type=click.Path(), help="Path to the .xcodeproj")(f)
    return f


def _build_options(f):
    f = _project_options(f)
    f = click.option("--scheme", required=True, help="Scheme to build")(f)
    f = click.option("--configuration", "-c", default=None, help="Build configuration (default from settings)")(f)
    f = click.option("--platform", "-p", default=XcodePlatform.IOS_SIMULATOR.value, type=click.Choice(PLATFORM_CHOICES), help="Target platform")(f)
    f = click.option("--device-name", "-n", default=None, help="Simulator name")(f)
    f = click.option("--device-id", "-i", default=None, help="Simulator UDID (wins over --device-name)")(f)
    f = click.option("--latest-os/--no-latest-os", default=None, help="Append OS=latest to named simulators")(f)
    f = click.option("--arch", default=None, help="macOS architecture (arm64, x86_64)")(f)
    f = click.option("--derived-data", "derived_data_path", default=None, type=click.Path(), help="Derived data directory")(f)
    f = click.option("--extra-arg", "extra_args", multiple=True, help="Extra xcodebuild argument (repeatable)")(f)
    return f


@click.group()
@click.version_option(version=__version__, prog_name="xcodeflow")
@click.option("--config", "config_path", type=click.Path(exists=True), default=None, help="YAML settings file")
@click.option("--verbose", "-v", is_flag=True, help="Debug logging on stderr")
@click.pass_context
def cli(ctx: click.Context, config_path: Optional[str], verbose: bool):
    """xcodeflow – run xcodebuild and simctl with progress and log capture."""
    load_dotenv(override=False)
    try:
        settings = load_settings(config_path)
    except (XcodeflowError, OSError) as e:
        _fail(e)
    setup_logging(log_dir=settings.log_dir, level="DEBUG" if verbose else settings.log_level)
    ctx.obj = _State(settings)


@cli.command()
@click.option("--platform", "-p", required=True, type=click.Choice(PLATFORM_CHOICES))
@click.option("--device-name", "-n", default=None)
@click.option("--device-id", "-i", default=None)
@click.option("--latest-os/--no-latest-os", default=True)
@click.option("--arch", default=None)
def destination(platform: str, device_name: Optional[str], device_id: Optional[str], latest_os: bool, arch: Optional[str]):
    """Print the -destination string for a platform and device."""
    spec = DestinationSpec(
        platform=coerce_platform(platform),
        device_name=device_name,
        device_id=device_id,
        use_latest_os=latest_os,
        arch=arch,
    )
    try:
        click.echo(resolve_destination(spec))
    except XcodeflowError as e:
        _fail(e)


def _print_update(update: ProgressUpdate) -> None:
    colour = {"running": "cyan", "completed": "green", "failed": "red"}[update.status.value]
    console.print(f"[{colour}]>> {update.status.value.upper()} {update.percent:3d}%[/{colour}] {update.message}", highlight=False)


async def _run_with_progress(state: _State, params: BuildParams, options: PlatformOptions, action: BuildAction, show_progress: bool) -> BuildResult:
    if not show_progress:
        return await run_build(params, options, action, executor=state.executor, xcodebuild=state.settings.xcodebuild_path)

    channel = ProgressChannel()
    task = asyncio.create_task(
        run_build(params, options, action, executor=state.executor, progress_sink=channel, xcodebuild=state.settings.xcodebuild_path)
    )
    task.add_done_callback(lambda _: channel.close())
    async for update in channel:
        _print_update(update)
    return await task


def _print_result(result: BuildResult) -> None:
    for warning in result.warnings:
        console.print(f"[yellow]Warning: {warning}[/yellow]")
    for failure in result.test_failures:
        console.print(f"[red]- {failure.test_case}: {failure.reason}[/red]")
    if result.success:
        console.print(f"[green]{result.message}[/green]")
        if result.next_steps:
            steps = "\n".join(f"{i}. {s}" for i, s in enumerate(result.next_steps, 1))
            console.print(Panel(steps, title="Next Steps"))
    else:
        console.print(f"[red]{result.message}[/red]")


def _exit_on_failure(result: BuildResult) -> None:
    try:
        result.raise_for_status()
    except BuildError as e:
        tail = "\n".join((e.build_output or "").splitlines()[-15:])
        if tail:
            console.print(Panel(Text(tail), title="Output (last lines)"))
        sys.exit(1)


def _run_action(state: _State, action: BuildAction, show_progress: bool, **kw) -> None:
    settings = state.settings
    try:
        params = BuildParams(
            project=ProjectRef(workspace_path=kw["workspace_path"], project_path=kw["project_path"]),
            scheme=kw["scheme"],
            configuration=kw["configuration"] or settings.default_configuration,
            derived_data_path=kw["derived_data_path"],
            extra_args=tuple(kw["extra_args"]),
        )
        options = PlatformOptions(
            platform=coerce_platform(kw["platform"]),
            device_name=kw["device_name"],
            device_id=kw["device_id"],
            use_latest_os=settings.use_latest_os if kw["latest_os"] is None else kw["latest_os"],
            arch=kw["arch"],
        )
        result = asyncio.run(_run_with_progress(state, params, options, action, show_progress))
    except XcodeflowError as e:
        _fail(e)
    _print_result(result)
    _exit_on_failure(result)


@cli.command()
@_build_options
@click.option("--quiet", "-q", is_flag=True, help="Hide progress updates")
@click.pass_obj
def build(state: _State, quiet: bool, **kw):
    """Build a scheme for a platform."""
    _run_action(state, BuildAction.BUILD, not quiet, **kw)


@cli.command()
@_build_options
@click.option("--quiet", "-q", is_flag=True, help="Hide progress updates")
@click.pass_obj
def test(state: _State, quiet: bool, **kw):
    """Run the tests of a scheme on a simulator."""
    _run_action(state, BuildAction.TEST, not quiet, **kw)


@cli.command("clean")
@_project_options
@click.option("--scheme", default=None)
@click.option("--configuration", "-c", default=None)
@click.pass_obj
def clean_cmd(state: _State, workspace_path: Optional[str], project_path: Optional[str], scheme: Optional[str], configuration: Optional[str]):
    """Clean build products."""
    try:
        project = ProjectRef(workspace_path=workspace_path, project_path=project_path)
        result = asyncio.run(
            clean(project, scheme=scheme, configuration=configuration, executor=state.executor, xcodebuild=state.settings.xcodebuild_path)
        )
    except XcodeflowError as e:
        _fail(e)
    _print_result(result)
    _exit_on_failure(result)


@cli.command()
@_project_options
@click.option("--scheme", required=True)
@click.pass_obj
def settings(state: _State, workspace_path: Optional[str], project_path: Optional[str], scheme: str):
    """Show build settings for a scheme."""
    try:
        project = ProjectRef(workspace_path=workspace_path, project_path=project_path)
        result = asyncio.run(show_build_settings(project, scheme, executor=state.executor, xcodebuild=state.settings.xcodebuild_path))
    except XcodeflowError as e:
        _fail(e)
    if not result.success:
        _fail(f"Failed to show build settings: {result.error}")
    click.echo(result.output)


@cli.command()
@_project_options
@click.pass_obj
def schemes(state: _State, workspace_path: Optional[str], project_path: Optional[str]):
    """List the schemes of a project or workspace."""
    try:
        project = ProjectRef(workspace_path=workspace_path, project_path=project_path)
        result, names = asyncio.run(list_schemes(project, executor=state.executor, xcodebuild=state.settings.xcodebuild_path))
    except XcodeflowError as e:
        _fail(e)
    if not result.success:
        _fail(f"Failed to list schemes: {result.error}")
    if not names:
        _fail("No schemes found in the output")
    for name in names:
        click.echo(name)


@cli.command()
@click.pass_obj
def simulators(state: _State):
    """List available simulators."""
    try:
        devices = asyncio.run(list_simulators(executor=state.executor, xcrun=state.settings.xcrun_path))
    except XcodeflowError as e:
        _fail(e)

    table = Table(title="Available Simulators")
    table.add_column("Runtime")
    table.add_column("Name")
    table.add_column("UDID")
    table.add_column("State")
    for d in devices:
        table.add_row(d.runtime.rsplit(".", 1)[-1], d.name, d.udid, "[green]Booted[/green]" if d.is_booted else d.state)
    console.print(table)


async def _capture(registry: LogCaptureRegistry, device_id: str, app_identifier: str, capture_console: bool, duration: Optional[float]) -> str:
    started = await registry.start(device_id, app_identifier, capture_console)
    if started.error:
        raise XcodeflowError(f"Failed to start log capture: {started.error}")
    console.print(f"[dim]Capturing to {started.artifact_path} (session {started.session_id})[/dim]")
    try:
        if duration is not None:
            await asyncio.sleep(duration)
        else:
            while True:
                await asyncio.sleep(1)
    except asyncio.CancelledError:
        # Ctrl+C: still stop the session and hand back what was captured.
        console.print("\n[yellow]Stopping capture...[/yellow]")
    stopped = await registry.stop(started.session_id)
    if stopped.error:
        raise XcodeflowError(stopped.error)
    return stopped.content


@cli.command()
@click.option("--device-id", "-i", required=True, help="Simulator UDID")
@click.option("--bundle-id", "-b", required=True, help="App bundle identifier")
@click.option("--console", "capture_console", is_flag=True, help="Also relaunch the app with console output")
@click.option("--duration", "-d", type=float, default=None, help="Seconds to capture (default: until Ctrl+C)")
@click.option("--output", "-o", type=click.Path(), default=None, help="Also write the capture to this file")
@click.pass_obj
def logs(state: _State, device_id: str, bundle_id: str, capture_console: bool, duration: Optional[float], output: Optional[str]):
    """Capture simulator logs for an app."""
    settings = state.settings
    registry = LogCaptureRegistry(
        temp_dir=Path(settings.temp_dir),
        xcrun=settings.xcrun_path,
        retention_days=settings.log_retention_days,
    )
    try:
        content = asyncio.run(_capture(registry, device_id, bundle_id, capture_console, duration))
    except XcodeflowError as e:
        _fail(e)
    if output:
        Path(output).write_text(content)
    click.echo(content)


@cli.command()
@click.option("--host", default="127.0.0.1")
@click.option("--port", default=8802, type=int)
@click.pass_obj
def serve(state: _State, host: str, port: int):
    """Serve the HTTP API."""
    import uvicorn

    from .api import XcodeService, create_api

    app = create_api(service=XcodeService(state.settings))
    uvicorn.run(app, host=host, port=port)


def main():
    cli()


if __name__ == "__main__":
    main()
