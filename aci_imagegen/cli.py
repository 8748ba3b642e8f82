"""Thin CLI wrapper for aci_imagegen.

This module provides the command-line interface using Typer.
All business logic is delegated to core modules.
"""

import json
from collections.abc import Callable
from pathlib import Path
from typing import Annotated, TypeVar

import typer
from rich.console import Console
from rich.markup import escape

from aci_imagegen import __version__
from aci_imagegen.builds.archive import ArchiveError, read_archive_manifest
from aci_imagegen.builds.context import BuildContext, BuildOptions
from aci_imagegen.builds.orchestrator import BuildOrchestrator
from aci_imagegen.config import Settings, get_settings, print_settings_json
from aci_imagegen.errors import AciBuildError
from aci_imagegen.logs import configure_logging
from aci_imagegen.manifest.image import version_label
from aci_imagegen.publish.pusher import HttpPusher
from aci_imagegen.runtime.rkt import RktRuntime
from aci_imagegen.types import ErrorReason

app = typer.Typer(
    name="acigen",
    help="ACI Image Generator - build, test, sign and push ACI images",
    no_args_is_help=True,
)
clean_app = typer.Typer(
    help="Clean build, including rootfs (sub-commands clean first)",
    invoke_without_command=True,
)
app.add_typer(clean_app, name="clean")
console = Console()
err_console = Console(stderr=True)

T = TypeVar("T")

KeepBuilder = Annotated[
    bool,
    typer.Option("--keep-builder", "-k", help="Keep builder container after exit"),
]
TrapOnError = Annotated[
    bool,
    typer.Option("--trap-on-error", help="Trap to shell on build failed"),
]
TrapOnStep = Annotated[
    bool,
    typer.Option("--trap-on-step", help="Trap on all steps"),
]
SetEnv = Annotated[
    list[str] | None,
    typer.Option("--set-env", help="NAME=value passed to the builder (repeatable)"),
]
Parallel = Annotated[
    bool,
    typer.Option(
        "--parallel/--sequential",
        help="Run dependency checks concurrently or one after the other",
    ),
]
NoTestFail = Annotated[
    bool,
    typer.Option("--no-test-fail", "-T", help="Fail if no tests found"),
]
RunTests = Annotated[
    bool,
    typer.Option("--test", "-t", help="Run tests first"),
]


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"aci-imagegen version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    ctx: typer.Context,
    path: Annotated[
        Path,
        typer.Option("--path", "-W", help="Project directory"),
    ] = Path("."),
    log_level: Annotated[
        str | None,
        typer.Option("--log-level", "-L", help="Logging level (default from config)"),
    ] = None,
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
) -> None:
    """ACI Image Generator - build, test, sign and push ACI images."""
    settings = get_settings()
    configure_logging(log_level or settings.log_level)
    ctx.obj = {"path": path, "settings": settings}


def _settings(ctx: typer.Context) -> Settings:
    return ctx.obj["settings"]


def _under_clean(ctx: typer.Context) -> bool:
    return ctx.parent is not None and ctx.parent.info_name == "clean"


def _orchestrator(ctx: typer.Context, options: BuildOptions) -> BuildOrchestrator:
    settings = _settings(ctx)
    context = BuildContext.from_project(
        ctx.obj["path"], options, target_work_dir=settings.target_work_dir
    )
    runtime = RktRuntime(settings.rkt_path, settings.rkt_global_options)
    return BuildOrchestrator(context, runtime, settings)


def _run(what: str, action: Callable[[], T]) -> T:
    """Run a command action, turning build errors into exit status 1."""
    try:
        return action()
    except AciBuildError as e:
        err_console.print(f"[red]{what} command failed[/red]")
        for line in e.chain():
            err_console.print(f"  [red]{escape(line)}[/red]")
        raise typer.Exit(code=1) from None


@clean_app.callback()
def clean(ctx: typer.Context) -> None:
    """Clean build, including rootfs."""
    if ctx.invoked_subcommand is None:
        _run("Clean", lambda: _orchestrator(ctx, BuildOptions()).clean())


def build(
    ctx: typer.Context,
    keep_builder: KeepBuilder = False,
    trap_on_error: TrapOnError = False,
    trap_on_step: TrapOnStep = False,
    set_env: SetEnv = None,
    parallel: Parallel = True,
) -> None:
    """Build the image (always from a clean target)."""
    options = BuildOptions(
        keep_builder=keep_builder,
        trap_on_error=trap_on_error,
        trap_on_step=trap_on_step,
        set_env=set_env or [],
        parallel_build=parallel,
    )

    def action() -> None:
        artifacts = _orchestrator(ctx, options).clean_and_build()
        console.print(f"[green]Built {artifacts.name_and_version}[/green]")

    _run("Build", action)


def try_(
    ctx: typer.Context,
    keep_builder: KeepBuilder = False,
    set_env: SetEnv = None,
) -> None:
    """Try templater (experimental)."""
    options = BuildOptions(keep_builder=keep_builder, set_env=set_env or [])
    _run("Try", lambda: _orchestrator(ctx, options).clean_and_try())


def test(
    ctx: typer.Context,
    keep_builder: KeepBuilder = False,
    no_test_fail: NoTestFail = False,
    set_env: SetEnv = None,
) -> None:
    """Test the image."""
    options = BuildOptions(
        keep_builder=keep_builder, no_test_fail=no_test_fail, set_env=set_env or []
    )

    def action() -> None:
        orchestrator = _orchestrator(ctx, options)
        if _under_clean(ctx):
            orchestrator.clean()
        orchestrator.test()

    _run("Test", action)


def install(
    ctx: typer.Context,
    run_tests: RunTests = False,
    no_test_fail: NoTestFail = False,
) -> None:
    """Install the image to the local rkt store."""
    options = BuildOptions(test=run_tests, no_test_fail=no_test_fail)

    def action() -> None:
        orchestrator = _orchestrator(ctx, options)
        if _under_clean(ctx):
            orchestrator.clean()
        artifacts = orchestrator.install()
        for image_hash in artifacts.imported_hashes:
            console.print(image_hash)

    _run("Install", action)


def push(
    ctx: typer.Context,
    run_tests: RunTests = False,
    no_test_fail: NoTestFail = False,
) -> None:
    """Push the compressed, signed image to the configured store."""
    settings = _settings(ctx)
    options = BuildOptions(test=run_tests, no_test_fail=no_test_fail)

    def action() -> None:
        if not settings.push.url:
            raise AciBuildError(
                "No push url configured (push.url)", reason=ErrorReason.CONFIG
            )
        orchestrator = _orchestrator(ctx, options)
        if _under_clean(ctx):
            orchestrator.clean()
        pusher = HttpPusher(
            settings.push.url, settings.push.username, settings.push.password
        )
        for url in orchestrator.push(pusher):
            console.print(f"[green]Pushed {url}[/green]")

    _run("Push", action)


def sign(ctx: typer.Context) -> None:
    """Sign the image (uncompressed and compressed)."""

    def action() -> None:
        orchestrator = _orchestrator(ctx, BuildOptions())
        if _under_clean(ctx):
            orchestrator.clean()
        orchestrator.ensure_sign()
        artifacts = orchestrator.ensure_zip_sign()
        console.print(f"[green]Signed {artifacts.compressed_image}[/green]")

    _run("Sign", action)


for _typer_app in (app, clean_app):
    _typer_app.command("build")(build)
    _typer_app.command("try")(try_)
    _typer_app.command("test")(test)
    _typer_app.command("install")(install)
    _typer_app.command("push")(push)
    _typer_app.command("sign")(sign)


@app.command()
def graph(ctx: typer.Context) -> None:
    """Generate dependency graph."""

    def action() -> None:
        for path in _orchestrator(ctx, BuildOptions()).graph():
            console.print(str(path))

    _run("Graph", action)


@app.command("aci-version")
def aci_version(
    file: Annotated[Path, typer.Argument(help="ACI file")],
) -> None:
    """Display version of an ACI file."""
    try:
        version = version_label(json.loads(read_archive_manifest(file)))
    except (ArchiveError, ValueError) as e:
        err_console.print(f"[red]Failed to get manifest from file: {escape(str(e))}[/red]")
        raise typer.Exit(code=1) from None
    console.print(version or "")


@app.command()
def config(
    ctx: typer.Context,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Show effective configuration."""
    settings = _settings(ctx)
    if json_output:
        console.print(print_settings_json(settings))
        return

    work_dir = settings.target_work_dir or "(project)/target"
    console.print("[bold]Effective Configuration:[/bold]")
    console.print()
    console.print("[bold]Paths:[/bold]")
    console.print(f"  Target work dir:     {work_dir}")
    console.print()
    console.print("[bold]Runtime:[/bold]")
    console.print(f"  rkt binary:          {settings.rkt_path}")
    console.print(f"  Builder image:       {settings.default_builder_image}")
    console.print(f"  Tester image:        {settings.default_tester_image}")
    console.print(f"  Log level:           {settings.log_level}")
    console.print()
    console.print("[bold]Compression:[/bold]")
    console.print(f"  Threads:             {settings.compression_threads}")
    console.print(f"  Block size:          {settings.compression_block_size}")
    console.print()
    console.print("[bold]Publishing:[/bold]")
    console.print(f"  Signing key:         {settings.signing_key or '(default)'}")
    console.print(f"  Push url:            {settings.push.url or '(not set)'}")


if __name__ == "__main__":
    app()
