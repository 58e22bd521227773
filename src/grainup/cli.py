"""Command line interface for grainup."""

from __future__ import annotations

import asyncio
import difflib
from pathlib import Path
from typing import Any

import click
import yaml
from click.core import ParameterSource
from rich.console import Console
from rich.syntax import Syntax

from grainup.app import UploaderApp, default_transport_factory
from grainup.config import (
    ConfigError,
    ConfigManager,
    GrainupConfig,
    flatten_for_env,
    redact,
    resolve_with_precedence,
)
from grainup.config.resolver import parse_value
from grainup.ingestion.controller import describe
from grainup.ingestion.models import FileReport
from grainup.logs import configure_logging
from grainup.upload.models import UploadSuccess, outcome_to_payload
from grainup.upload.session import SessionPolicy, UploadSession
from grainup.upload.signals import GrainResponseClassifier

console = Console()


def _handle_cli_error(
    message: str,
    *,
    code: str,
    json_output: bool,
    details: Any | None = None,
    original: Exception | None = None,
) -> None:
    """Emit a standardized error and terminate the command appropriately.

    Args:
        message: Human-readable error message.
        code: Machine-readable error identifier.
        json_output: Indicates whether JSON mode is active.
        details: Optional structured details to include in the payload.
        original: Original exception for chaining when not using JSON.

    Raises:
        SystemExit: When emitting JSON output to terminate the command.
        click.ClickException: For non-JSON flows to surface the error.
    """

    if json_output:
        payload: dict[str, Any] = {"error": {"code": code, "message": message}}
        if details is not None:
            payload["error"]["details"] = details
        console.print_json(data=payload)
        raise SystemExit(1)

    if isinstance(original, click.ClickException):
        raise original

    raise click.ClickException(message) from original


def _emit_message(message: Any, *, mode: str, quiet: bool) -> None:
    """Print CLI output unless quiet mode suppresses it.

    Args:
        message: Renderable or string to emit.
        mode: Output mode identifier (`detail`, `summary`, `warning`, or `error`).
        quiet: Whether quiet mode is active.
    """

    if quiet and mode != "error":
        return
    console.print(message)


def _emit_report(report: FileReport, *, json_output: bool, quiet: bool) -> None:
    if json_output:
        console.print_json(data=report.to_payload())
        return
    if report.ok:
        _emit_message(f"[green]{describe(report)}[/green]", mode="summary", quiet=quiet)
    else:
        _emit_message(f"[red]{describe(report)}[/red]", mode="error", quiet=quiet)


def _assign_nested(target: dict[str, Any], path: list[str], value: Any) -> None:
    """Assign a nested value within a dictionary for a dotted path.

    Raises:
        ConfigError: If a non-mapping value is encountered along the path.
    """

    node = target
    for segment in path[:-1]:
        existing = node.get(segment)
        if existing is None:
            existing = {}
            node[segment] = existing
        elif not isinstance(existing, dict):
            raise ConfigError(
                f"Cannot assign into '{segment}' because it is not a mapping in the config file."
            )
        node = existing
    node[path[-1]] = value


def _load_config(cli_overrides: dict[str, Any] | None = None) -> GrainupConfig:
    manager = ConfigManager()
    manager.ensure_exists()
    return manager.load(cli_overrides=cli_overrides)


def _resolve_quiet(ctx: click.Context, quiet: bool, config: GrainupConfig) -> bool:
    if ctx.get_parameter_source("quiet") == ParameterSource.COMMANDLINE:
        return quiet
    return config.cli.quiet_default


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.version_option(package_name="grainup")
def cli() -> None:
    """Watch a folder and upload new recordings to Grain."""


@cli.command()
@click.argument("folder", required=False, type=click.Path(file_okay=False, path_type=str))
@click.option(
    "--processed",
    type=click.Path(file_okay=False, path_type=str),
    help="Folder receiving uploaded files (defaults to FOLDER/Processed).",
)
@click.option("--headed", is_flag=True, help="Show the browser window while uploading.")
@click.option("--once", is_flag=True, help="Process files currently in FOLDER and exit.")
@click.option("--json", "json_output", is_flag=True, help="Emit one JSON document per finished file.")
@click.option("--quiet", is_flag=True, help="Suppress non-error output.")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging.")
@click.pass_context
def watch(
    ctx: click.Context,
    folder: str | None,
    processed: str | None,
    headed: bool,
    once: bool,
    json_output: bool,
    quiet: bool,
    verbose: bool,
) -> None:
    """Monitor FOLDER and upload every new recording.

    FOLDER defaults to ``watch.folder`` from the configuration file. Each
    file is uploaded, moved to the processed folder on success and reported
    by email when notifications are enabled.
    """

    overrides: dict[str, Any] = {}
    if folder:
        overrides["watch.folder"] = str(Path(folder).expanduser().resolve())
    if processed:
        overrides["watch.processed_folder"] = str(Path(processed).expanduser().resolve())
    if headed:
        overrides["upload.headless"] = False

    try:
        config = _load_config(overrides)
    except ConfigError as exc:
        _handle_cli_error(str(exc), code="config_error", json_output=json_output, original=exc)
        return

    quiet_enabled = _resolve_quiet(ctx, quiet, config)
    if json_output and quiet and ctx.get_parameter_source("quiet") == ParameterSource.COMMANDLINE:
        raise click.ClickException("--json cannot be combined with --quiet.")

    if config.watch.folder is None:
        _handle_cli_error(
            "No folder to watch. Pass FOLDER or run `grainup config set watch.folder --value PATH`.",
            code="config_error",
            json_output=json_output,
        )
        return
    if not config.credentials.complete:
        _emit_message(
            "[yellow]Grain credentials are not configured; uploads will fail until "
            "credentials.email and credentials.password are set.[/yellow]",
            mode="warning",
            quiet=quiet_enabled or json_output,
        )

    configure_logging(config.logging, verbose=verbose, quiet=quiet_enabled or json_output)

    def _on_report(report: FileReport) -> None:
        _emit_report(report, json_output=json_output, quiet=quiet_enabled)

    try:
        app = UploaderApp(
            config,
            transport_factory=default_transport_factory(config),
            listener=None if once else _on_report,
        )
        if once:
            reports = asyncio.run(app.run_once())
            if json_output:
                console.print_json(data={"reports": [report.to_payload() for report in reports]})
            elif not reports:
                _emit_message(
                    "[yellow]No files matched the watch criteria during the one-shot run.[/yellow]",
                    mode="warning",
                    quiet=quiet_enabled,
                )
            else:
                for report in reports:
                    _emit_report(report, json_output=False, quiet=quiet_enabled)
            if any(not report.ok for report in reports):
                raise SystemExit(1)
            return

        _emit_message(
            f"[cyan]Watching {app.folder}. Press Ctrl+C to stop.[/cyan]",
            mode="detail",
            quiet=quiet_enabled or json_output,
        )
        asyncio.run(app.run())
    except KeyboardInterrupt:
        _emit_message(
            "[yellow]Watch stopped by user request.[/yellow]",
            mode="summary",
            quiet=quiet_enabled or json_output,
        )
    except ConfigError as exc:
        _handle_cli_error(str(exc), code="config_error", json_output=json_output, original=exc)


@cli.command()
@click.argument("file", type=click.Path(exists=True, dir_okay=False, path_type=str))
@click.option("--headed", is_flag=True, help="Show the browser window while uploading.")
@click.option("--json", "json_output", is_flag=True, help="Emit the upload outcome as JSON.")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging.")
def upload(file: str, headed: bool, json_output: bool, verbose: bool) -> None:
    """Upload FILE once, without moving it or sending notifications."""

    try:
        config = _load_config({"upload.headless": False} if headed else None)
    except ConfigError as exc:
        _handle_cli_error(str(exc), code="config_error", json_output=json_output, original=exc)
        return

    configure_logging(config.logging, verbose=verbose, quiet=json_output)
    path = Path(file).expanduser().resolve()
    session = UploadSession(
        default_transport_factory(config)(),
        GrainResponseClassifier(config.upload.completion_states),
        config.credentials,
        SessionPolicy.from_settings(config.upload),
    )
    outcome = asyncio.run(session.run(path))

    if json_output:
        console.print_json(data={"file": path.as_posix(), "outcome": outcome_to_payload(outcome)})
    elif isinstance(outcome, UploadSuccess):
        console.print(f"[green]Uploaded {path.name}: {outcome.remote_url}[/green]")
    else:
        console.print(f"[red]Upload of {path.name} failed ({outcome.reason.value}): {outcome.message}[/red]")
    if not outcome.ok:
        raise SystemExit(1)


@cli.command()
@click.option("--headed", is_flag=True, help="Show the browser window while signing in.")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging.")
def login(headed: bool, verbose: bool) -> None:
    """Sign in to Grain with the configured credentials and report the result."""

    try:
        config = _load_config({"upload.headless": False} if headed else None)
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc
    if not config.credentials.complete:
        raise click.ClickException(
            "credentials.email and credentials.password must be configured before signing in."
        )

    configure_logging(config.logging, verbose=verbose)
    transport = default_transport_factory(config)()

    async def _login() -> None:
        try:
            await transport.authenticate(config.credentials)
        finally:
            await transport.close()

    try:
        asyncio.run(_login())
    except Exception as exc:
        raise click.ClickException(f"Sign-in failed: {exc}") from exc
    console.print(f"[green]Signed in as {config.credentials.email}.[/green]")


@cli.group()
def config() -> None:
    """Manage grainup configuration files and overrides."""


@config.command("view")
@click.option("--no-env", is_flag=True, help="Ignore environment overrides when displaying output.")
@click.option("--env", "as_env", is_flag=True, help="Print GRAINUP__SECTION__KEY assignments instead of YAML.")
@click.option("--show-secrets", is_flag=True, help="Print passwords instead of masking them.")
def config_view(no_env: bool, as_env: bool, show_secrets: bool) -> None:
    """Display the effective configuration after applying precedence rules.

    Raises:
        click.ClickException: If configuration cannot be loaded.
    """
    manager = ConfigManager()
    try:
        manager.ensure_exists()
        loaded = manager.load(include_env=not no_env)
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc

    if as_env:
        for name, value in flatten_for_env(loaded, reveal_secrets=show_secrets).items():
            click.echo(f"{name}={value}")
        return

    data = loaded.model_dump(mode="json")
    yaml_text = yaml.safe_dump(data if show_secrets else redact(data), sort_keys=False)
    console.print(Syntax(yaml_text, "yaml", word_wrap=True))


@config.command("set")
@click.argument("key")
@click.option("--value", required=True, help="Value to assign to KEY.")
def config_set(key: str, value: str) -> None:
    """Persist a configuration value expressed as a dotted KEY.

    Args:
        key: Dotted path describing the configuration field to update.
        value: YAML-literal value to write into the configuration file.

    Raises:
        click.ClickException: If parsing, assignment, or validation fails.
    """
    manager = ConfigManager()
    manager.ensure_exists()

    before = manager.read_text().splitlines()
    segments = [segment.strip() for segment in key.split(".") if segment.strip()]
    if not segments:
        raise click.ClickException("KEY must specify a dotted path such as 'watch.folder'.")

    parsed_value = parse_value(segments, value)

    file_data = manager.load_file_overrides()

    try:
        _assign_nested(file_data, segments, parsed_value)
        resolve_with_precedence(defaults=GrainupConfig(), file_overrides=file_data)
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc

    manager.save(file_data)
    after = manager.read_text().splitlines()

    diff = [
        line
        for line in difflib.unified_diff(
            before,
            after,
            fromfile="config.yaml (before)",
            tofile="config.yaml (after)",
            lineterm="",
        )
        if not line[1:].startswith("# Last updated:")
    ]

    changed = [line for line in diff if line.startswith(("+", "-")) and not line.startswith(("+++", "---"))]
    if changed:
        console.print(Syntax("\n".join(diff), "diff", word_wrap=False))
    else:
        console.print("[yellow]No changes applied; value already up to date.[/yellow]")
        return

    console.print(f"[green]Updated {'.'.join(segments)}.[/green]")


def main() -> None:
    """Invoke the Click CLI as the console script entry point."""
    cli()


if __name__ == "__main__":
    main()
