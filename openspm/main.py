"""openspm command-line interface"""
from __future__ import annotations

import functools
import logging
import shutil
import subprocess
import sys
from importlib.metadata import PackageNotFoundError as DistributionNotFound
from importlib.metadata import version as distribution_version
from pathlib import Path
from typing import List, Optional

import click
from rich.console import Console
from rich.markup import escape
from rich.progress import BarColumn, Progress, SpinnerColumn, TaskProgressColumn, TextColumn
from rich.table import Table
from rich.text import Text

from openspm.core.config import Config, load_config, save_config
from openspm.core.dependencies import AppContext, build_context
from openspm.core.logging_config import setup_logging
from openspm.domain.errors import OpenSPMError
from openspm.domain.models import PackageInfo
from openspm.domain.tag_utils import join_tags, split_tags, tags_compatible

logger = logging.getLogger("openspm.cli")


def get_version() -> str:
    try:
        return distribution_version("openspm")
    except DistributionNotFound:
        return "0.0.0+unknown"


def handle_errors(func):
    """Log OpenSPMError and exit with status 1 instead of printing a traceback."""

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except OpenSPMError as e:
            logger.error(str(e))
            sys.exit(1)
        except KeyboardInterrupt:
            click.echo("\nCancelled by user", err=True)
            sys.exit(130)

    return wrapper


def _resolve_config(obj: dict) -> Config:
    if "config" not in obj:
        config = load_config(obj.get("config_path")).with_overrides(**obj["overrides"])
        # Re-apply logging now that the config file may have changed the defaults.
        setup_logging(debug=config.debug, color=config.color_output)
        obj["config"] = config
    return obj["config"]


def _app(ctx: click.Context) -> AppContext:
    obj = ctx.ensure_object(dict)
    if "app" not in obj:
        obj["app"] = build_context(_resolve_config(obj))
    return obj["app"]


def _console(ctx: click.Context) -> Console:
    config = _resolve_config(ctx.ensure_object(dict))
    return Console(no_color=not config.color_output, highlight=False)


def _package_table(packages: List[PackageInfo], supported_tags: str, title: str) -> Table:
    table = Table(title=title)
    table.add_column("Name", style="bold")
    table.add_column("Version")
    table.add_column("Tags")
    table.add_column("Description")
    for pkg in packages:
        # Values come from remote repositories; render them literally.
        style = "" if tags_compatible(supported_tags, pkg.tags) else "red"
        table.add_row(Text(pkg.name), Text(pkg.version), Text(pkg.tags, style=style), Text(pkg.description))
    return table


@click.group()
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Config file (default: $OPENSPM_CONFIG or /etc/openspm/config.yaml)",
)
@click.option("--data-dir", type=click.Path(file_okay=False, path_type=Path), help="Use alternate data directory")
@click.option("--target-dir", type=click.Path(file_okay=False, path_type=Path), help="Use alternate installation target directory")
@click.option("--tags", "supported_tags", default=None, help="Supported tags (semicolon separated)")
@click.option("--no-color", is_flag=True, help="Disable colored output")
@click.option("--debug", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx, config_path, data_dir, target_dir, supported_tags, no_color, debug):
    """OpenSPM - a simple package manager"""
    setup_logging(debug=debug, color=not no_color)
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    ctx.obj["overrides"] = {
        "data_dir": data_dir,
        "target_dir": target_dir,
        "supported_tags": supported_tags,
        "color_output": False if no_color else None,
        "debug": True if debug else None,
    }


@cli.command()
def version():
    """Show the OpenSPM version"""
    click.echo(f"OpenSPM v{get_version()}")


def detect_supported_tags(platform: str) -> str:
    """Tags describing this host: binary packages for the platform, plus gcc if present."""
    tags = ["bin", platform]
    gcc = shutil.which("gcc")
    if gcc:
        try:
            out = subprocess.run(
                [gcc, "-dumpfullversion", "-dumpversion"],
                text=True,
                stdout=subprocess.PIPE,
                stderr=subprocess.DEVNULL,
            ).stdout.strip()
        except OSError:
            out = ""
        tags.append("gcc")
        parts = out.split(".")
        if parts and parts[0]:
            tags.append(f"gcc-{parts[0]}")
            if len(parts) > 1:
                tags.append(f"gcc-{parts[0]}.{parts[1]}")
        tags.append("non-bin")
        logger.info(f"Found GCC {out or '(unknown version)'}")
    return join_tags(tags)


@cli.command()
@click.option("--detect-tags/--no-detect-tags", default=True, help="Add tags detected on this host")
@click.pass_context
@handle_errors
def configure(ctx, detect_tags):
    """Write a config file from the current options"""
    obj = ctx.ensure_object(dict)
    config = _resolve_config(obj)
    if detect_tags:
        detected = detect_supported_tags(config.platform)
        config = config.with_overrides(supported_tags=join_tags(split_tags(config.supported_tags) + split_tags(detected)))
    path = save_config(config, obj.get("config_path"))
    click.echo(f"Configuration written to {path}")
    click.echo(f"Supported tags: {config.supported_tags or '(none)'}")


@cli.command(name="add-repo")
@click.argument("url")
@click.pass_context
@handle_errors
def add_repo(ctx, url):
    """Add a package repository"""
    info = _app(ctx).registry.add_url(url)
    click.echo(f"Added repository {info.name}: {info.description} ({info.url})")


@cli.command(name="remove-repo")
@click.argument("url")
@click.pass_context
@handle_errors
def remove_repo(ctx, url):
    """Remove a package repository"""
    _app(ctx).registry.remove(url)
    click.echo(f"Removed repository {url}")


@cli.command(name="list-repos")
@click.pass_context
@handle_errors
def list_repos(ctx):
    """List all package repositories"""
    infos = _app(ctx).registry.list_infos()
    if not infos:
        click.echo("No repositories configured.")
        return
    table = Table(title="Repositories")
    table.add_column("URL", style="bold")
    table.add_column("Name")
    table.add_column("Maintainer")
    table.add_column("Description")
    for info in infos:
        table.add_row(Text(info.url), Text(info.name), Text(info.maintainer), Text(info.description))
    _console(ctx).print(table)


@cli.command(name="verify-repo")
@click.argument("url")
@click.pass_context
@handle_errors
def verify_repo(ctx, url):
    """Check that a configured repository is reachable"""
    info = _app(ctx).registry.verify(url)
    click.echo(f"Repository {info.name} ({info.url}) is reachable")


@cli.command()
@click.pass_context
@handle_errors
def update(ctx):
    """Refresh repository metadata and rebuild the package index"""
    app = _app(ctx)
    report = app.registry.refresh_all()
    result = app.index_builder.rebuild_index()
    click.echo(
        f"Updated {len(report.updated)} repositories, indexed {result.package_count} packages"
    )
    failed = sorted(set(report.failed) | set(result.skipped))
    if failed:
        click.echo(f"Skipped unreachable repositories: {', '.join(failed)}", err=True)


@cli.command(name="list")
@click.pass_context
@handle_errors
def list_packages(ctx):
    """List all packages in the index"""
    app = _app(ctx)
    packages = app.index_store.load()
    _console(ctx).print(_package_table(packages, app.config.supported_tags, "Packages"))


@cli.command()
@click.argument("keyword")
@click.pass_context
@handle_errors
def search(ctx, keyword):
    """Search packages by name or description"""
    app = _app(ctx)
    packages = app.index_store.search(keyword)
    if not packages:
        click.echo(f"No packages match '{keyword}'.")
        return
    _console(ctx).print(_package_table(packages, app.config.supported_tags, f"Packages matching '{escape(keyword)}'"))


@cli.command()
@click.pass_context
@handle_errors
def installed(ctx):
    """List installed packages"""
    records = _app(ctx).index_store.installed()
    if not records:
        click.echo("No packages installed.")
        return
    table = Table(title="Installed packages")
    table.add_column("Name", style="bold")
    table.add_column("Version")
    table.add_column("Installed at")
    for record in records:
        table.add_row(
            Text(record.name),
            Text(record.version),
            record.installed_at.strftime("%Y-%m-%d %H:%M:%S"),
        )
    _console(ctx).print(table)


@cli.command()
@click.argument("name")
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation")
@click.pass_context
@handle_errors
def install(ctx, name, yes):
    """Install a package and its dependencies"""
    app = _app(ctx)
    console = _console(ctx)
    resolved = app.resolve(name)

    console.print(_package_table(resolved, app.config.supported_tags, "The following packages will be installed"))
    if not yes and not click.confirm(f"Install {len(resolved)} package(s) into {app.config.target_dir}?", default=True):
        click.echo("Aborted.")
        return

    with Progress(
        SpinnerColumn(),
        TextColumn("{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        console=console,
    ) as progress:
        overall = progress.add_task("Installing", total=len(resolved))
        current: dict = {}

        def on_package(position: int, total: int, package: PackageInfo) -> None:
            if "download" in current:
                progress.remove_task(current["download"])
            progress.update(overall, completed=position - 1, description=f"Installing ({position}/{total})")
            current["download"] = progress.add_task(f"Downloading {escape(package.name)}", total=None)

        def on_download(package: PackageInfo, downloaded: int, total: Optional[int]) -> None:
            progress.update(current["download"], completed=downloaded, total=total)

        app.installer.install(resolved, on_package=on_package, on_download=on_download)
        progress.update(overall, completed=len(resolved), description="Installed")

    click.echo(f"Installed {', '.join(pkg.name for pkg in resolved)}")


def main() -> None:
    cli(obj={})


if __name__ == "__main__":
    main()
