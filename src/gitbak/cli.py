"""Command line interface for gitbak."""

from typing import Optional

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from . import __version__
from .core.backup import BackupManager
from .core.config import DEFAULT_CONFIG_PATH, Config
from .core.errors import GitbakError, RunError
from .core.logging import setup_logging
from .core.paths import PathResolver
from .core.repository import GitRepository
from .core.restore import (
    ConflictAction,
    ConflictResolver,
    PromptConflictResolver,
    RestoreManager,
    ScriptedConflictResolver,
)

console = Console()

CONFLICT_CHOICES = {
    "prompt": None,
    "skip": ConflictAction.SKIP,
    "overwrite": ConflictAction.OVERWRITE,
    "backup": ConflictAction.BACKUP_ASIDE,
}


def _load_config(ctx: click.Context) -> Config:
    resolver: PathResolver = ctx.obj["resolver"]
    config_path = resolver.absolute(ctx.obj["config_path"])
    try:
        config = Config.from_file(config_path)
    except GitbakError as e:
        console.print(f"[red]Error loading config from {config_path}: {escape(str(e))}")
        raise click.Abort()
    problems = config.validate()
    if problems:
        console.print(f"[red]Invalid config in {config_path}:")
        for problem in problems:
            console.print(f"  [red]- {escape(problem)}")
        raise click.Abort()
    return config


def _report_failures(error: RunError) -> None:
    operation = error.operation.capitalize()
    console.print(f"[red]{operation} finished with {len(error.failures)} error(s):")
    for failure in error.failures:
        console.print(f"  [red]- {escape(failure)}")


@click.group()
@click.version_option(__version__, "--version", "-V", prog_name="gitbak")
@click.option(
    "--config",
    "-c",
    "config_path",
    default=DEFAULT_CONFIG_PATH,
    envvar="GITBAK_CONFIG",
    show_default=True,
    help="Path to the configuration file.",
)
@click.option("--debug", is_flag=True, help="Enable debug logging.")
@click.option("--log-file", type=click.Path(dir_okay=False), help="Also write logs to this file.")
@click.pass_context
def cli(ctx: click.Context, config_path: str, debug: bool, log_file: Optional[str]) -> None:
    """Back up dotfiles into a git-versioned directory and restore them.

    Main commands:

      add       Add a file or directory to an application
      apps      List configured applications and their paths
      backup    Copy every configured path into the backup directory
      restore   Copy backed-up paths back to their original locations

    Run 'gitbak COMMAND --help' for more information on a specific command.
    """
    setup_logging(debug=debug, log_file=log_file)
    ctx.ensure_object(dict)
    ctx.obj.setdefault("resolver", PathResolver())
    ctx.obj["config_path"] = config_path


@cli.command()
@click.option("--app", "-a", required=True, help="Application to add the path to.")
@click.option("--path", "-p", "path_to_add", required=True, help="File or directory to add.")
@click.pass_context
def add(ctx: click.Context, app: str, path_to_add: str) -> None:
    """Add a file or directory to an application.

    The application is created when it does not exist yet. The path is stored
    in absolute form and added only once.

    Examples:

      gitbak add --app nvim --path ~/.config/nvim

      gitbak add --app shell --path .zshrc
    """
    config = _load_config(ctx)
    resolver: PathResolver = ctx.obj["resolver"]
    absolute = resolver.absolute(path_to_add)
    if config.add_path(app, path_to_add, resolver):
        console.print(f"Added path {absolute} to app {app}.")
    else:
        console.print(f"Path {absolute} already exists in app {app}. Nothing to do.")
        return
    try:
        saved = config.save()
    except GitbakError as e:
        console.print(f"[red]Error saving config: {escape(str(e))}")
        raise click.Abort()
    console.print(f"[green]Successfully updated config at {saved}")


@cli.command()
@click.pass_context
def apps(ctx: click.Context) -> None:
    """List configured applications and their paths."""
    config = _load_config(ctx)
    if not config.custom_apps:
        console.print("[yellow]No applications configured.")
        return

    table = Table(title=f"Applications (backup root: {config.backup_dir})")
    table.add_column("App", style="cyan")
    table.add_column("Paths", style="green")
    table.add_column("Pre-backup script", style="magenta")
    for name, app_config in config.custom_apps.items():
        table.add_row(name, "\n".join(app_config.paths), app_config.pre_backup_script or "")
    console.print(table)


@cli.command()
@click.option("--dry-run", is_flag=True, help="Print steps without executing.")
@click.option("--no-commit", is_flag=True, help="Skip git add/commit/push after backup.")
@click.option("--no-push", is_flag=True, help="Commit but do not push.")
@click.option("--app", "-a", "selected", multiple=True, help="Only back up this app (repeatable).")
@click.option("--jobs", "-j", type=click.IntRange(min=1), help="Apps to back up in parallel.")
@click.pass_context
def backup(
    ctx: click.Context,
    dry_run: bool,
    no_commit: bool,
    no_push: bool,
    selected: tuple,
    jobs: Optional[int],
) -> None:
    """Copy every configured path into the backup directory.

    Runs each application's pre-backup script, mirrors its paths under
    BACKUP_DIR/APP/, records file metadata and finally commits and pushes the
    backup directory with git.

    Examples:

      gitbak backup

      gitbak backup --dry-run

      gitbak backup --app nvim --no-commit
    """
    config = _load_config(ctx)
    manager = BackupManager(config, resolver=ctx.obj["resolver"], max_workers=jobs)
    try:
        result = manager.backup(dry_run=dry_run, apps=list(selected) or None)
    except RunError as e:
        _report_failures(e)
        raise click.Abort()
    except GitbakError as e:
        console.print(f"[red]Backup failed: {escape(str(e))}")
        raise click.Abort()

    console.print(
        f"[green]Backed up {sum(len(a.copied) for a in result.apps)} path(s) "
        f"from {len(result.apps)} app(s) into {result.backup_root}"
    )

    if no_commit:
        return
    try:
        GitRepository(result.backup_root).commit_and_push(dry_run=dry_run, push=not no_push)
    except GitbakError as e:
        console.print(f"[red]Git step failed: {escape(str(e))}")
        raise click.Abort()


@cli.command()
@click.option("--dry-run", is_flag=True, help="Print steps without executing.")
@click.option("--app", "-a", help="Only restore this specific app.")
@click.option(
    "--on-conflict",
    type=click.Choice(list(CONFLICT_CHOICES)),
    default="prompt",
    show_default=True,
    help="What to do when a destination already exists.",
)
@click.pass_context
def restore(ctx: click.Context, dry_run: bool, app: Optional[str], on_conflict: str) -> None:
    """Copy backed-up paths back to their original locations.

    When a destination already exists you are asked whether to (s)kip it,
    (o)verwrite it or (b)ack it up aside as NAME.gitbak-restore-state-TIME.

    Examples:

      gitbak restore --dry-run

      gitbak restore --app nvim

      gitbak restore --on-conflict backup
    """
    config = _load_config(ctx)
    action = CONFLICT_CHOICES[on_conflict]
    conflicts: ConflictResolver
    if action is None:
        conflicts = PromptConflictResolver(console)
    else:
        conflicts = ScriptedConflictResolver(default=action)
    manager = RestoreManager(config, resolver=ctx.obj["resolver"], conflicts=conflicts)
    try:
        result = manager.restore(dry_run=dry_run, app=app)
    except RunError as e:
        _report_failures(e)
        raise click.Abort()
    except GitbakError as e:
        console.print(f"[red]Restore failed: {escape(str(e))}")
        raise click.Abort()

    console.print(
        f"[green]Restored {len(result.restored)} path(s), skipped {len(result.skipped)}"
        + (f", set aside {len(result.set_aside)}" if result.set_aside else "")
    )


def main() -> None:
    """Entry point for the gitbak CLI."""
    cli(obj={})


if __name__ == "__main__":
    main()
