"""Command line interface for gitstacks."""

import json
import logging
import os
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.table import Table

from .errors import GitStacksError
from .listing import BranchListingService
from .models import BranchListingFilter, Target
from .refs import REMOTE_PREFIX, remote_of
from .repository import GitRepository
from .store import VirtualBranchesHandle
from .timeutil import format_relative_time, from_ms, parse_time_reference, to_ms

console = Console()


def get_repo_path() -> Path:
    """Repository path from GITSTACKS_PATH, or the current directory."""
    if env_path := os.environ.get("GITSTACKS_PATH"):
        return Path(env_path)
    return Path.cwd()


def _open(ctx) -> tuple[GitRepository, VirtualBranchesHandle]:
    repo = GitRepository.discover(ctx.obj["repo_path"])
    state_dir = ctx.obj["state_dir"] or repo.state_dir()
    return repo, VirtualBranchesHandle(state_dir)


def _fail(error: Exception) -> None:
    console.print(f"[red]Error:[/red] {error}")
    sys.exit(1)


@click.group()
@click.option(
    "--repo",
    "repo_path",
    envvar="GITSTACKS_PATH",
    type=click.Path(path_type=Path),
    help="Path inside the git repository (default: current directory)",
)
@click.option(
    "--state-dir",
    envvar="GITSTACKS_STATE_DIR",
    type=click.Path(path_type=Path),
    help="Directory holding virtual_branches.toml (default: <git dir>/gitstacks)",
)
@click.option("-v", "--verbose", is_flag=True, help="Log debug output to stderr")
@click.pass_context
def cli(ctx, repo_path, state_dir, verbose):
    """gitstacks - unified branch listing and virtual branch state."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        stream=sys.stderr,
    )
    ctx.ensure_object(dict)
    ctx.obj["repo_path"] = repo_path or get_repo_path()
    ctx.obj["state_dir"] = state_dir


# --- Branch listing ---


@cli.command("list")
@click.option("--local/--no-local", default=None, help="Only branches with (or without) a local ref or stack")
@click.option("--applied/--not-applied", default=None, help="Only applied (or unapplied) branches")
@click.option("-n", "--name", "names", multiple=True, help="Only branches with this exact name")
@click.option("--since", help="Only branches updated since (ISO, relative, or named)")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def list_command(ctx, local, applied, names, since, as_json):
    """List local, remote and virtual branches, one row per name."""
    try:
        repo, handle = _open(ctx)
        service = BranchListingService(repo, handle)
        listing_filter = None
        if local is not None or applied is not None:
            listing_filter = BranchListingFilter(local=local, applied=applied)
        branches = service.list_branches(listing_filter, list(names) if names else None)
        if since:
            cutoff = to_ms(parse_time_reference(since))
            branches = [b for b in branches if b.updated_at >= cutoff]
    except (GitStacksError, ValueError) as e:
        _fail(e)

    if as_json:
        click.echo(json.dumps([b.to_dict() for b in branches], indent=2))
        return

    if not branches:
        console.print("[dim]No branches found.[/dim]")
        return

    table = Table(title="Branches")
    table.add_column("Name", style="cyan")
    table.add_column("Remotes", style="green")
    table.add_column("Stack")
    table.add_column("Local")
    table.add_column("Updated")
    table.add_column("Last committer", style="dim")

    for b in branches:
        stack = ""
        if b.virtual_branch is not None:
            state = "applied" if b.virtual_branch.in_workspace else "unapplied"
            stack = f"{b.virtual_branch.given_name} ({state})"
        table.add_row(
            b.name,
            ", ".join(b.remotes),
            stack,
            "yes" if b.has_local else "",
            format_relative_time(from_ms(b.updated_at)),
            str(b.last_commiter),
        )
    console.print(table)


@cli.command()
@click.argument("names", nargs=-1, required=True)
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def details(ctx, names, as_json):
    """Show line, file, commit and author counts for branches."""
    try:
        repo, handle = _open(ctx)
        entries = BranchListingService(repo, handle).get_branch_listing_details(list(names))
    except GitStacksError as e:
        _fail(e)

    if as_json:
        click.echo(json.dumps([d.to_dict() for d in entries], indent=2))
        return

    for d in entries:
        console.print(f"[bold cyan]{d.name}[/bold cyan]")
        console.print(
            f"  [green]+{d.lines_added}[/green] [red]-{d.lines_removed}[/red] "
            f"in {d.number_of_files} file(s), {d.number_of_commits} commit(s)"
        )
        for author in d.authors:
            console.print(f"  [dim]{author}[/dim]")


# --- Target ---


@cli.group()
def target():
    """Show or set the default target."""


@target.command("show")
@click.pass_context
def target_show(ctx):
    """Show the default target."""
    try:
        _, handle = _open(ctx)
        t = handle.get_default_target()
    except GitStacksError as e:
        _fail(e)

    console.print(f"Target: [cyan]{t.remote_name}/{t.branch_name}[/cyan]")
    console.print(f"Commit: [yellow]{t.sha}[/yellow]")
    if t.remote_url:
        console.print(f"Remote: {t.remote_url}")


@target.command("set")
@click.argument("remote_branch")
@click.option("--sha", help="Base commit (default: current tip of the remote branch)")
@click.pass_context
def target_set(ctx, remote_branch, sha):
    """Set the default target, e.g. `gitstacks target set origin/main`."""
    try:
        repo, handle = _open(ctx)
        refname = f"{REMOTE_PREFIX}{remote_branch}"
        remote = remote_of(refname, repo.remote_names())
        if remote is None:
            raise click.BadParameter(f"'{remote_branch}' does not start with a known remote")
        branch_name = remote_branch[len(remote) + 1:]

        resolved = repo.resolve(sha or refname)
        if resolved is None:
            raise click.BadParameter(f"Cannot resolve '{sha or refname}' to a commit")

        new_target = Target(
            branch_name=branch_name,
            remote_name=remote,
            remote_url=repo.remote_url(remote),
            sha=resolved,
        )
        handle.set_default_target(new_target)
    except GitStacksError as e:
        _fail(e)

    console.print(f"[green]✓[/green] Target set to {remote}/{branch_name} at {resolved[:7]}")


# --- Stacks ---


@cli.command()
@click.pass_context
def stacks(ctx):
    """List stored virtual branches in order."""
    try:
        _, handle = _open(ctx)
        all_stacks = handle.list_all_branches()
    except GitStacksError as e:
        _fail(e)

    if not all_stacks:
        console.print("[dim]No virtual branches.[/dim]")
        return

    table = Table(title="Virtual branches")
    table.add_column("Order", justify="right")
    table.add_column("Name", style="cyan")
    table.add_column("Head", style="yellow")
    table.add_column("Applied")
    table.add_column("Id", style="dim")
    for s in all_stacks:
        table.add_row(
            str(s.order) if s.in_workspace else "-",
            s.name,
            s.head[:7],
            "yes" if s.in_workspace else "",
            s.id,
        )
    console.print(table)


@cli.command()
@click.pass_context
def reorder(ctx):
    """Renumber applied virtual branches to 0..n-1."""
    try:
        _, handle = _open(ctx)
        handle.update_ordering()
    except GitStacksError as e:
        _fail(e)
    console.print("[green]✓[/green] Ordering updated")


@cli.command()
@click.pass_context
def gc(ctx):
    """Remove unapplied virtual branches that hold no work."""
    try:
        repo, handle = _open(ctx)
        removed = handle.garbage_collect(repo)
    except GitStacksError as e:
        _fail(e)

    if removed:
        console.print(f"[green]✓[/green] Removed {len(removed)} virtual branch(es)")
        for branch_id in removed:
            console.print(f"  [dim]{branch_id}[/dim]")
    else:
        console.print("Nothing to collect")


if __name__ == "__main__":
    cli()
