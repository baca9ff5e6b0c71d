import sys
from typing import Optional

import click

from common.logging import LoggingManager
from releasetracker.config import get_config
from releasetracker.exceptions import (ReleaseTrackerError, RepositoryNotFound, UpstreamNotFound,
                                       UpstreamUnavailable)
from releasetracker.queries import RepositoryView
from releasetracker.retry import retry_on_failure
from releasetracker.tracker import ReleaseTracker, build_tracker

logger = LoggingManager.get_logger('app.cli')

# Distinct exit code for "GitHub is unavailable, try again later".
UPSTREAM_UNAVAILABLE_EXIT_CODE = 2


def format_view(view: RepositoryView) -> str:
    """Two-line summary of a repository and its latest release."""
    release = view.latest_release
    if release is None:
        status = "no releases"
    else:
        date = release.release_date.date().isoformat() if release.release_date else "undated"
        status = f"{release.version} ({date}) {'seen' if release.seen else 'NEW'}"
    return f"[{view.id}] {view.full_name}  {status}\n    {view.url}"


def _tracker(ctx: click.Context) -> ReleaseTracker:
    if ctx.obj.get('tracker') is None:
        ctx.obj['tracker'] = build_tracker(ctx.obj['config'])
    return ctx.obj['tracker']


def _fail(message: str, exit_code: int = 1) -> None:
    click.echo(f"Error: {message}", err=True)
    sys.exit(exit_code)


@click.group()
@click.option('--log-level', default=None, help='Log level (DEBUG/INFO/WARNING/ERROR). Defaults to LOG_LEVEL or INFO.')
@click.pass_context
def cli(ctx: click.Context, log_level: Optional[str]):
    """Track GitHub repositories and their latest releases."""
    config = get_config()
    LoggingManager(
        logger_name='app',
        log_level=log_level or config.log_level,
        log_file=config.log_file,
        console_output=True,
        propagate=False,
    )
    ctx.ensure_object(dict)
    ctx.obj['config'] = config
    ctx.obj.setdefault('tracker', None)


@cli.command('list')
@click.pass_context
def list_repositories(ctx: click.Context):
    """List tracked repositories."""
    views = _tracker(ctx).list_repositories()
    if not views:
        click.echo("No repositories tracked yet.")
        return
    for view in views:
        click.echo(format_view(view))


@cli.command('add')
@click.argument('owner')
@click.argument('name')
@click.pass_context
def add_repository(ctx: click.Context, owner: str, name: str):
    """Start tracking OWNER/NAME."""
    try:
        view = _tracker(ctx).add_repository(owner, name)
    except UpstreamNotFound as e:
        _fail(str(e))
    except UpstreamUnavailable as e:
        _fail(f"{e}. Try again later.", UPSTREAM_UNAVAILABLE_EXIT_CODE)
    except ValueError as e:
        _fail(str(e))
    else:
        click.echo(f"Now tracking {view.full_name}")
        click.echo(format_view(view))


@cli.command('refresh')
@click.argument('repository_id', type=int)
@click.option('--retries', type=int, default=None,
              help='Retries when GitHub is unavailable. Defaults to REFRESH_RETRIES or 0.')
@click.option('--retry-delay', type=float, default=1.0, show_default=True, help='Initial delay between retries in seconds.')
@click.pass_context
def refresh_repository(ctx: click.Context, repository_id: int, retries: Optional[int], retry_delay: float):
    """Re-fetch REPOSITORY_ID from GitHub."""
    tracker = _tracker(ctx)
    if retries is None:
        retries = ctx.obj['config'].refresh_retries
    refresh = retry_on_failure(max_retries=max(0, retries), delay=retry_delay)(tracker.refresh)
    try:
        outcome = refresh(repository_id)
    except (RepositoryNotFound, UpstreamNotFound) as e:
        _fail(str(e))
    except UpstreamUnavailable as e:
        _fail(f"{e}. Try again later.", UPSTREAM_UNAVAILABLE_EXIT_CODE)
    else:
        if outcome.is_new_release:
            click.echo(f"New release for {outcome.full_name}!")
        click.echo(format_view(outcome.view))


@cli.command('refresh-all')
@click.pass_context
def refresh_all(ctx: click.Context):
    """Refresh every tracked repository."""
    outcomes = _tracker(ctx).refresh_all()
    if not outcomes:
        click.echo("No repositories tracked yet.")
        return
    for outcome in outcomes:
        if not outcome.ok:
            click.echo(f"[{outcome.repository_id}] {outcome.full_name}  failed: {outcome.error}", err=True)
            continue
        if outcome.is_new_release:
            click.echo(f"New release for {outcome.full_name}!")
        click.echo(format_view(outcome.view))
    failures = sum(1 for o in outcomes if not o.ok)
    if failures:
        sys.exit(1)


@cli.command('seen')
@click.argument('repository_id', type=int)
@click.pass_context
def mark_as_seen(ctx: click.Context, repository_id: int):
    """Toggle the seen flag of REPOSITORY_ID's latest release."""
    if _tracker(ctx).mark_as_seen(repository_id):
        click.echo(f"Toggled seen flag for repository {repository_id}")
    else:
        click.echo(f"Repository {repository_id} has no release to mark")


@cli.command('remove')
@click.argument('repository_id', type=int)
@click.pass_context
def remove_repository(ctx: click.Context, repository_id: int):
    """Stop tracking REPOSITORY_ID."""
    removed = _tracker(ctx).remove_repository(repository_id)
    if removed is None:
        click.echo(f"Repository {repository_id} is not tracked")
    else:
        click.echo(f"Removed repository {removed}")


@cli.command('serve')
@click.option('--host', default=None, help='Bind address. Defaults to API_HOST or 127.0.0.1.')
@click.option('--port', type=int, default=None, help='Port. Defaults to API_PORT or 8000.')
@click.pass_context
def serve(ctx: click.Context, host: Optional[str], port: Optional[int]):
    """Run the HTTP API."""
    import uvicorn
    from releasetracker.api.main import app

    config = ctx.obj['config']
    host = host or config.api_host
    port = port or config.api_port
    logger.info(f"Serving API on {host}:{port}")
    uvicorn.run(app, host=host, port=port)


def main():
    try:
        cli(obj={})
    except ReleaseTrackerError as e:
        logger.critical(f"Unhandled tracker error: {e}", exc_info=True)
        _fail(str(e))


if __name__ == '__main__':
    main()
