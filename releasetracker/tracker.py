"""
Release tracking service.

Reconciles what GitHub reports as a repository's latest release with what has
been stored before, and keeps a per-release seen flag:

- add stores a repository together with its current latest release (unseen).
- refresh stores a release only when its version has never been seen for the
  repository; a known version keeps its seen flag.
- mark_as_seen toggles the flag on the repository's latest stored release.
- remove deletes the repository with all of its releases.

Upstream calls always complete before anything is written, so a failed or
timed-out fetch never leaves partial rows behind.
"""
from dataclasses import dataclass, replace
from typing import List, Optional, Protocol

from common.logging import LoggingManager
from releasetracker.config import Config, get_config
from releasetracker.exceptions import NotFoundError, ReleaseTrackerError, RepositoryNotFound
from releasetracker.github.client import GitHubReleaseSource
from releasetracker.github.models import ReleaseInfo, RepositoryDetails
from releasetracker.queries import QueryFacade, ReleaseView, RepositoryView
from releasetracker.store import ReleaseStore, resolve_seen

logger = LoggingManager.get_logger('app.tracker')

GITHUB_URL_TEMPLATE = "https://github.com/{owner}/{name}"

__all__ = ["RefreshOutcome", "ReleaseSource", "ReleaseTracker", "build_tracker", "resolve_seen"]


class ReleaseSource(Protocol):
    def fetch_latest(self, owner: str, name: str) -> Optional[ReleaseInfo]: ...

    def fetch_description_and_latest(self, owner: str, name: str) -> RepositoryDetails: ...


@dataclass
class RefreshOutcome:
    """Result of refreshing one repository. ``error`` is set only by refresh_all."""
    repository_id: int
    full_name: str
    view: Optional[RepositoryView] = None
    is_new_release: bool = False
    error: Optional[ReleaseTrackerError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class ReleaseTracker:
    def __init__(self, store: ReleaseStore, source: ReleaseSource):
        self.store = store
        self.source = source
        self.queries = QueryFacade(store)

    def list_repositories(self) -> List[RepositoryView]:
        return self.queries.list_all()

    def add_repository(self, owner: str, name: str) -> RepositoryView:
        """Start tracking ``owner/name``.

        Args:
            owner: GitHub user or organisation.
            name: Repository name.

        Returns:
            RepositoryView: the stored repository with its latest release
            (unseen), or with no release if none is published yet.

        Raises:
            UpstreamNotFound: the repository does not exist on GitHub.
            UpstreamUnavailable: GitHub could not be queried.
        """
        owner = (owner or "").strip()
        name = (name or "").strip()
        if not owner or not name:
            raise ValueError("Both owner and name are required")

        url = GITHUB_URL_TEMPLATE.format(owner=owner, name=name)
        logger.info(f"Adding repository {owner}/{name}")
        details = self.source.fetch_description_and_latest(owner, name)

        repository, latest = self.store.create_repository(
            owner, name, url, details.description, details.latest_release)
        if latest is not None:
            logger.info(f"Tracking {owner}/{name} (id={repository.id}) at release {latest[0].version}")
        else:
            logger.info(f"Tracking {owner}/{name} (id={repository.id}); no release published yet")
        release_view = ReleaseView.from_row(*latest) if latest is not None else None
        return RepositoryView.from_row(repository, release_view)

    def refresh(self, repository_id: int) -> RefreshOutcome:
        """Re-fetch a repository from GitHub and reconcile its latest release.

        The description is always overwritten with the fetched one. A release
        version already stored for this repository is reused with its seen
        flag untouched; a version never stored before is inserted as unseen
        and reported with ``is_new_release``. When GitHub reports no release
        at all, stored releases are kept and the last known one is reported.

        Raises:
            RepositoryNotFound: the id is not tracked.
            UpstreamNotFound: the repository disappeared from GitHub.
            UpstreamUnavailable: GitHub could not be queried.
        """
        repository = self.store.get_repository(repository_id)
        if repository is None:
            raise RepositoryNotFound(repository_id)

        logger.info(f"Refreshing {repository.full_name} (id={repository.id})")
        details = self.source.fetch_description_and_latest(repository.owner, repository.name)

        latest, is_new_release = self.store.apply_refresh(
            repository.id, details.description, details.latest_release)
        if details.latest_release is None:
            logger.debug(f"No upstream release for {repository.full_name}; keeping the last known release")
        elif is_new_release:
            logger.info(f"New release {latest[0].version} for {repository.full_name}")
        else:
            logger.debug(f"Release {latest[0].version} of {repository.full_name} already known (seen={latest[1]})")

        release_view = ReleaseView.from_row(*latest) if latest is not None else None
        view = replace(RepositoryView.from_row(repository, release_view), description=details.description)
        return RefreshOutcome(
            repository_id=repository.id,
            full_name=repository.full_name,
            view=view,
            is_new_release=is_new_release,
        )

    def refresh_repository(self, repository_id: int) -> RepositoryView:
        return self.refresh(repository_id).view

    def refresh_all(self) -> List[RefreshOutcome]:
        """Refresh every tracked repository; a failure on one does not stop the rest."""
        outcomes = []
        for repository in self.list_repositories():
            try:
                outcomes.append(self.refresh(repository.id))
            except ReleaseTrackerError as e:
                logger.warning(f"Refreshing {repository.full_name} (id={repository.id}) failed: {e}")
                outcomes.append(RefreshOutcome(
                    repository_id=repository.id,
                    full_name=repository.full_name,
                    error=e,
                ))
        new_count = sum(1 for o in outcomes if o.is_new_release)
        failed_count = sum(1 for o in outcomes if not o.ok)
        logger.info(f"Refreshed {len(outcomes)} repositories: {new_count} new releases, {failed_count} failures")
        return outcomes

    def mark_as_seen(self, repository_id: int) -> bool:
        """Toggle the seen flag of the repository's latest release.

        This flips the flag; it does not force it to True. The first toggle
        of a release without a SeenStatus row sets it to True.

        Returns:
            bool: True if a flag was toggled, False if the repository has no
            release (or no longer exists).
        """
        release_id = self.store.find_latest_release_id(repository_id)
        if release_id is None:
            logger.info(f"Repository {repository_id} has no release to mark")
            return False
        try:
            seen = self.store.toggle_seen_status(release_id)
        except NotFoundError:
            logger.info(f"Release {release_id} of repository {repository_id} vanished before it could be marked")
            return False
        logger.info(f"Release {release_id} of repository {repository_id} marked seen={seen}")
        return True

    def remove_repository(self, repository_id: int) -> Optional[int]:
        """Stop tracking a repository. Returns its id, or None if it wasn't tracked."""
        removed = self.store.delete_repository(repository_id)
        if removed is None:
            logger.info(f"Repository {repository_id} not found; nothing removed")
        else:
            logger.info(f"Removed repository {repository_id}")
        return removed


def build_tracker(config: Optional[Config] = None) -> ReleaseTracker:
    """Wire a tracker from configuration: SQLAlchemy store plus GitHub source."""
    config = config or get_config()
    store = ReleaseStore(db_url=config.database_url)
    store.create_schema()
    source = GitHubReleaseSource(token=config.github_token, timeout=config.github_timeout)
    return ReleaseTracker(store, source)
