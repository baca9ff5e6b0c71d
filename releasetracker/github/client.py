"""GitHub release source built on PyGithub."""
from typing import Optional

import requests
from github import Auth, Github, GithubException, RateLimitExceededException, UnknownObjectException
from github.Repository import Repository as GHRepository

from common.logging import LoggingManager
from releasetracker.exceptions import UpstreamNotFound, UpstreamUnavailable
from releasetracker.github.models import ReleaseInfo, RepositoryDetails
from releasetracker.models.tracking import as_utc

logger = LoggingManager.get_logger('app.github_client')


class GitHubReleaseSource:
    """Reads repository descriptions and latest releases from GitHub.

    Every call is a single read against the API. Nothing here retries:
    callers decide whether an UpstreamUnavailable is worth another attempt.
    """

    def __init__(self, token: Optional[str] = None, timeout: int = 15, gh: Optional[Github] = None):
        """
        Args:
            token: GitHub token. Anonymous access is used when omitted.
            timeout: Per-request timeout in seconds.
            gh: Pre-built PyGithub client, mostly for tests.
        """
        if gh is not None:
            self.gh = gh
        else:
            if not token:
                logger.warning("No GitHub token configured. Using unauthenticated requests (limited rate).")
            auth = Auth.Token(token) if token else None
            # retry=None disables PyGithub's built-in urllib3 retries.
            self.gh = Github(auth=auth, timeout=timeout, retry=None)

    def _get_repo(self, owner: str, name: str) -> GHRepository:
        full_name = f"{owner}/{name}"
        logger.debug(f"Fetching repository {full_name}")
        try:
            return self.gh.get_repo(full_name)
        except UnknownObjectException:
            logger.info(f"Repository {full_name} does not exist upstream")
            raise UpstreamNotFound(owner, name)
        except RateLimitExceededException as e:
            raise UpstreamUnavailable(f"GitHub rate limit exceeded while fetching {full_name}", status=e.status)
        except GithubException as e:
            raise UpstreamUnavailable(f"GitHub error while fetching {full_name}: {e}", status=e.status)
        except requests.exceptions.RequestException as e:
            raise UpstreamUnavailable(f"Could not reach GitHub while fetching {full_name}: {e}")

    def _latest_release(self, repo: GHRepository) -> Optional[ReleaseInfo]:
        try:
            release = repo.get_latest_release()
        except UnknownObjectException:
            # 404 here means "no published release yet", not a missing repository.
            logger.debug(f"No published release for {repo.full_name}")
            return None
        except RateLimitExceededException as e:
            raise UpstreamUnavailable(
                f"GitHub rate limit exceeded while fetching the latest release of {repo.full_name}", status=e.status)
        except GithubException as e:
            raise UpstreamUnavailable(
                f"GitHub error while fetching the latest release of {repo.full_name}: {e}", status=e.status)
        except requests.exceptions.RequestException as e:
            raise UpstreamUnavailable(
                f"Could not reach GitHub while fetching the latest release of {repo.full_name}: {e}")

        info = ReleaseInfo(
            version=release.tag_name,
            release_date=as_utc(release.published_at),
            release_notes=release.body,
        )
        logger.debug(f"Latest release of {repo.full_name}: {info.version}")
        return info

    def fetch_latest(self, owner: str, name: str) -> Optional[ReleaseInfo]:
        """Return the latest published release, or None if there is none."""
        return self._latest_release(self._get_repo(owner, name))

    def fetch_description_and_latest(self, owner: str, name: str) -> RepositoryDetails:
        """Fetch the description and latest release in one go, as add and refresh need both."""
        repo = self._get_repo(owner, name)
        return RepositoryDetails(
            description=repo.description,
            latest_release=self._latest_release(repo),
        )
