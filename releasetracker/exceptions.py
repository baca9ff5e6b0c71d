"""Errors raised by the release tracker and its collaborators."""
from typing import Optional


class ReleaseTrackerError(Exception):
    """Base class for every error the tracker surfaces to callers."""


class UpstreamError(ReleaseTrackerError):
    """Base class for failures talking to GitHub."""


class UpstreamNotFound(UpstreamError):
    """The owner/name pair does not resolve to a repository on GitHub."""
    def __init__(self, owner: str, name: str):
        super().__init__(f"Repository {owner}/{name} was not found on GitHub")
        self.owner = owner
        self.name = name


class UpstreamUnavailable(UpstreamError):
    """GitHub could not be reached or refused to answer. Safe to retry later."""
    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class NotFoundError(ReleaseTrackerError):
    """A stored record the caller referred to does not exist."""


class RepositoryNotFound(NotFoundError):
    def __init__(self, repository_id: int):
        super().__init__(f"Repository {repository_id} is not tracked")
        self.repository_id = repository_id


class ReleaseNotFound(NotFoundError):
    def __init__(self, release_id: int):
        super().__init__(f"Release {release_id} does not exist")
        self.release_id = release_id
