"""Value objects describing what GitHub reports about a repository."""
from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass(frozen=True)
class ReleaseInfo:
    """The latest published release as reported upstream."""

    version: str  # release tag, e.g. "v1.0.0"
    release_date: Optional[datetime] = None
    release_notes: Optional[str] = None


@dataclass(frozen=True)
class RepositoryDetails:
    description: Optional[str]
    latest_release: Optional[ReleaseInfo]
