"""Read models handed to callers, and the façade that builds them."""
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from releasetracker.models.tracking import Release, Repository
from releasetracker.store import ReleaseStore


@dataclass(frozen=True)
class ReleaseView:
    id: int
    version: str
    release_date: Optional[datetime]
    release_notes: Optional[str]
    seen: bool

    @classmethod
    def from_row(cls, release: Release, seen: bool) -> "ReleaseView":
        return cls(
            id=release.id,
            version=release.version,
            release_date=release.release_date,
            release_notes=release.release_notes,
            seen=seen,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'version': self.version,
            'release_date': self.release_date.isoformat() if self.release_date else None,
            'release_notes': self.release_notes,
            'seen': self.seen,
        }


@dataclass(frozen=True)
class RepositoryView:
    id: int
    owner: str
    name: str
    url: str
    description: Optional[str]
    latest_release: Optional[ReleaseView]

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"

    @classmethod
    def from_row(cls, repository: Repository, latest_release: Optional[ReleaseView]) -> "RepositoryView":
        return cls(
            id=repository.id,
            owner=repository.owner,
            name=repository.name,
            url=repository.url,
            description=repository.description,
            latest_release=latest_release,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'owner': self.owner,
            'name': self.name,
            'url': self.url,
            'description': self.description,
            'latest_release': self.latest_release.to_dict() if self.latest_release else None,
        }


class QueryFacade:
    """Read-only access to the tracked repositories."""

    def __init__(self, store: ReleaseStore):
        self.store = store

    def list_all(self) -> List[RepositoryView]:
        views = []
        for repository, latest in self.store.list_repositories_with_latest_release():
            release_view = ReleaseView.from_row(*latest) if latest is not None else None
            views.append(RepositoryView.from_row(repository, release_view))
        return views
