"""HTTP API for the release tracker."""
from datetime import datetime
from functools import lru_cache
from typing import List, Optional

from fastapi import Depends, FastAPI, HTTPException, status
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from common.logging import LoggingManager
from releasetracker.exceptions import RepositoryNotFound, UpstreamNotFound, UpstreamUnavailable
from releasetracker.tracker import ReleaseTracker, build_tracker

logger = LoggingManager.get_logger('app.api')

app = FastAPI(
    title="Release Tracker API",
    description="Track GitHub repositories and acknowledge their new releases",
    version="1.0.0"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@lru_cache(maxsize=1)
def get_tracker() -> ReleaseTracker:
    """Tracker shared by all requests; tests replace it via app.dependency_overrides."""
    return build_tracker()


class AddRepositoryRequest(BaseModel):
    owner: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)


class ReleaseResponse(BaseModel):
    id: int
    version: str
    release_date: Optional[datetime] = None
    release_notes: Optional[str] = None
    seen: bool


class RepositoryResponse(BaseModel):
    id: int
    owner: str
    name: str
    url: str
    description: Optional[str] = None
    latest_release: Optional[ReleaseResponse] = None


class MarkSeenResponse(BaseModel):
    toggled: bool


class RemoveResponse(BaseModel):
    removed_id: Optional[int] = None


def _upstream_unavailable(e: UpstreamUnavailable) -> HTTPException:
    logger.warning(f"Upstream unavailable: {e}")
    return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))


@app.get("/")
def root():
    """Root endpoint."""
    return {
        "service": "Release Tracker API",
        "version": "1.0.0",
        "endpoints": {
            "repositories": "/repositories",
            "refresh": "/repositories/{repository_id}/refresh",
            "seen": "/repositories/{repository_id}/seen",
            "health": "/health"
        }
    }


@app.get("/health")
def health_check(tracker: ReleaseTracker = Depends(get_tracker)):
    """Health check endpoint."""
    try:
        tracker.store.ping()
        return {
            "status": "healthy",
            "database": "connected",
            "repositories": tracker.store.count_repositories(),
        }
    except Exception as e:
        logger.error(f"Health check failed: {e}")
        return {
            "status": "unhealthy",
            "error": str(e)
        }


@app.get("/repositories", response_model=List[RepositoryResponse])
def list_repositories(tracker: ReleaseTracker = Depends(get_tracker)):
    """List tracked repositories with their latest release."""
    return [RepositoryResponse(**view.to_dict()) for view in tracker.list_repositories()]


@app.post("/repositories", response_model=RepositoryResponse, status_code=status.HTTP_201_CREATED)
def add_repository(request: AddRepositoryRequest, tracker: ReleaseTracker = Depends(get_tracker)):
    """Start tracking a GitHub repository."""
    try:
        view = tracker.add_repository(request.owner, request.name)
    except UpstreamNotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except UpstreamUnavailable as e:
        raise _upstream_unavailable(e)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
    return RepositoryResponse(**view.to_dict())


@app.post("/repositories/{repository_id}/refresh", response_model=RepositoryResponse)
def refresh_repository(repository_id: int, tracker: ReleaseTracker = Depends(get_tracker)):
    """Re-fetch a repository's description and latest release."""
    try:
        view = tracker.refresh_repository(repository_id)
    except (RepositoryNotFound, UpstreamNotFound) as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except UpstreamUnavailable as e:
        raise _upstream_unavailable(e)
    return RepositoryResponse(**view.to_dict())


@app.post("/repositories/{repository_id}/seen", response_model=MarkSeenResponse)
def mark_as_seen(repository_id: int, tracker: ReleaseTracker = Depends(get_tracker)):
    """Toggle the seen flag of the repository's latest release."""
    return MarkSeenResponse(toggled=tracker.mark_as_seen(repository_id))


@app.delete("/repositories/{repository_id}", response_model=RemoveResponse)
def remove_repository(repository_id: int, tracker: ReleaseTracker = Depends(get_tracker)):
    """Stop tracking a repository."""
    return RemoveResponse(removed_id=tracker.remove_repository(repository_id))


if __name__ == "__main__":
    import uvicorn
    from releasetracker.config import get_config
    config = get_config()
    uvicorn.run(app, host=config.api_host, port=config.api_port)
