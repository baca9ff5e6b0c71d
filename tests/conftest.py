import pytest

from releasetracker.store import ReleaseStore
from releasetracker.tracker import ReleaseTracker

from tests.factories import FakeReleaseSource


@pytest.fixture
def store(tmp_path):
    store = ReleaseStore(db_url=f"sqlite:///{tmp_path / 'tracker.db'}")
    store.create_schema()
    yield store
    store.dispose()


@pytest.fixture
def source():
    return FakeReleaseSource()


@pytest.fixture
def tracker(store, source):
    return ReleaseTracker(store, source)
