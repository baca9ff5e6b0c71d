"""Tests for the SQLAlchemy release store, against a SQLite file database."""
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, OperationalError

from releasetracker.exceptions import ReleaseNotFound, RepositoryNotFound
from releasetracker.github.models import ReleaseInfo
from releasetracker.models.tracking import Release, SeenStatus
from releasetracker.store import ReleaseStore, resolve_seen

from tests.factories import release


def day(month, dd=1):
    return datetime(2024, month, dd, tzinfo=timezone.utc)


def add_repo(store, owner="acme", name="widget", description="Widgets"):
    return store.insert_repository(owner, name, f"https://github.com/{owner}/{name}", description)


def count(store, column):
    with store.session_scope() as session:
        return session.query(func.count(column)).scalar()


def test_requires_url_or_engine():
    with pytest.raises(ValueError):
        ReleaseStore()


def test_resolve_seen():
    assert resolve_seen(None) is False
    assert resolve_seen(False) is False
    assert resolve_seen(True) is True


def test_insert_and_get_repository(store):
    repository = add_repo(store)

    stored = store.get_repository(repository.id)
    assert stored.owner == "acme"
    assert stored.name == "widget"
    assert stored.url == "https://github.com/acme/widget"
    assert stored.description == "Widgets"
    assert stored.full_name == "acme/widget"
    assert store.count_repositories() == 1


def test_get_unknown_repository(store):
    assert store.get_repository(404) is None


def test_ping(store):
    assert store.ping() is True


def test_duplicate_version_is_rejected(store):
    repository = add_repo(store)
    store.insert_release(repository.id, "v1.0.0", day(1), None)

    with pytest.raises(IntegrityError):
        store.insert_release(repository.id, "v1.0.0", day(2), None)
    assert count(store, Release.id) == 1


def test_same_version_in_different_repositories(store):
    first = add_repo(store, name="widget")
    second = add_repo(store, name="gadget")
    store.insert_release(first.id, "v1.0.0", day(1), None)
    store.insert_release(second.id, "v1.0.0", day(1), None)
    assert count(store, Release.id) == 2


def test_release_requires_existing_repository(store):
    with pytest.raises(IntegrityError):
        store.insert_release(999, "v1.0.0", day(1), None)


def test_find_release_by_version(store):
    repository = add_repo(store)
    inserted = store.insert_release(repository.id, "v1.0.0", day(1), "notes")

    found = store.find_release_by_version(repository.id, "v1.0.0")
    assert found.id == inserted.id
    assert found.release_notes == "notes"
    assert store.find_release_by_version(repository.id, "v9.9.9") is None


def test_latest_release_prefers_newest_date(store):
    repository = add_repo(store)
    newer = store.insert_release(repository.id, "v2.0.0", day(3), None)
    store.insert_release(repository.id, "v1.0.0", day(1), None)

    assert store.find_latest_release_id(repository.id) == newer.id


def test_latest_release_puts_undated_last(store):
    repository = add_repo(store)
    dated = store.insert_release(repository.id, "v1.0.0", day(1), None)
    store.insert_release(repository.id, "nightly", None, None)

    assert store.find_latest_release_id(repository.id) == dated.id


def test_latest_release_tie_goes_to_later_insert(store):
    repository = add_repo(store)
    store.insert_release(repository.id, "v1.0.0", day(1), None)
    later = store.insert_release(repository.id, "v1.0.0-hotfix", day(1), None)

    assert store.find_latest_release_id(repository.id) == later.id


def test_latest_release_without_releases(store):
    repository = add_repo(store)
    assert store.find_latest_release_id(repository.id) is None
    assert store.find_latest_release(repository.id) is None


def test_find_latest_release_defaults_to_unseen(store):
    repository = add_repo(store)
    store.insert_release(repository.id, "v1.0.0", day(1), None)

    latest, seen = store.find_latest_release(repository.id)
    assert latest.version == "v1.0.0"
    assert seen is False


def test_insert_release_with_seen_status(store):
    repository = add_repo(store)
    inserted = store.insert_release(repository.id, "v1.0.0", day(1), None, with_seen_status=True)
    assert store.get_seen_status(inserted.id) is False


def test_toggle_creates_row_then_flips(store):
    repository = add_repo(store)
    inserted = store.insert_release(repository.id, "v1.0.0", day(1), None)
    assert store.get_seen_status(inserted.id) is None

    assert store.toggle_seen_status(inserted.id) is True
    assert store.toggle_seen_status(inserted.id) is False
    assert store.toggle_seen_status(inserted.id) is True
    assert count(store, SeenStatus.release_id) == 1


def test_toggle_existing_unseen_row(store):
    repository = add_repo(store)
    inserted = store.insert_release(repository.id, "v1.0.0", day(1), None)
    store.insert_seen_status(inserted.id, False)

    assert store.toggle_seen_status(inserted.id) is True
    assert store.get_seen_status(inserted.id) is True


def test_toggle_unknown_release(store):
    with pytest.raises(ReleaseNotFound):
        store.toggle_seen_status(12345)


def test_update_description(store):
    repository = add_repo(store)
    store.update_repository_description(repository.id, None)
    assert store.get_repository(repository.id).description is None


def test_update_description_of_unknown_repository(store):
    with pytest.raises(RepositoryNotFound):
        store.update_repository_description(404, "nothing")


def test_delete_cascades_to_releases_and_seen_status(store):
    repository = add_repo(store)
    kept = add_repo(store, name="gadget")
    first = store.insert_release(repository.id, "v1.0.0", day(1), None, with_seen_status=True)
    store.insert_release(repository.id, "v1.1.0", day(2), None, with_seen_status=True)
    store.toggle_seen_status(first.id)
    store.insert_release(kept.id, "v0.1.0", day(1), None, with_seen_status=True)

    assert store.delete_repository(repository.id) == repository.id

    assert store.get_repository(repository.id) is None
    assert count(store, Release.id) == 1
    assert count(store, SeenStatus.release_id) == 1
    assert store.get_repository(kept.id) is not None


def test_delete_unknown_repository(store):
    assert store.delete_repository(404) is None


def test_create_repository_with_release(store):
    repository, latest = store.create_repository(
        "acme", "widget", "https://github.com/acme/widget", "Widgets", release("v1.0.0"))

    stored_release, seen = latest
    assert stored_release.repository_id == repository.id
    assert stored_release.version == "v1.0.0"
    assert seen is False
    assert store.get_seen_status(stored_release.id) is False


def test_create_repository_without_release(store):
    repository, latest = store.create_repository(
        "acme", "widget", "https://github.com/acme/widget", None, None)
    assert latest is None
    assert store.get_repository(repository.id) is not None
    assert count(store, Release.id) == 0


def test_create_repository_is_all_or_nothing(store):
    broken = ReleaseInfo(version=None)

    with pytest.raises(IntegrityError):
        store.create_repository("acme", "widget", "https://github.com/acme/widget", None, broken)

    assert store.count_repositories() == 0
    assert count(store, Release.id) == 0


def test_ensure_release_inserts_new_version(store):
    repository = add_repo(store)

    stored, seen, created = store.ensure_release(repository.id, release("v1.0.0"))
    assert created is True
    assert seen is False
    assert store.get_seen_status(stored.id) is False


def test_ensure_release_reuses_known_version(store):
    repository = add_repo(store)
    first, _, _ = store.ensure_release(repository.id, release("v1.0.0"))
    store.toggle_seen_status(first.id)

    again, seen, created = store.ensure_release(repository.id, release("v1.0.0", month=6))
    assert created is False
    assert again.id == first.id
    assert seen is True
    assert count(store, Release.id) == 1


def test_ensure_release_recovers_from_concurrent_insert(store, monkeypatch):
    repository = add_repo(store)
    existing = store.insert_release(repository.id, "v1.0.0", day(1), None, with_seen_status=True)
    store.toggle_seen_status(existing.id)

    real_lookup = ReleaseStore._release_with_seen
    lookups = []

    def lookup_that_misses_once(session, repository_id, version):
        lookups.append(version)
        if len(lookups) == 1:
            return None
        return real_lookup(session, repository_id, version)

    monkeypatch.setattr(ReleaseStore, "_release_with_seen", staticmethod(lookup_that_misses_once))

    stored, seen, created = store.ensure_release(repository.id, release("v1.0.0"))

    assert created is False
    assert stored.id == existing.id
    assert seen is True
    assert len(lookups) == 2
    assert count(store, Release.id) == 1


def test_ensure_release_for_removed_repository(store):
    with pytest.raises(RepositoryNotFound):
        store.ensure_release(404, release("v1.0.0"))


def test_list_repositories_with_latest_release(store):
    widget = add_repo(store, name="widget")
    gadget = add_repo(store, name="gadget")
    store.insert_release(widget.id, "v1.0.0", day(1), None, with_seen_status=True)
    newest = store.insert_release(widget.id, "v1.1.0", day(2), None)
    store.toggle_seen_status(newest.id)

    rows = store.list_repositories_with_latest_release()

    assert [repository.id for repository, _ in rows] == [widget.id, gadget.id]
    (_, widget_latest), (_, gadget_latest) = rows
    assert widget_latest[0].version == "v1.1.0"
    assert widget_latest[1] is True
    assert gadget_latest is None


def test_list_without_seen_row_reads_unseen(store):
    repository = add_repo(store)
    store.insert_release(repository.id, "v1.0.0", day(1), None)

    ((_, latest),) = store.list_repositories_with_latest_release()
    assert latest[1] is False


def test_list_empty(store):
    assert store.list_repositories_with_latest_release() == []


def test_release_dates_are_read_back_in_utc(store):
    repository = add_repo(store)
    plus_two = timezone(timedelta(hours=2))
    inserted = store.insert_release(repository.id, "v1.0.0", datetime(2024, 1, 1, 2, 0, tzinfo=plus_two), None)

    expected = datetime(2024, 1, 1, 0, 0, tzinfo=timezone.utc)
    assert inserted.release_date == expected
    assert inserted.release_date.tzinfo == timezone.utc

    stored = store.find_release_by_version(repository.id, "v1.0.0")
    assert stored.release_date == expected
    assert stored.release_date.tzinfo == timezone.utc


def test_naive_release_date_is_stored_as_utc(store):
    repository = add_repo(store)
    store.insert_release(repository.id, "v1.0.0", datetime(2024, 1, 1, 12, 0), None)

    stored = store.find_release_by_version(repository.id, "v1.0.0")
    assert stored.release_date == datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


def test_apply_refresh_inserts_new_version(store):
    repository = add_repo(store)

    latest, created = store.apply_refresh(repository.id, "New description", release("v1.0.0"))

    stored_release, seen = latest
    assert created is True
    assert seen is False
    assert stored_release.version == "v1.0.0"
    assert store.get_seen_status(stored_release.id) is False
    assert store.get_repository(repository.id).description == "New description"


def test_apply_refresh_reuses_known_version(store):
    repository = add_repo(store)
    existing = store.insert_release(repository.id, "v1.0.0", day(1), None, with_seen_status=True)
    store.toggle_seen_status(existing.id)

    latest, created = store.apply_refresh(repository.id, "Widgets", release("v1.0.0"))

    assert created is False
    assert latest[0].id == existing.id
    assert latest[1] is True
    assert count(store, Release.id) == 1


def test_apply_refresh_without_release_keeps_latest(store):
    repository = add_repo(store)
    known = store.insert_release(repository.id, "v1.0.0", day(1), None, with_seen_status=True)

    latest, created = store.apply_refresh(repository.id, None, None)

    assert created is False
    assert latest[0].id == known.id
    assert store.get_repository(repository.id).description is None


def test_apply_refresh_without_any_release(store):
    repository = add_repo(store)
    assert store.apply_refresh(repository.id, "Widgets", None) == (None, False)


def test_apply_refresh_unknown_repository(store):
    with pytest.raises(RepositoryNotFound):
        store.apply_refresh(404, "nothing", release("v1.0.0"))
    assert count(store, Release.id) == 0


def test_apply_refresh_is_all_or_nothing(store, monkeypatch):
    repository = add_repo(store, description="Widgets")

    def failing_insert(session, repository_id, version, release_date, release_notes):
        raise OperationalError("INSERT INTO releases", {}, Exception("disk I/O error"))

    monkeypatch.setattr(ReleaseStore, "_add_release", staticmethod(failing_insert))

    with pytest.raises(OperationalError):
        store.apply_refresh(repository.id, "Changed", release("v2.0.0"))

    assert store.get_repository(repository.id).description == "Widgets"
    assert count(store, Release.id) == 0


def test_apply_refresh_recovers_from_concurrent_insert(store, monkeypatch):
    repository = add_repo(store, description="Widgets")
    existing = store.insert_release(repository.id, "v1.0.0", day(1), None, with_seen_status=True)
    store.toggle_seen_status(existing.id)

    real_lookup = ReleaseStore._release_with_seen
    lookups = []

    def lookup_that_misses_once(session, repository_id, version):
        lookups.append(version)
        if len(lookups) == 1:
            return None
        return real_lookup(session, repository_id, version)

    monkeypatch.setattr(ReleaseStore, "_release_with_seen", staticmethod(lookup_that_misses_once))

    latest, created = store.apply_refresh(repository.id, "Changed", release("v1.0.0"))

    assert created is False
    assert latest[1] is True
    assert latest[0].id == existing.id
    assert store.get_repository(repository.id).description == "Changed"
    assert count(store, Release.id) == 1
