"""Persistence for tracked repositories, releases and seen flags."""
from contextlib import contextmanager
from datetime import datetime
from typing import Iterator, List, Optional, Tuple

from sqlalchemy import and_, case, create_engine, func, not_, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from common.logging import LoggingManager
from releasetracker.exceptions import ReleaseNotFound, RepositoryNotFound
from releasetracker.github.models import ReleaseInfo
from releasetracker.models.tracking import Base, Release, Repository, SeenStatus, as_utc

logger = LoggingManager.get_logger('app.store')

ReleaseWithSeen = Tuple[Release, bool]


def resolve_seen(seen: Optional[bool]) -> bool:
    """Read-side value of a seen flag.

    A release without a SeenStatus row counts as unseen. This only applies to
    reads; toggle_seen_status treats a missing row as "unseen" too, so the
    first toggle always lands on True.
    """
    return bool(seen) if seen is not None else False


def _latest_first():
    # Newest release_date first, undated releases last, later inserts win ties.
    return (
        case((Release.release_date.is_(None), 1), else_=0),
        Release.release_date.desc(),
        Release.id.desc(),
    )


class ReleaseStore:
    """SQLAlchemy-backed store.

    The engine (and its connection pool) is shared by everything using this
    store; each operation checks out its own session and releases it before
    returning. Operations that touch more than one table run in a single
    transaction.
    """

    def __init__(self, db_url: Optional[str] = None, engine: Optional[Engine] = None):
        if engine is None:
            if not db_url:
                raise ValueError("Either db_url or engine is required")
            engine = create_engine(db_url)
        self.engine = engine
        self.Session = sessionmaker(bind=self.engine, expire_on_commit=False)

    def create_schema(self) -> None:
        """Create the tables if they don't exist. Deployed databases use the migrations instead."""
        Base.metadata.create_all(self.engine)
        logger.debug("Database schema ensured")

    def dispose(self) -> None:
        self.engine.dispose()

    @contextmanager
    def session_scope(self) -> Iterator[Session]:
        session = self.Session()
        try:
            yield session
            session.commit()
        except Exception as e:
            session.rollback()
            if isinstance(e, SQLAlchemyError) and not isinstance(e, IntegrityError):
                logger.error(f"Database error, transaction rolled back: {e}")
            raise
        finally:
            session.close()

    def ping(self) -> bool:
        with self.session_scope() as session:
            session.execute(text("SELECT 1"))
        return True

    # -- reads ---------------------------------------------------------------

    def get_repository(self, repository_id: int) -> Optional[Repository]:
        with self.session_scope() as session:
            return session.get(Repository, repository_id)

    def count_repositories(self) -> int:
        with self.session_scope() as session:
            return session.query(func.count(Repository.id)).scalar()

    def list_repositories_with_latest_release(self) -> List[Tuple[Repository, Optional[ReleaseWithSeen]]]:
        """Every repository with its latest release (if any) and that release's seen flag."""
        with self.session_scope() as session:
            ranked = (
                session.query(
                    Release.id.label('release_id'),
                    Release.repository_id.label('repository_id'),
                    func.row_number().over(
                        partition_by=Release.repository_id,
                        order_by=list(_latest_first()),
                    ).label('position'),
                )
                .subquery()
            )
            rows = (
                session.query(Repository, Release, SeenStatus.seen)
                .outerjoin(ranked, and_(ranked.c.repository_id == Repository.id, ranked.c.position == 1))
                .outerjoin(Release, Release.id == ranked.c.release_id)
                .outerjoin(SeenStatus, SeenStatus.release_id == Release.id)
                .order_by(Repository.id)
                .all()
            )
            result = []
            for repository, release, seen in rows:
                latest = (release, resolve_seen(seen)) if release is not None else None
                result.append((repository, latest))
            return result

    def find_release_by_version(self, repository_id: int, version: str) -> Optional[Release]:
        with self.session_scope() as session:
            return (
                session.query(Release)
                .filter(Release.repository_id == repository_id, Release.version == version)
                .one_or_none()
            )

    def find_latest_release_id(self, repository_id: int) -> Optional[int]:
        with self.session_scope() as session:
            row = (
                session.query(Release.id)
                .filter(Release.repository_id == repository_id)
                .order_by(*_latest_first())
                .first()
            )
            return row[0] if row else None

    def find_latest_release(self, repository_id: int) -> Optional[ReleaseWithSeen]:
        with self.session_scope() as session:
            return self._latest_with_seen(session, repository_id)

    def get_seen_status(self, release_id: int) -> Optional[bool]:
        with self.session_scope() as session:
            return (
                session.query(SeenStatus.seen)
                .filter(SeenStatus.release_id == release_id)
                .scalar()
            )

    # -- writes --------------------------------------------------------------

    def insert_repository(self, owner: str, name: str, url: str, description: Optional[str]) -> Repository:
        with self.session_scope() as session:
            repository = Repository(owner=owner, name=name, url=url, description=description)
            session.add(repository)
            session.flush()
            logger.debug(f"Inserted repository {repository.id} ({owner}/{name})")
            return repository

    def insert_release(self, repository_id: int, version: str, release_date: Optional[datetime],
                       release_notes: Optional[str], with_seen_status: bool = False) -> Release:
        """Insert a release row.

        No dedup check happens here; a duplicate (repository_id, version)
        raises IntegrityError. With ``with_seen_status`` the unseen
        SeenStatus row is written in the same transaction.
        """
        with self.session_scope() as session:
            release = self._add_release(session, repository_id, version, release_date, release_notes)
            if with_seen_status:
                session.add(SeenStatus(release_id=release.id, seen=False))
                session.flush()
            return release

    def insert_seen_status(self, release_id: int, seen: bool) -> None:
        with self.session_scope() as session:
            session.add(SeenStatus(release_id=release_id, seen=seen))

    def toggle_seen_status(self, release_id: int) -> bool:
        """Flip the seen flag and return the new value.

        A release with no SeenStatus row is treated as unseen, so the row is
        created with seen=True. If another caller creates the row first, the
        flip is applied to theirs.

        Raises:
            ReleaseNotFound: the release no longer exists.
        """
        try:
            with self.session_scope() as session:
                new_value = self._flip_seen(session, release_id)
                if new_value is None:
                    session.add(SeenStatus(release_id=release_id, seen=True))
                    session.flush()
                    new_value = True
                return new_value
        except IntegrityError:
            logger.debug(f"SeenStatus for release {release_id} appeared concurrently; flipping it instead")

        with self.session_scope() as session:
            new_value = self._flip_seen(session, release_id)
            if new_value is None:
                raise ReleaseNotFound(release_id)
            return new_value

    def update_repository_description(self, repository_id: int, description: Optional[str]) -> None:
        with self.session_scope() as session:
            self._set_description(session, repository_id, description)

    def delete_repository(self, repository_id: int) -> Optional[int]:
        """Delete a repository; releases and seen flags go with it via ON DELETE CASCADE."""
        with self.session_scope() as session:
            deleted = (
                session.query(Repository)
                .filter(Repository.id == repository_id)
                .delete(synchronize_session=False)
            )
        if not deleted:
            return None
        logger.debug(f"Deleted repository {repository_id}")
        return repository_id

    # -- composite writes ----------------------------------------------------

    def create_repository(self, owner: str, name: str, url: str, description: Optional[str],
                          release_info: Optional[ReleaseInfo]) -> Tuple[Repository, Optional[ReleaseWithSeen]]:
        """Insert a repository and, if given, its first release as unseen. All or nothing."""
        with self.session_scope() as session:
            repository = Repository(owner=owner, name=name, url=url, description=description)
            session.add(repository)
            session.flush()

            latest = None
            if release_info is not None:
                release = self._add_release(session, repository.id, release_info.version,
                                            release_info.release_date, release_info.release_notes)
                session.add(SeenStatus(release_id=release.id, seen=False))
                session.flush()
                latest = (release, False)
            return repository, latest

    def ensure_release(self, repository_id: int, release_info: ReleaseInfo) -> Tuple[Release, bool, bool]:
        """Find or create the release for ``release_info.version``.

        Returns (release, seen, created). An existing release is returned with
        its seen flag untouched. A new one is stored with seen=False. When a
        concurrent caller inserts the same version first, the unique
        constraint rejects this insert and their row is returned instead.

        Raises:
            RepositoryNotFound: the repository was removed meanwhile.
        """
        try:
            with self.session_scope() as session:
                found = self._release_with_seen(session, repository_id, release_info.version)
                if found is not None:
                    return found[0], found[1], False
                release = self._add_release(session, repository_id, release_info.version,
                                            release_info.release_date, release_info.release_notes)
                session.add(SeenStatus(release_id=release.id, seen=False))
                session.flush()
                return release, False, True
        except IntegrityError:
            logger.info(
                f"Release {release_info.version} of repository {repository_id} was stored concurrently; reusing it")

        with self.session_scope() as session:
            found = self._release_with_seen(session, repository_id, release_info.version)
            if found is None:
                raise RepositoryNotFound(repository_id)
            return found[0], found[1], False

    def apply_refresh(self, repository_id: int, description: Optional[str],
                      release_info: Optional[ReleaseInfo]) -> Tuple[Optional[ReleaseWithSeen], bool]:
        """Store the result of a refresh in one transaction.

        Overwrites the description and reconciles ``release_info`` the way
        ensure_release does. Without ``release_info`` stored releases are left
        alone and the latest known one is returned. If the release insert loses
        a race on the unique constraint, the whole refresh is rolled back and
        applied again, reusing the concurrently stored row.

        Returns:
            ((release, seen) or None, created)

        Raises:
            RepositoryNotFound: the repository does not exist (anymore).
        """
        try:
            with self.session_scope() as session:
                self._set_description(session, repository_id, description)
                if release_info is None:
                    return self._latest_with_seen(session, repository_id), False
                found = self._release_with_seen(session, repository_id, release_info.version)
                if found is not None:
                    return found, False
                release = self._add_release(session, repository_id, release_info.version,
                                            release_info.release_date, release_info.release_notes)
                session.add(SeenStatus(release_id=release.id, seen=False))
                session.flush()
                return (release, False), True
        except IntegrityError:
            logger.info(
                f"Release {release_info.version} of repository {repository_id} was stored concurrently; reusing it")

        with self.session_scope() as session:
            self._set_description(session, repository_id, description)
            found = self._release_with_seen(session, repository_id, release_info.version)
            if found is None:
                raise RepositoryNotFound(repository_id)
            return found, False

    # -- helpers -------------------------------------------------------------

    @staticmethod
    def _set_description(session: Session, repository_id: int, description: Optional[str]) -> None:
        updated = (
            session.query(Repository)
            .filter(Repository.id == repository_id)
            .update({Repository.description: description}, synchronize_session=False)
        )
        if not updated:
            raise RepositoryNotFound(repository_id)

    @staticmethod
    def _latest_with_seen(session: Session, repository_id: int) -> Optional[ReleaseWithSeen]:
        row = (
            session.query(Release, SeenStatus.seen)
            .outerjoin(SeenStatus, SeenStatus.release_id == Release.id)
            .filter(Release.repository_id == repository_id)
            .order_by(*_latest_first())
            .first()
        )
        if row is None:
            return None
        release, seen = row
        return release, resolve_seen(seen)

    @staticmethod
    def _add_release(session: Session, repository_id: int, version: str,
                     release_date: Optional[datetime], release_notes: Optional[str]) -> Release:
        release = Release(
            repository_id=repository_id,
            version=version,
            release_date=as_utc(release_date),
            release_notes=release_notes,
        )
        session.add(release)
        session.flush()
        logger.debug(f"Inserted release {release.id} ({version}) for repository {repository_id}")
        return release

    @staticmethod
    def _release_with_seen(session: Session, repository_id: int, version: str) -> Optional[ReleaseWithSeen]:
        row = (
            session.query(Release, SeenStatus.seen)
            .outerjoin(SeenStatus, SeenStatus.release_id == Release.id)
            .filter(Release.repository_id == repository_id, Release.version == version)
            .one_or_none()
        )
        if row is None:
            return None
        release, seen = row
        return release, resolve_seen(seen)

    @staticmethod
    def _flip_seen(session: Session, release_id: int) -> Optional[bool]:
        updated = (
            session.query(SeenStatus)
            .filter(SeenStatus.release_id == release_id)
            .update({SeenStatus.seen: not_(SeenStatus.seen)}, synchronize_session=False)
        )
        if not updated:
            return None
        return session.query(SeenStatus.seen).filter(SeenStatus.release_id == release_id).scalar()
