"""SQLAlchemy models for tracked repositories, their releases and seen flags."""
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (Boolean, Column, DateTime, ForeignKey, Integer, String, Text,
                        TypeDecorator, UniqueConstraint, event, false)
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Naive values are taken as UTC; aware ones are converted to UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class UTCDateTime(TypeDecorator):
    """Timestamp stored in UTC and always read back timezone-aware.

    SQLite drops the offset of DateTime(timezone=True) columns, so the value
    is written as naive UTC and UTC is attached again on read.
    """
    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        value = as_utc(value)
        if value is not None and dialect.name == 'sqlite':
            return value.replace(tzinfo=None)
        return value

    def process_result_value(self, value, dialect):
        return as_utc(value)


class Repository(Base):
    __tablename__ = 'repositories'

    id = Column(Integer, primary_key=True)
    owner = Column(String(255), nullable=False)
    name = Column(String(255), nullable=False)
    url = Column(String(512), nullable=False)  # https://github.com/{owner}/{name}, fixed at creation
    description = Column(Text, nullable=True)

    releases = relationship(
        'Release',
        back_populates='repository',
        cascade='all, delete-orphan',
        passive_deletes=True,
    )

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"

    def __repr__(self):
        return f"<Repository(id={self.id}, full_name='{self.full_name}')>"


class Release(Base):
    __tablename__ = 'releases'
    __table_args__ = (
        UniqueConstraint('repository_id', 'version', name='uq_releases_repository_version'),
    )

    id = Column(Integer, primary_key=True)
    repository_id = Column(Integer, ForeignKey('repositories.id', ondelete='CASCADE'), nullable=False, index=True)
    version = Column(String(255), nullable=False)  # upstream tag name
    release_date = Column(UTCDateTime(), nullable=True)
    release_notes = Column(Text, nullable=True)

    repository = relationship('Repository', back_populates='releases')
    seen_status = relationship(
        'SeenStatus',
        back_populates='release',
        uselist=False,
        cascade='all, delete-orphan',
        passive_deletes=True,
    )

    def __repr__(self):
        return f"<Release(id={self.id}, repository_id={self.repository_id}, version='{self.version}')>"


class SeenStatus(Base):
    __tablename__ = 'seen_status'

    release_id = Column(Integer, ForeignKey('releases.id', ondelete='CASCADE'), primary_key=True)
    seen = Column(Boolean, nullable=False, default=False, server_default=false())

    release = relationship('Release', back_populates='seen_status')

    def __repr__(self):
        return f"<SeenStatus(release_id={self.release_id}, seen={self.seen})>"


@event.listens_for(Engine, "connect")
def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    # SQLite ignores ON DELETE CASCADE unless foreign keys are switched on per connection.
    if type(dbapi_connection).__module__.startswith("sqlite3"):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()
