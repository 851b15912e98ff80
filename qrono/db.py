"""
Relational store: users, albums, memories, photos and the blob deletion outbox.

Two implementations share the ``DbClient`` interface: an in-memory one for
development and tests, and a SQLAlchemy one for Postgres (or SQLite in tests).
Ownership is checked inside every query, so a row owned by another user looks
exactly like a missing row (``None``).

Each mutating method is one transaction. When a mutation leaves blobs without
an owning row, their locators are written to ``blob_deletions`` in the same
transaction and returned to the caller for purging.
"""

from __future__ import annotations

import itertools
import time
from dataclasses import dataclass, field, replace
from typing import Dict, Iterable, Optional, Protocol, Sequence

from sqlalchemy import (
    Boolean,
    Column,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    create_engine,
    delete,
    event,
    select,
)
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from qrono.errors import Conflict


@dataclass
class UserRecord:
    id: int
    username: str
    password_hash: str
    created_at: float = field(default_factory=lambda: time.time())


@dataclass
class AlbumRecord:
    id: int
    user_id: int
    title: str
    description: Optional[str]
    visible: bool
    cover_image: Optional[str]
    created_at: float = field(default_factory=lambda: time.time())


@dataclass
class PhotoRecord:
    id: int
    memory_id: int
    image: str
    created_at: float = field(default_factory=lambda: time.time())


@dataclass
class MemoryRecord:
    id: int
    album_id: int
    title: str
    diary_entry: Optional[str]
    created_at: float = field(default_factory=lambda: time.time())
    photos: list[PhotoRecord] = field(default_factory=list)


@dataclass
class MemorySummary:
    """A memory as listed inside its album, with its first photo as cover."""

    id: int
    album_id: int
    title: str
    diary_entry: Optional[str]
    created_at: float
    cover_image: Optional[str]


@dataclass
class BlobDeletion:
    id: int
    locator: str
    attempts: int = 0
    last_error: Optional[str] = None
    next_attempt_at: float = field(default_factory=lambda: time.time())
    abandoned_at: Optional[float] = None
    created_at: float = field(default_factory=lambda: time.time())


@dataclass
class AlbumPatch:
    """Partial album update. ``None`` leaves the column unchanged."""

    title: Optional[str] = None
    description: Optional[str] = None
    visible: Optional[bool] = None
    cover_image: Optional[str] = None

    def is_empty(self) -> bool:
        return (
            self.title is None
            and self.description is None
            and self.visible is None
            and self.cover_image is None
        )


class DbClient(Protocol):
    """Interface for database access."""

    def create_user(self, username: str, password_hash: str) -> UserRecord:
        ...

    def get_user(self, user_id: int) -> Optional[UserRecord]:
        ...

    def get_user_by_username(self, username: str) -> Optional[UserRecord]:
        ...

    def create_album(
        self,
        user_id: int,
        title: str,
        description: Optional[str],
        visible: bool,
        cover_image: Optional[str],
    ) -> AlbumRecord:
        ...

    def list_albums(self, user_id: int) -> list[AlbumRecord]:
        ...

    def get_album(self, user_id: int, album_id: int) -> Optional[AlbumRecord]:
        ...

    def update_album(
        self, user_id: int, album_id: int, patch: AlbumPatch
    ) -> Optional[tuple[AlbumRecord, list[BlobDeletion]]]:
        ...

    def delete_album(self, user_id: int, album_id: int) -> Optional[list[BlobDeletion]]:
        ...

    def list_memories(
        self, user_id: int, album_id: int
    ) -> Optional[list[MemorySummary]]:
        ...

    def create_memory(
        self,
        user_id: int,
        album_id: int,
        title: str,
        diary_entry: Optional[str],
        photo_locators: Sequence[str],
    ) -> Optional[MemoryRecord]:
        ...

    def get_memory(self, user_id: int, memory_id: int) -> Optional[MemoryRecord]:
        ...

    def update_memory(
        self,
        user_id: int,
        memory_id: int,
        *,
        title: str,
        diary_entry: Optional[str],
        photo_ids_to_delete: Iterable[int],
        new_photo_locators: Sequence[str],
    ) -> Optional[tuple[MemoryRecord, list[BlobDeletion]]]:
        ...

    def delete_memory(self, user_id: int, memory_id: int) -> Optional[list[BlobDeletion]]:
        ...

    def schedule_blob_deletions(self, locators: Iterable[str]) -> list[BlobDeletion]:
        ...

    def get_blob_deletion(self, deletion_id: int) -> Optional[BlobDeletion]:
        ...

    def claim_due_blob_deletion(
        self, now: float, lease_seconds: float = 60
    ) -> Optional[BlobDeletion]:
        ...

    def complete_blob_deletion(self, deletion_id: int) -> None:
        ...

    def record_blob_deletion_failure(
        self, deletion_id: int, error: str, *, retry_at: float, abandon: bool = False
    ) -> Optional[BlobDeletion]:
        ...

    def list_blob_deletions(self, limit: int = 100) -> list[BlobDeletion]:
        ...


class InMemoryDbClient:
    """Simple in-memory database for development and tests."""

    def __init__(self):
        self.users: Dict[int, UserRecord] = {}
        self.albums: Dict[int, AlbumRecord] = {}
        self.memories: Dict[int, MemoryRecord] = {}
        self.photos: Dict[int, PhotoRecord] = {}
        self.blob_deletions: Dict[int, BlobDeletion] = {}
        self._ids = {
            name: itertools.count(1)
            for name in ("users", "albums", "memories", "photos", "blob_deletions")
        }

    def reset(self) -> None:
        """Clear all stored data (useful in tests). Ids keep counting up."""
        self.users.clear()
        self.albums.clear()
        self.memories.clear()
        self.photos.clear()
        self.blob_deletions.clear()

    def _next_id(self, table: str) -> int:
        return next(self._ids[table])

    # Users

    def create_user(self, username: str, password_hash: str) -> UserRecord:
        if self.get_user_by_username(username):
            raise Conflict("Username already exists")
        user = UserRecord(
            id=self._next_id("users"), username=username, password_hash=password_hash
        )
        self.users[user.id] = user
        return user

    def get_user(self, user_id: int) -> Optional[UserRecord]:
        return self.users.get(user_id)

    def get_user_by_username(self, username: str) -> Optional[UserRecord]:
        for user in self.users.values():
            if user.username == username:
                return user
        return None

    # Albums

    def _owned_album(self, user_id: int, album_id: int) -> Optional[AlbumRecord]:
        album = self.albums.get(album_id)
        if album is None or album.user_id != user_id:
            return None
        return album

    def create_album(
        self,
        user_id: int,
        title: str,
        description: Optional[str],
        visible: bool,
        cover_image: Optional[str],
    ) -> AlbumRecord:
        album = AlbumRecord(
            id=self._next_id("albums"),
            user_id=user_id,
            title=title,
            description=description,
            visible=visible,
            cover_image=cover_image,
        )
        self.albums[album.id] = album
        return replace(album)

    def list_albums(self, user_id: int) -> list[AlbumRecord]:
        owned = [replace(a) for a in self.albums.values() if a.user_id == user_id]
        return sorted(owned, key=lambda a: (a.created_at, a.id), reverse=True)

    def get_album(self, user_id: int, album_id: int) -> Optional[AlbumRecord]:
        album = self._owned_album(user_id, album_id)
        return replace(album) if album else None

    def update_album(
        self, user_id: int, album_id: int, patch: AlbumPatch
    ) -> Optional[tuple[AlbumRecord, list[BlobDeletion]]]:
        album = self._owned_album(user_id, album_id)
        if album is None:
            return None
        orphaned: list[str] = []
        if patch.title is not None:
            album.title = patch.title
        if patch.description is not None:
            album.description = patch.description
        if patch.visible is not None:
            album.visible = patch.visible
        if patch.cover_image is not None:
            if album.cover_image and album.cover_image != patch.cover_image:
                orphaned.append(album.cover_image)
            album.cover_image = patch.cover_image
        return replace(album), self.schedule_blob_deletions(orphaned)

    def delete_album(self, user_id: int, album_id: int) -> Optional[list[BlobDeletion]]:
        album = self._owned_album(user_id, album_id)
        if album is None:
            return None
        orphaned: list[str] = []
        if album.cover_image:
            orphaned.append(album.cover_image)
        memory_ids = [m.id for m in self.memories.values() if m.album_id == album_id]
        for memory_id in memory_ids:
            orphaned.extend(self._drop_memory(memory_id))
        del self.albums[album_id]
        return self.schedule_blob_deletions(orphaned)

    # Memories

    def _owned_memory(self, user_id: int, memory_id: int) -> Optional[MemoryRecord]:
        memory = self.memories.get(memory_id)
        if memory is None or self._owned_album(user_id, memory.album_id) is None:
            return None
        return memory

    def _photos_of(self, memory_id: int) -> list[PhotoRecord]:
        photos = [p for p in self.photos.values() if p.memory_id == memory_id]
        return sorted(photos, key=lambda p: p.id)

    def _with_photos(self, memory: MemoryRecord) -> MemoryRecord:
        return replace(memory, photos=[replace(p) for p in self._photos_of(memory.id)])

    def _add_photos(self, memory_id: int, locators: Sequence[str]) -> None:
        for locator in locators:
            photo = PhotoRecord(
                id=self._next_id("photos"), memory_id=memory_id, image=locator
            )
            self.photos[photo.id] = photo

    def _drop_memory(self, memory_id: int) -> list[str]:
        locators = []
        for photo in self._photos_of(memory_id):
            locators.append(photo.image)
            del self.photos[photo.id]
        del self.memories[memory_id]
        return locators

    def list_memories(
        self, user_id: int, album_id: int
    ) -> Optional[list[MemorySummary]]:
        if self._owned_album(user_id, album_id) is None:
            return None
        memories = sorted(
            (m for m in self.memories.values() if m.album_id == album_id),
            key=lambda m: (m.created_at, m.id),
            reverse=True,
        )
        summaries = []
        for memory in memories:
            photos = self._photos_of(memory.id)
            summaries.append(
                MemorySummary(
                    id=memory.id,
                    album_id=memory.album_id,
                    title=memory.title,
                    diary_entry=memory.diary_entry,
                    created_at=memory.created_at,
                    cover_image=photos[0].image if photos else None,
                )
            )
        return summaries

    def create_memory(
        self,
        user_id: int,
        album_id: int,
        title: str,
        diary_entry: Optional[str],
        photo_locators: Sequence[str],
    ) -> Optional[MemoryRecord]:
        if self._owned_album(user_id, album_id) is None:
            return None
        memory = MemoryRecord(
            id=self._next_id("memories"),
            album_id=album_id,
            title=title,
            diary_entry=diary_entry,
        )
        self.memories[memory.id] = memory
        self._add_photos(memory.id, photo_locators)
        return self._with_photos(memory)

    def get_memory(self, user_id: int, memory_id: int) -> Optional[MemoryRecord]:
        memory = self._owned_memory(user_id, memory_id)
        return self._with_photos(memory) if memory else None

    def update_memory(
        self,
        user_id: int,
        memory_id: int,
        *,
        title: str,
        diary_entry: Optional[str],
        photo_ids_to_delete: Iterable[int],
        new_photo_locators: Sequence[str],
    ) -> Optional[tuple[MemoryRecord, list[BlobDeletion]]]:
        memory = self._owned_memory(user_id, memory_id)
        if memory is None:
            return None
        memory.title = title
        memory.diary_entry = diary_entry
        orphaned = []
        for photo_id in set(photo_ids_to_delete):
            photo = self.photos.get(photo_id)
            if photo is None or photo.memory_id != memory_id:
                continue
            orphaned.append(photo.image)
            del self.photos[photo_id]
        self._add_photos(memory_id, new_photo_locators)
        return self._with_photos(memory), self.schedule_blob_deletions(orphaned)

    def delete_memory(self, user_id: int, memory_id: int) -> Optional[list[BlobDeletion]]:
        if self._owned_memory(user_id, memory_id) is None:
            return None
        return self.schedule_blob_deletions(self._drop_memory(memory_id))

    # Blob deletion outbox

    def schedule_blob_deletions(self, locators: Iterable[str]) -> list[BlobDeletion]:
        scheduled = []
        for locator in locators:
            deletion = BlobDeletion(id=self._next_id("blob_deletions"), locator=locator)
            self.blob_deletions[deletion.id] = deletion
            scheduled.append(replace(deletion))
        return scheduled

    def get_blob_deletion(self, deletion_id: int) -> Optional[BlobDeletion]:
        deletion = self.blob_deletions.get(deletion_id)
        return replace(deletion) if deletion else None

    def claim_due_blob_deletion(
        self, now: float, lease_seconds: float = 60
    ) -> Optional[BlobDeletion]:
        due = [
            d
            for d in self.blob_deletions.values()
            if d.abandoned_at is None and d.next_attempt_at <= now
        ]
        if not due:
            return None
        deletion = min(due, key=lambda d: (d.next_attempt_at, d.id))
        deletion.next_attempt_at = now + lease_seconds
        return replace(deletion)

    def complete_blob_deletion(self, deletion_id: int) -> None:
        self.blob_deletions.pop(deletion_id, None)

    def record_blob_deletion_failure(
        self, deletion_id: int, error: str, *, retry_at: float, abandon: bool = False
    ) -> Optional[BlobDeletion]:
        deletion = self.blob_deletions.get(deletion_id)
        if deletion is None:
            return None
        deletion.attempts += 1
        deletion.last_error = error
        if abandon:
            deletion.abandoned_at = time.time()
        else:
            deletion.next_attempt_at = retry_at
        return replace(deletion)

    def list_blob_deletions(self, limit: int = 100) -> list[BlobDeletion]:
        ordered = sorted(self.blob_deletions.values(), key=lambda d: d.id)
        return [replace(d) for d in ordered[:limit]]


class SqlDbClient:
    """
    SQLAlchemy-backed implementation. Accepts any SQLAlchemy URL (e.g., Postgres or SQLite for tests).
    """

    def __init__(self, database_url: str):
        if not database_url:
            raise ValueError("DATABASE_URL is required for SqlDbClient")
        engine_kwargs: dict = {"future": True, "pool_pre_ping": True}
        if database_url.startswith("sqlite"):
            engine_kwargs["connect_args"] = {"check_same_thread": False}
            if database_url.endswith(":memory:"):
                # One shared connection, so every thread sees the same database.
                engine_kwargs["poolclass"] = StaticPool
        else:
            engine_kwargs["pool_recycle"] = 1800
        self.engine = create_engine(database_url, **engine_kwargs)
        if self.engine.dialect.name == "sqlite":
            event.listen(self.engine, "connect", _enable_sqlite_foreign_keys)
        self.Session = sessionmaker(
            bind=self.engine, class_=Session, expire_on_commit=False, future=True
        )
        Base.metadata.create_all(self.engine)

    # Users

    def create_user(self, username: str, password_hash: str) -> UserRecord:
        with self.Session() as session:
            row = UserRow(
                username=username, password_hash=password_hash, created_at=time.time()
            )
            session.add(row)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise Conflict("Username already exists") from exc
            return _user_record(row)

    def get_user(self, user_id: int) -> Optional[UserRecord]:
        with self.Session() as session:
            row = session.get(UserRow, user_id)
            return _user_record(row) if row else None

    def get_user_by_username(self, username: str) -> Optional[UserRecord]:
        with self.Session() as session:
            row = session.execute(
                select(UserRow).where(UserRow.username == username)
            ).scalar_one_or_none()
            return _user_record(row) if row else None

    # Albums

    @staticmethod
    def _owned_album(session: Session, user_id: int, album_id: int) -> Optional["AlbumRow"]:
        return session.execute(
            select(AlbumRow).where(AlbumRow.id == album_id, AlbumRow.user_id == user_id)
        ).scalar_one_or_none()

    def create_album(
        self,
        user_id: int,
        title: str,
        description: Optional[str],
        visible: bool,
        cover_image: Optional[str],
    ) -> AlbumRecord:
        with self.Session() as session:
            row = AlbumRow(
                user_id=user_id,
                title=title,
                description=description,
                visible=visible,
                cover_image=cover_image,
                created_at=time.time(),
            )
            session.add(row)
            session.commit()
            return _album_record(row)

    def list_albums(self, user_id: int) -> list[AlbumRecord]:
        with self.Session() as session:
            rows = session.execute(
                select(AlbumRow)
                .where(AlbumRow.user_id == user_id)
                .order_by(AlbumRow.created_at.desc(), AlbumRow.id.desc())
            ).scalars()
            return [_album_record(row) for row in rows]

    def get_album(self, user_id: int, album_id: int) -> Optional[AlbumRecord]:
        with self.Session() as session:
            row = self._owned_album(session, user_id, album_id)
            return _album_record(row) if row else None

    def update_album(
        self, user_id: int, album_id: int, patch: AlbumPatch
    ) -> Optional[tuple[AlbumRecord, list[BlobDeletion]]]:
        with self.Session() as session:
            row = self._owned_album(session, user_id, album_id)
            if row is None:
                return None
            orphaned: list[str] = []
            if patch.title is not None:
                row.title = patch.title
            if patch.description is not None:
                row.description = patch.description
            if patch.visible is not None:
                row.visible = patch.visible
            if patch.cover_image is not None:
                if row.cover_image and row.cover_image != patch.cover_image:
                    orphaned.append(row.cover_image)
                row.cover_image = patch.cover_image
            deletion_rows = self._add_blob_deletions(session, orphaned)
            session.commit()
            return _album_record(row), [_deletion_record(d) for d in deletion_rows]

    def delete_album(self, user_id: int, album_id: int) -> Optional[list[BlobDeletion]]:
        with self.Session() as session:
            row = self._owned_album(session, user_id, album_id)
            if row is None:
                return None
            orphaned = [row.cover_image] if row.cover_image else []
            orphaned.extend(
                session.execute(
                    select(PhotoRow.image)
                    .join(MemoryRow, PhotoRow.memory_id == MemoryRow.id)
                    .where(MemoryRow.album_id == album_id)
                    .order_by(PhotoRow.id)
                ).scalars()
            )
            # Memories and photos go with it through ON DELETE CASCADE.
            session.execute(delete(AlbumRow).where(AlbumRow.id == album_id))
            deletion_rows = self._add_blob_deletions(session, orphaned)
            session.commit()
            return [_deletion_record(d) for d in deletion_rows]

    # Memories

    @staticmethod
    def _owned_memory(session: Session, user_id: int, memory_id: int) -> Optional["MemoryRow"]:
        return session.execute(
            select(MemoryRow)
            .join(AlbumRow, MemoryRow.album_id == AlbumRow.id)
            .where(MemoryRow.id == memory_id, AlbumRow.user_id == user_id)
        ).scalar_one_or_none()

    @staticmethod
    def _photo_rows(session: Session, memory_id: int) -> list["PhotoRow"]:
        return list(
            session.execute(
                select(PhotoRow)
                .where(PhotoRow.memory_id == memory_id)
                .order_by(PhotoRow.id)
            ).scalars()
        )

    def _memory_record(self, session: Session, row: "MemoryRow") -> MemoryRecord:
        record = MemoryRecord(
            id=row.id,
            album_id=row.album_id,
            title=row.title,
            diary_entry=row.diary_entry,
            created_at=row.created_at,
        )
        record.photos = [_photo_record(p) for p in self._photo_rows(session, row.id)]
        return record

    def list_memories(
        self, user_id: int, album_id: int
    ) -> Optional[list[MemorySummary]]:
        with self.Session() as session:
            if self._owned_album(session, user_id, album_id) is None:
                return None
            rows = list(
                session.execute(
                    select(MemoryRow)
                    .where(MemoryRow.album_id == album_id)
                    .order_by(MemoryRow.created_at.desc(), MemoryRow.id.desc())
                ).scalars()
            )
            covers: Dict[int, str] = {}
            if rows:
                photos = session.execute(
                    select(PhotoRow.memory_id, PhotoRow.image)
                    .where(PhotoRow.memory_id.in_([r.id for r in rows]))
                    .order_by(PhotoRow.id)
                )
                for memory_id, image in photos:
                    covers.setdefault(memory_id, image)
            return [
                MemorySummary(
                    id=row.id,
                    album_id=row.album_id,
                    title=row.title,
                    diary_entry=row.diary_entry,
                    created_at=row.created_at,
                    cover_image=covers.get(row.id),
                )
                for row in rows
            ]

    def create_memory(
        self,
        user_id: int,
        album_id: int,
        title: str,
        diary_entry: Optional[str],
        photo_locators: Sequence[str],
    ) -> Optional[MemoryRecord]:
        with self.Session() as session:
            if self._owned_album(session, user_id, album_id) is None:
                return None
            now = time.time()
            row = MemoryRow(
                album_id=album_id, title=title, diary_entry=diary_entry, created_at=now
            )
            session.add(row)
            session.flush()
            for locator in photo_locators:
                session.add(PhotoRow(memory_id=row.id, image=locator, created_at=now))
            session.commit()
            return self._memory_record(session, row)

    def get_memory(self, user_id: int, memory_id: int) -> Optional[MemoryRecord]:
        with self.Session() as session:
            row = self._owned_memory(session, user_id, memory_id)
            return self._memory_record(session, row) if row else None

    def update_memory(
        self,
        user_id: int,
        memory_id: int,
        *,
        title: str,
        diary_entry: Optional[str],
        photo_ids_to_delete: Iterable[int],
        new_photo_locators: Sequence[str],
    ) -> Optional[tuple[MemoryRecord, list[BlobDeletion]]]:
        with self.Session() as session:
            row = self._owned_memory(session, user_id, memory_id)
            if row is None:
                return None
            row.title = title
            row.diary_entry = diary_entry
            doomed_ids = set(photo_ids_to_delete)
            orphaned: list[str] = []
            if doomed_ids:
                doomed = list(
                    session.execute(
                        select(PhotoRow)
                        .where(
                            PhotoRow.memory_id == memory_id,
                            PhotoRow.id.in_(doomed_ids),
                        )
                        .order_by(PhotoRow.id)
                    ).scalars()
                )
                for photo in doomed:
                    orphaned.append(photo.image)
                    session.delete(photo)
            now = time.time()
            for locator in new_photo_locators:
                session.add(PhotoRow(memory_id=memory_id, image=locator, created_at=now))
            deletion_rows = self._add_blob_deletions(session, orphaned)
            session.commit()
            return (
                self._memory_record(session, row),
                [_deletion_record(d) for d in deletion_rows],
            )

    def delete_memory(self, user_id: int, memory_id: int) -> Optional[list[BlobDeletion]]:
        with self.Session() as session:
            row = self._owned_memory(session, user_id, memory_id)
            if row is None:
                return None
            orphaned = [p.image for p in self._photo_rows(session, memory_id)]
            session.execute(delete(MemoryRow).where(MemoryRow.id == memory_id))
            deletion_rows = self._add_blob_deletions(session, orphaned)
            session.commit()
            return [_deletion_record(d) for d in deletion_rows]

    # Blob deletion outbox

    @staticmethod
    def _add_blob_deletions(
        session: Session, locators: Iterable[str]
    ) -> list["BlobDeletionRow"]:
        now = time.time()
        rows = [
            BlobDeletionRow(
                locator=locator, attempts=0, next_attempt_at=now, created_at=now
            )
            for locator in locators
        ]
        session.add_all(rows)
        if rows:
            session.flush()
        return rows

    def schedule_blob_deletions(self, locators: Iterable[str]) -> list[BlobDeletion]:
        with self.Session() as session:
            rows = self._add_blob_deletions(session, locators)
            session.commit()
            return [_deletion_record(r) for r in rows]

    def get_blob_deletion(self, deletion_id: int) -> Optional[BlobDeletion]:
        with self.Session() as session:
            row = session.get(BlobDeletionRow, deletion_id)
            return _deletion_record(row) if row else None

    def claim_due_blob_deletion(
        self, now: float, lease_seconds: float = 60
    ) -> Optional[BlobDeletion]:
        with self.Session() as session:
            stmt = (
                select(BlobDeletionRow)
                .where(
                    BlobDeletionRow.abandoned_at.is_(None),
                    BlobDeletionRow.next_attempt_at <= now,
                )
                .order_by(BlobDeletionRow.next_attempt_at.asc(), BlobDeletionRow.id.asc())
                .limit(1)
                .with_for_update(skip_locked=True)
            )
            row = session.execute(stmt).scalar_one_or_none()
            if not row:
                return None
            row.next_attempt_at = now + lease_seconds
            session.commit()
            return _deletion_record(row)

    def complete_blob_deletion(self, deletion_id: int) -> None:
        with self.Session() as session:
            session.execute(
                delete(BlobDeletionRow).where(BlobDeletionRow.id == deletion_id)
            )
            session.commit()

    def record_blob_deletion_failure(
        self, deletion_id: int, error: str, *, retry_at: float, abandon: bool = False
    ) -> Optional[BlobDeletion]:
        with self.Session() as session:
            row = session.get(BlobDeletionRow, deletion_id)
            if not row:
                return None
            row.attempts += 1
            row.last_error = error
            if abandon:
                row.abandoned_at = time.time()
            else:
                row.next_attempt_at = retry_at
            session.commit()
            return _deletion_record(row)

    def list_blob_deletions(self, limit: int = 100) -> list[BlobDeletion]:
        with self.Session() as session:
            rows = session.execute(
                select(BlobDeletionRow).order_by(BlobDeletionRow.id).limit(limit)
            ).scalars()
            return [_deletion_record(r) for r in rows]


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def _user_record(row: "UserRow") -> UserRecord:
    return UserRecord(
        id=row.id,
        username=row.username,
        password_hash=row.password_hash,
        created_at=row.created_at,
    )


def _album_record(row: "AlbumRow") -> AlbumRecord:
    return AlbumRecord(
        id=row.id,
        user_id=row.user_id,
        title=row.title,
        description=row.description,
        visible=row.visible,
        cover_image=row.cover_image,
        created_at=row.created_at,
    )


def _photo_record(row: "PhotoRow") -> PhotoRecord:
    return PhotoRecord(
        id=row.id, memory_id=row.memory_id, image=row.image, created_at=row.created_at
    )


def _deletion_record(row: "BlobDeletionRow") -> BlobDeletion:
    return BlobDeletion(
        id=row.id,
        locator=row.locator,
        attempts=row.attempts,
        last_error=row.last_error,
        next_attempt_at=row.next_attempt_at,
        abandoned_at=row.abandoned_at,
        created_at=row.created_at,
    )


Base = declarative_base()


# sqlite_autoincrement keeps SQLite from handing out the id of a deleted row again.
class UserRow(Base):
    __tablename__ = "users"
    __table_args__ = {"sqlite_autoincrement": True}

    id = Column(Integer, primary_key=True, autoincrement=True)
    username = Column(String, nullable=False, unique=True, index=True)
    password_hash = Column(String, nullable=False)
    created_at = Column(Float, nullable=False)


class AlbumRow(Base):
    __tablename__ = "albums"
    __table_args__ = {"sqlite_autoincrement": True}

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    visible = Column(Boolean, nullable=False, default=False)
    cover_image = Column(String, nullable=True)
    created_at = Column(Float, nullable=False, index=True)


class MemoryRow(Base):
    __tablename__ = "memories"
    __table_args__ = {"sqlite_autoincrement": True}

    id = Column(Integer, primary_key=True, autoincrement=True)
    album_id = Column(
        Integer, ForeignKey("albums.id", ondelete="CASCADE"), nullable=False, index=True
    )
    title = Column(String, nullable=False)
    diary_entry = Column(Text, nullable=True)
    created_at = Column(Float, nullable=False)


class PhotoRow(Base):
    __tablename__ = "photos"
    __table_args__ = {"sqlite_autoincrement": True}

    id = Column(Integer, primary_key=True, autoincrement=True)
    memory_id = Column(
        Integer, ForeignKey("memories.id", ondelete="CASCADE"), nullable=False, index=True
    )
    image = Column(String, nullable=False)
    created_at = Column(Float, nullable=False)


class BlobDeletionRow(Base):
    __tablename__ = "blob_deletions"
    __table_args__ = {"sqlite_autoincrement": True}

    id = Column(Integer, primary_key=True, autoincrement=True)
    locator = Column(String, nullable=False)
    attempts = Column(Integer, nullable=False, default=0)
    last_error = Column(Text, nullable=True)
    next_attempt_at = Column(Float, nullable=False, index=True)
    abandoned_at = Column(Float, nullable=True)
    created_at = Column(Float, nullable=False)
