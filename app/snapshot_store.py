"""Persistence of reconciled snapshots and their page artifacts."""

from __future__ import annotations

import logging
from typing import Iterable

from pydantic import ValidationError
from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .db_models import CollectionPageRecord, SnapshotRecord
from .errors import PersistenceError
from .models import Snapshot
from .services.douban import InterestPage

logger = logging.getLogger(__name__)


class SnapshotStore:
    """Read and write snapshots through an async SQLAlchemy session factory."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def load(self, uid: str) -> Snapshot | None:
        """Return the persisted snapshot for *uid*, if any."""

        try:
            async with self._session_factory() as session:
                record = await session.get(SnapshotRecord, uid)
                payload = record.payload if record is not None else None
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to load snapshot for {uid}") from exc

        if payload is None:
            return None
        try:
            return Snapshot.model_validate(payload)
        except ValidationError as exc:
            raise PersistenceError(f"Stored snapshot for {uid} is unreadable") from exc

    async def save(self, uid: str, snapshot: Snapshot) -> None:
        """Insert or update the snapshot row for *uid*."""

        try:
            async with self._session_factory() as session:
                async with session.begin():
                    await self._write_snapshot(session, uid, snapshot)
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to save snapshot for {uid}") from exc

    async def replace(
        self,
        uid: str,
        snapshot: Snapshot,
        pages: Iterable[InterestPage] = (),
    ) -> None:
        """Atomically swap the snapshot and page artifacts of *uid*."""

        try:
            async with self._session_factory() as session:
                async with session.begin():
                    await self._delete_rows(session, uid)
                    session.add_all(
                        CollectionPageRecord(
                            uid=uid,
                            kind=page.kind,
                            status=page.status,
                            offset=page.start,
                            total=page.total,
                            payload=page.payload,
                            fetched_at=page.fetched_at,
                        )
                        for page in pages
                    )
                    await self._write_snapshot(session, uid, snapshot)
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to replace snapshot for {uid}") from exc
        logger.info("Persisted snapshot for %s", uid)

    async def delete_all(self, uid: str) -> bool:
        """Remove the snapshot and every page artifact of *uid*."""

        try:
            async with self._session_factory() as session:
                async with session.begin():
                    removed = await self._delete_rows(session, uid)
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to delete data for {uid}") from exc
        if removed:
            logger.info("Deleted stored data for %s", uid)
        return removed

    async def list_uids(self) -> list[str]:
        try:
            async with self._session_factory() as session:
                result = await session.scalars(
                    select(SnapshotRecord.uid).order_by(SnapshotRecord.uid)
                )
                return list(result)
        except SQLAlchemyError as exc:
            raise PersistenceError("Failed to list stored users") from exc

    async def count_pages(self, uid: str) -> int:
        try:
            async with self._session_factory() as session:
                result = await session.scalar(
                    select(func.count())
                    .select_from(CollectionPageRecord)
                    .where(CollectionPageRecord.uid == uid)
                )
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to count pages for {uid}") from exc
        return int(result or 0)

    @staticmethod
    async def _write_snapshot(
        session: AsyncSession, uid: str, snapshot: Snapshot
    ) -> None:
        record = await session.get(SnapshotRecord, uid)
        if record is None:
            record = SnapshotRecord(uid=uid)
            session.add(record)
        record.payload = snapshot.to_storage()
        record.movie_count = snapshot.stats.movies
        record.tv_count = snapshot.stats.tv_shows
        record.book_count = snapshot.stats.books
        record.generated_at = snapshot.generated_at

    @staticmethod
    async def _delete_rows(session: AsyncSession, uid: str) -> bool:
        pages = await session.execute(
            delete(CollectionPageRecord).where(CollectionPageRecord.uid == uid)
        )
        snapshots = await session.execute(
            delete(SnapshotRecord).where(SnapshotRecord.uid == uid)
        )
        return bool((pages.rowcount or 0) + (snapshots.rowcount or 0))
