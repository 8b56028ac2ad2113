"""
NCR record stores.

A store hands out immutable NcrRecord snapshots and applies workflow writes with
conditional_update(): the write lands only if the row still has the status and
version the caller read. Otherwise VersionConflict is raised and the caller
decides whether to re-read.
"""
import asyncio
import uuid
from typing import Any, Iterable, Protocol

from sqlalchemy import Update, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from siteqa.core.nonconformance.errors import VersionConflict
from siteqa.core.nonconformance.models import Ncr
from siteqa.core.nonconformance.records import NcrRecord


class NcrStore(Protocol):
    async def load_by_id(self, ncr_id: uuid.UUID) -> NcrRecord | None: ...

    async def conditional_update(
        self,
        ncr_id: uuid.UUID,
        expected_status: str,
        expected_version: int,
        changes: dict[str, Any],
    ) -> NcrRecord: ...


def conditional_update_statement(
    ncr_id: uuid.UUID,
    expected_status: str,
    expected_version: int,
    changes: dict[str, Any],
) -> Update:
    """UPDATE ncrs ... WHERE id, status, version match and the row is live, RETURNING id."""
    return (
        update(Ncr)
        .where(
            Ncr.id == ncr_id,
            Ncr.status == expected_status,
            Ncr.version == expected_version,
            Ncr.is_deleted == False,
        )
        .values(**changes, version=Ncr.version + 1)
        .returning(Ncr.id)
        .execution_options(synchronize_session=False)
    )


class SqlNcrStore:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def load_by_id(self, ncr_id: uuid.UUID) -> NcrRecord | None:
        result = await self.db.execute(
            select(Ncr)
            .where(Ncr.id == ncr_id, Ncr.is_deleted == False)
            .execution_options(populate_existing=True)
        )
        row = result.scalar_one_or_none()
        return NcrRecord.from_row(row) if row else None

    async def conditional_update(
        self,
        ncr_id: uuid.UUID,
        expected_status: str,
        expected_version: int,
        changes: dict[str, Any],
    ) -> NcrRecord:
        result = await self.db.execute(
            conditional_update_statement(ncr_id, expected_status, expected_version, changes)
        )
        if result.scalar_one_or_none() is None:
            raise VersionConflict(ncr_id)
        record = await self.load_by_id(ncr_id)
        if record is None:
            raise VersionConflict(ncr_id)
        return record


class InMemoryNcrStore:
    """Dict-backed store with the same conditional-write contract as SqlNcrStore."""

    def __init__(self, records: Iterable[NcrRecord] = ()):
        self._records: dict[uuid.UUID, NcrRecord] = {r.id: r for r in records}
        self._lock = asyncio.Lock()

    def add(self, record: NcrRecord) -> NcrRecord:
        self._records[record.id] = record
        return record

    def get(self, ncr_id: uuid.UUID) -> NcrRecord | None:
        return self._records.get(ncr_id)

    async def load_by_id(self, ncr_id: uuid.UUID) -> NcrRecord | None:
        return self._records.get(ncr_id)

    async def conditional_update(
        self,
        ncr_id: uuid.UUID,
        expected_status: str,
        expected_version: int,
        changes: dict[str, Any],
    ) -> NcrRecord:
        async with self._lock:
            current = self._records.get(ncr_id)
            if (
                current is None
                or current.status != expected_status
                or current.version != expected_version
            ):
                raise VersionConflict(ncr_id)
            updated = current.with_changes({**changes, "version": current.version + 1})
            self._records[ncr_id] = updated
            return updated
