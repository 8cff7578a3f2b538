"""
Versioned persistence boundary.

Thin wrapper over an AsyncSession for any model with ``id`` and ``version``
columns. The core never writes a mutable record except through
``update_if_version``.
"""
from __future__ import annotations

from typing import Any, Generic, List, Optional, Sequence, Type, TypeVar

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from kartcup.errors import RecordNotFound, VersionConflict

ModelT = TypeVar("ModelT")


class VersionedRepository(Generic[ModelT]):

    def __init__(self, session: AsyncSession, model: Type[ModelT]) -> None:
        self.session = session
        self.model   = model

    async def find_by_id(self, record_id: int) -> Optional[ModelT]:
        result = await self.session.execute(
            select(self.model).where(self.model.id == record_id)
        )
        return result.scalar_one_or_none()

    async def find_many(
        self,
        *criteria: Any,
        order_by: Sequence[Any] = (),
    ) -> List[ModelT]:
        q = select(self.model).where(*criteria)
        if order_by:
            q = q.order_by(*order_by)
        result = await self.session.execute(q)
        return list(result.scalars().all())

    async def current_version(self, record_id: int) -> Optional[int]:
        result = await self.session.execute(
            select(self.model.version).where(self.model.id == record_id)
        )
        return result.scalar_one_or_none()

    async def update_if_version(
        self,
        record_id: int,
        expected_version: int,
        patch: dict[str, Any],
    ) -> int:
        """
        Conditional write: apply ``patch`` and bump ``version`` by one only if
        the stored version still equals ``expected_version``.

        Returns the new version. Raises VersionConflict on a stale version and
        RecordNotFound when the row is gone.
        """
        result = await self.session.execute(
            update(self.model)
            .where(self.model.id == record_id, self.model.version == expected_version)
            .values(**patch, version=self.model.version + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            current = await self.current_version(record_id)
            if current is None:
                raise RecordNotFound(self.model.__name__, record_id)
            raise VersionConflict(record_id, expected_version, current)
        return expected_version + 1

    async def write_derived(self, record_id: int, patch: dict[str, Any]) -> None:
        """
        Overwrite fields computed from other records (ranks, totals). The
        version is left alone so editors of this record are not invalidated.
        """
        await self.session.execute(
            update(self.model)
            .where(self.model.id == record_id)
            .values(**patch)
            .execution_options(synchronize_session=False)
        )
