"""Repository implementations backed by SQLAlchemy sessions."""

from __future__ import annotations

import asyncio
from logging import getLogger
from typing import TYPE_CHECKING

from sqlalchemy import delete, insert, select, update
from sqlalchemy.exc import SQLAlchemyError

from linksync.domain.errors import RepositoryError
from linksync.domain.model import Linkage, LinkageHealth

from .mappings import linkage_table

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from sqlalchemy import Row
    from sqlalchemy.orm import Session

    from linksync.domain.ports.persistence import LinkageRepository, MappingRepository
    from linksync.domain.ports.unit_of_work import LinkageUnitOfWork

log = getLogger(__name__)


def _to_linkage(row: Row[tuple[object, ...]]) -> Linkage:
    data = row._mapping  # noqa: SLF001
    return Linkage(
        primary_id=data["primary_id"],
        secondary_id=data["secondary_id"],
        last_known_count=data["last_known_count"],
        health=LinkageHealth(data["health"]),
        created_at=data["created_at"],
        updated_at=data["updated_at"],
    )


class SqlAlchemyLinkageRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def load_all(self) -> list[Linkage]:
        stmt = select(linkage_table).order_by(linkage_table.c.created_at)
        return [_to_linkage(row) for row in self.session.execute(stmt)]

    def get(self, primary_id: str) -> Linkage | None:
        stmt = select(linkage_table).where(linkage_table.c.primary_id == primary_id)
        row = self.session.execute(stmt).first()
        return _to_linkage(row) if row is not None else None

    def upsert(self, linkage: Linkage) -> None:
        # a re-pointed secondary may still sit on a stale row for another primary
        self.session.execute(
            delete(linkage_table)
            .where(linkage_table.c.secondary_id == linkage.secondary_id)
            .where(linkage_table.c.primary_id != linkage.primary_id)
        )
        values = {
            "secondary_id": linkage.secondary_id,
            "last_known_count": linkage.last_known_count,
            "health": linkage.health,
            "updated_at": linkage.updated_at,
        }
        result = self.session.execute(
            update(linkage_table)
            .where(linkage_table.c.primary_id == linkage.primary_id)
            .values(**values)
        )
        if result.rowcount == 0:
            self.session.execute(
                insert(linkage_table).values(
                    primary_id=linkage.primary_id,
                    created_at=linkage.created_at,
                    **values,
                )
            )

    def delete(self, primary_id: str) -> bool:
        result = self.session.execute(
            delete(linkage_table).where(linkage_table.c.primary_id == primary_id)
        )
        return result.rowcount > 0


class UnitOfWorkMappingRepository:
    """Async ``MappingRepository`` running each call in its own unit of work.

    Work happens in a thread so the event loop never blocks on the database;
    every ``SQLAlchemyError`` surfaces as ``RepositoryError``.
    """

    def __init__(self, uow_factory: Callable[[], LinkageUnitOfWork]) -> None:
        self._uow_factory = uow_factory

    async def load_all(self) -> Sequence[Linkage]:
        return await self._run(lambda repo: list(repo.load_all()), commit=False)

    async def upsert(self, linkage: Linkage) -> None:
        await self._run(lambda repo: repo.upsert(linkage), commit=True)

    async def delete(self, primary_id: str) -> None:
        await self._run(lambda repo: repo.delete(primary_id), commit=True)

    async def _run[T](self, work: Callable[[LinkageRepository], T], *, commit: bool) -> T:
        return await asyncio.to_thread(self._run_sync, work, commit)

    def _run_sync[T](self, work: Callable[[LinkageRepository], T], commit: bool) -> T:  # noqa: FBT001
        try:
            with self._uow_factory() as uow:
                result = work(uow.repositories.linkages)
                if commit:
                    uow.commit()
                return result
        except SQLAlchemyError as exc:
            log.debug("Repository operation failed", exc_info=True)
            raise RepositoryError(str(exc)) from exc


if TYPE_CHECKING:

    def _repository_check(session: Session) -> LinkageRepository:
        return SqlAlchemyLinkageRepository(session)

    def _mapping_check(factory: Callable[[], LinkageUnitOfWork]) -> MappingRepository:
        return UnitOfWorkMappingRepository(factory)
