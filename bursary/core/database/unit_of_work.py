"""Explicit transaction boundary for multi-step writes."""

import logging

from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


class UnitOfWork:
    """
    Wraps an AsyncSession so that a sequence of reads and writes is applied
    as one transaction: committed once on a clean exit, rolled back on any
    exception.

    Usage:
        async with UnitOfWork(session) as uow:
            uow.add(row)
            await uow.flush()
    """

    def __init__(self, session: AsyncSession):
        self.session = session
        self._finished = False

    async def __aenter__(self) -> "UnitOfWork":
        self._finished = False
        return self

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        if exc_type is not None:
            logger.warning("Rolling back unit of work: %s", exc_type.__name__)
            await self.rollback()
            return False
        if not self._finished:
            await self.commit()
        return False

    def add(self, instance) -> None:
        self.session.add(instance)

    async def flush(self) -> None:
        await self.session.flush()

    async def commit(self) -> None:
        """Commit; a failed commit is rolled back before the error propagates."""
        try:
            await self.session.commit()
        except Exception:
            logger.warning("Commit failed, rolling back unit of work")
            await self.session.rollback()
            raise
        finally:
            self._finished = True

    async def rollback(self) -> None:
        await self.session.rollback()
        self._finished = True
