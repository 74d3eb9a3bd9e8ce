from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Protocol

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker
from sqlmodel import SQLModel, select

from packages.db.models import CountedTicketTable, CustomerTable
from supporthub.core.retry import RetryPolicy

from .models import Customer

logger = logging.getLogger(__name__)


class CustomerNotFoundError(LookupError):
    """Raised when an operation targets an unknown customer external id."""


class StaleCounterError(RuntimeError):
    """Raised when a concurrent writer changed the counter between read and write."""


class CustomerCounterStore(Protocol):
    """Operations the ticket saga needs from the customer side."""

    async def exists_by_external_id(self, external_id: str) -> bool:
        ...

    async def increment_open_ticket_count(self, external_id: str, *, ticket_id: str | None = None) -> int:
        ...


class CustomerRepository:
    """Repository for the `customers` table and its counted-ticket ledger."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        engine: AsyncEngine | None = None,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._engine: AsyncEngine | None = engine
        self._retry_policy = retry_policy or RetryPolicy()

    async def ensure_schema(self) -> None:
        if self._engine is None:
            raise RuntimeError("Session factory is not bound to an async engine")
        async with self._engine.begin() as connection:
            await connection.run_sync(SQLModel.metadata.create_all)

    async def create_customer(self, *, external_id: str, name: str, email: str) -> Customer:
        now = datetime.now(timezone.utc)
        row = CustomerTable(
            external_id=external_id,
            name=name,
            email=email,
            open_ticket_count=0,
            created_at=now,
            updated_at=now,
        )
        async with self._session_factory() as session:
            session.add(row)
            await session.commit()
            await session.refresh(row)
            return self._table_to_customer(row)

    async def find_by_external_id(self, external_id: str) -> Customer | None:
        async with self._session_factory() as session:
            row = await self._get_row(session, external_id)
            if row is None:
                return None
            return self._table_to_customer(row)

    async def exists_by_external_id(self, external_id: str) -> bool:
        return await self.find_by_external_id(external_id) is not None

    async def increment_open_ticket_count(self, external_id: str, *, ticket_id: str | None = None) -> int:
        """Add one to the customer's open ticket counter and return the new value.

        When ``ticket_id`` is given the increment is recorded in the
        counted-ticket ledger within the same transaction, and a repeated
        call for the same ticket leaves the counter untouched.

        Transient failures, including lost optimistic updates, are retried
        according to the configured policy. A missing customer is not.
        """

        async for attempt in self._retry_policy.retrying(give_up_on=(CustomerNotFoundError,)):
            with attempt:
                return await self._increment_once(external_id, ticket_id)
        raise RuntimeError("retry loop exited without a result")  # pragma: no cover

    async def _increment_once(self, external_id: str, ticket_id: str | None) -> int:
        async with self._session_factory() as session:
            async with session.begin():
                row = await self._get_row(session, external_id)
                if row is None:
                    raise CustomerNotFoundError(f"Customer not found: {external_id}")

                current = row.open_ticket_count
                if ticket_id is not None:
                    counted = await session.get(CountedTicketTable, ticket_id)
                    if counted is not None:
                        logger.info(
                            "Ticket %s already counted for customer %s; counter left at %d",
                            ticket_id,
                            external_id,
                            current,
                        )
                        return current
                    session.add(CountedTicketTable(ticket_id=ticket_id, customer_external_id=external_id))

                result = await session.execute(
                    update(CustomerTable)
                    .where(CustomerTable.external_id == external_id)
                    .where(CustomerTable.open_ticket_count == current)
                    .values(open_ticket_count=current + 1, updated_at=datetime.now(timezone.utc))
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    raise StaleCounterError(f"Counter for customer {external_id} changed concurrently")

        logger.debug("Customer %s open ticket count is now %d", external_id, current + 1)
        return current + 1

    @staticmethod
    async def _get_row(session: AsyncSession, external_id: str) -> CustomerTable | None:
        result = await session.execute(select(CustomerTable).where(CustomerTable.external_id == external_id))
        return result.scalars().first()

    @staticmethod
    def _table_to_customer(row: CustomerTable) -> Customer:
        return Customer(
            external_id=row.external_id,
            name=row.name,
            email=row.email,
            open_ticket_count=row.open_ticket_count,
            created_at=_ensure_datetime(row.created_at),
            updated_at=_ensure_datetime(row.updated_at),
        )


def _ensure_datetime(value: datetime | None) -> datetime:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value
    raise TypeError("Expected datetime value from database")
