from __future__ import annotations

import json
import uuid
from datetime import datetime
from typing import Any, Mapping, Protocol, Sequence

import asyncpg

from .models import SyncStatus, Ticket, TicketPriority, TicketStatus


class DuplicateIdempotencyKeyError(RuntimeError):
    """Raised when a new ticket reuses an idempotency key already stored."""

    def __init__(self, idempotency_key: str | None) -> None:
        super().__init__(f"Ticket with idempotency key {idempotency_key!r} already exists")
        self.idempotency_key = idempotency_key


class StaleTicketError(RuntimeError):
    """Raised when a ticket was changed by another writer since it was loaded."""

    def __init__(self, ticket_id: str | None) -> None:
        super().__init__(f"Ticket {ticket_id} was modified concurrently")
        self.ticket_id = ticket_id


class TicketStore(Protocol):
    """Document store operations used by the saga and the ticket service.

    ``save`` assigns ``ticket.id`` before the first write so that a retried
    insert targets the same row. Updates are conditional on ``ticket.version``
    and raise :class:`StaleTicketError` when another writer got there first.
    """

    async def save(self, ticket: Ticket) -> Ticket:
        ...

    async def find_by_id(self, ticket_id: str) -> Ticket | None:
        ...

    async def find_by_idempotency_key(self, idempotency_key: str) -> Ticket | None:
        ...

    async def find_by_sync_status(self, sync_status: SyncStatus) -> Sequence[Ticket]:
        ...

    async def find_tickets(
        self,
        *,
        status: TicketStatus | None = None,
        priority: TicketPriority | None = None,
        customer_external_id: str | None = None,
        from_date: datetime | None = None,
        to_date: datetime | None = None,
    ) -> Sequence[Ticket]:
        ...


class TicketRepository:
    """Ticket documents kept in a JSONB column with the scanned fields mirrored as columns."""

    _CREATE_TICKETS_SQL = """
    CREATE TABLE IF NOT EXISTS tickets (
        id TEXT PRIMARY KEY,
        idempotency_key TEXT NOT NULL,
        customer_external_id TEXT NOT NULL,
        status TEXT NOT NULL,
        priority TEXT NOT NULL,
        sync_status TEXT,
        document JSONB NOT NULL DEFAULT '{}'::jsonb,
        version INTEGER NOT NULL DEFAULT 0,
        created_at TIMESTAMPTZ NOT NULL,
        updated_at TIMESTAMPTZ NOT NULL
    )
    """

    _CREATE_INDEXES_SQL = (
        "CREATE UNIQUE INDEX IF NOT EXISTS ux_tickets_idempotency_key ON tickets (idempotency_key)",
        "CREATE INDEX IF NOT EXISTS ix_tickets_customer_external_id ON tickets (customer_external_id)",
        "CREATE INDEX IF NOT EXISTS ix_tickets_sync_status ON tickets (sync_status)",
    )

    _COLUMNS = (
        "id, idempotency_key, customer_external_id, status, priority, sync_status, document, version, "
        "created_at, updated_at"
    )

    _INSERT_TICKET_SQL = f"""
    INSERT INTO tickets ({_COLUMNS})
    VALUES ($1, $2, $3, $4, $5, $6, $7::jsonb, $8, $9, $10)
    """

    # idempotency_key is write-once
    _UPDATE_TICKET_SQL = """
    UPDATE tickets
    SET customer_external_id = $2,
        status = $3,
        priority = $4,
        sync_status = $5,
        document = $6::jsonb,
        updated_at = $7,
        version = version + 1
    WHERE id = $1 AND version = $8
    RETURNING version
    """

    _SELECT_VERSION_SQL = "SELECT version FROM tickets WHERE id = $1"

    _SELECT_BY_ID_SQL = f"SELECT {_COLUMNS} FROM tickets WHERE id = $1"

    _SELECT_BY_KEY_SQL = f"SELECT {_COLUMNS} FROM tickets WHERE idempotency_key = $1"

    _SELECT_BY_SYNC_STATUS_SQL = f"SELECT {_COLUMNS} FROM tickets WHERE sync_status = $1 ORDER BY created_at ASC"

    def __init__(self, pool: asyncpg.Pool) -> None:
        self._pool = pool

    async def ensure_schema(self) -> None:
        async with self._pool.acquire() as connection:
            await connection.execute(self._CREATE_TICKETS_SQL)
            for statement in self._CREATE_INDEXES_SQL:
                await connection.execute(statement)

    async def save(self, ticket: Ticket) -> Ticket:
        """Insert a new ticket or update the stored version it was loaded from.

        The id is assigned before the INSERT is sent, so when a commit
        succeeds but its reply is lost the retried save updates that row.
        """

        if ticket.id is None:
            if not ticket.idempotency_key:
                raise ValueError("Tickets must carry an idempotency key before they are stored")
            ticket.id = str(uuid.uuid4())
            return await self._insert(ticket)

        async with self._pool.acquire() as connection:
            row = await connection.fetchrow(
                self._UPDATE_TICKET_SQL,
                ticket.id,
                ticket.customer_external_id,
                ticket.status.value,
                ticket.priority.value,
                ticket.sync_status.value if ticket.sync_status else None,
                json.dumps(ticket.to_document()),
                ticket.updated_at,
                ticket.version,
            )
            if row is None:
                if await connection.fetchrow(self._SELECT_VERSION_SQL, ticket.id) is not None:
                    raise StaleTicketError(ticket.id)
        if row is None:
            return await self._insert(ticket)
        ticket.version = row["version"]
        return ticket

    async def _insert(self, ticket: Ticket) -> Ticket:
        if not ticket.idempotency_key:
            raise ValueError("Tickets must carry an idempotency key before they are stored")
        async with self._pool.acquire() as connection:
            try:
                await connection.execute(
                    self._INSERT_TICKET_SQL,
                    ticket.id,
                    ticket.idempotency_key,
                    ticket.customer_external_id,
                    ticket.status.value,
                    ticket.priority.value,
                    ticket.sync_status.value if ticket.sync_status else None,
                    json.dumps(ticket.to_document()),
                    ticket.version,
                    ticket.created_at,
                    ticket.updated_at,
                )
            except asyncpg.UniqueViolationError as exc:
                raise DuplicateIdempotencyKeyError(ticket.idempotency_key) from exc
        return ticket

    async def find_by_id(self, ticket_id: str) -> Ticket | None:
        async with self._pool.acquire() as connection:
            row = await connection.fetchrow(self._SELECT_BY_ID_SQL, ticket_id)
        if row is None:
            return None
        return self._row_to_ticket(row)

    async def find_by_idempotency_key(self, idempotency_key: str) -> Ticket | None:
        async with self._pool.acquire() as connection:
            row = await connection.fetchrow(self._SELECT_BY_KEY_SQL, idempotency_key)
        if row is None:
            return None
        return self._row_to_ticket(row)

    async def find_by_sync_status(self, sync_status: SyncStatus) -> Sequence[Ticket]:
        async with self._pool.acquire() as connection:
            rows = await connection.fetch(self._SELECT_BY_SYNC_STATUS_SQL, sync_status.value)
        return [self._row_to_ticket(row) for row in rows]

    async def find_tickets(
        self,
        *,
        status: TicketStatus | None = None,
        priority: TicketPriority | None = None,
        customer_external_id: str | None = None,
        from_date: datetime | None = None,
        to_date: datetime | None = None,
    ) -> Sequence[Ticket]:
        clauses: list[str] = []
        params: list[Any] = []

        def bind(clause: str, value: Any) -> None:
            params.append(value)
            clauses.append(clause.format(f"${len(params)}"))

        if customer_external_id:
            bind("customer_external_id = {}", customer_external_id)
        if status is not None:
            bind("status = {}", status.value)
        if priority is not None:
            bind("priority = {}", priority.value)
        if from_date is not None:
            bind("created_at >= {}", from_date)
        if to_date is not None:
            bind("created_at <= {}", to_date)

        query = f"SELECT {self._COLUMNS} FROM tickets"
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY created_at DESC"

        async with self._pool.acquire() as connection:
            rows = await connection.fetch(query, *params)
        return [self._row_to_ticket(row) for row in rows]

    @staticmethod
    def _row_to_ticket(row: Mapping[str, Any]) -> Ticket:
        document = row["document"] or {}
        if isinstance(document, (str, bytes)):
            document = json.loads(document)
        return Ticket.from_record(row, document)
