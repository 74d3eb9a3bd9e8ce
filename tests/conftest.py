from __future__ import annotations

import copy
from datetime import datetime
from typing import Awaitable, Callable, Sequence

import pytest

from supporthub.core.retry import RetryPolicy
from supporthub.customers.repository import CustomerNotFoundError
from supporthub.tickets.models import SyncStatus, Ticket, TicketPriority, TicketStatus
from supporthub.tickets.orchestrator import TicketCreationOrchestrator
from supporthub.tickets.repository import DuplicateIdempotencyKeyError, StaleTicketError
from supporthub.tickets.service import TicketService


class InMemoryTicketStore:
    """Ticket store fake that copies documents in and out like a real database."""

    def __init__(self) -> None:
        self.tickets: dict[str, Ticket] = {}
        self.save_calls = 0
        self.fail_saves = 0
        self.fail_after_write = 0
        self.collide_after_insert = False
        self.before_insert: Callable[[Ticket], None] | None = None
        self._sequence = 0

    async def save(self, ticket: Ticket) -> Ticket:
        self.save_calls += 1
        if self.fail_saves:
            self.fail_saves -= 1
            raise ConnectionError("ticket store unavailable")

        if ticket.id is None:
            self._sequence += 1
            ticket.id = f"ticket-{self._sequence}"

        stored = self.tickets.get(ticket.id)
        if stored is None:
            if self.before_insert is not None:
                hook, self.before_insert = self.before_insert, None
                hook(ticket)
            if any(other.idempotency_key == ticket.idempotency_key for other in self.tickets.values()):
                raise DuplicateIdempotencyKeyError(ticket.idempotency_key)
            written = copy.deepcopy(ticket)
            if self.collide_after_insert:
                # the insert landed, but the key check reports it as taken
                self.collide_after_insert = False
                self.tickets[ticket.id] = written
                raise DuplicateIdempotencyKeyError(ticket.idempotency_key)
        else:
            if stored.version != ticket.version:
                raise StaleTicketError(ticket.id)
            written = copy.deepcopy(ticket)
            written.version += 1
        self.tickets[ticket.id] = written

        if self.fail_after_write:
            self.fail_after_write -= 1
            raise ConnectionError("connection reset after commit")
        ticket.version = written.version
        return ticket

    def insert(self, ticket: Ticket) -> Ticket:
        self._sequence += 1
        ticket.id = ticket.id or f"ticket-{self._sequence}"
        self.tickets[ticket.id] = copy.deepcopy(ticket)
        return ticket

    async def find_by_id(self, ticket_id: str) -> Ticket | None:
        ticket = self.tickets.get(ticket_id)
        return copy.deepcopy(ticket) if ticket is not None else None

    async def find_by_idempotency_key(self, idempotency_key: str) -> Ticket | None:
        for ticket in self.tickets.values():
            if ticket.idempotency_key == idempotency_key:
                return copy.deepcopy(ticket)
        return None

    async def find_by_sync_status(self, sync_status: SyncStatus) -> Sequence[Ticket]:
        return [copy.deepcopy(ticket) for ticket in self.tickets.values() if ticket.sync_status is sync_status]

    async def find_tickets(
        self,
        *,
        status: TicketStatus | None = None,
        priority: TicketPriority | None = None,
        customer_external_id: str | None = None,
        from_date: datetime | None = None,
        to_date: datetime | None = None,
    ) -> Sequence[Ticket]:
        matches = [
            ticket
            for ticket in self.tickets.values()
            if (status is None or ticket.status is status)
            and (priority is None or ticket.priority is priority)
            and (customer_external_id is None or ticket.customer_external_id == customer_external_id)
            and (from_date is None or ticket.created_at >= from_date)
            and (to_date is None or ticket.created_at <= to_date)
        ]
        matches.sort(key=lambda ticket: ticket.created_at, reverse=True)
        return [copy.deepcopy(ticket) for ticket in matches]


class InMemoryCustomerStore:
    """Customer counter fake with a counted-ticket ledger and failure injection."""

    def __init__(self) -> None:
        self.counts: dict[str, int] = {}
        self.counted: set[str] = set()
        self.increment_calls = 0
        self.increment_error: Exception | None = None
        self.on_increment: Callable[[], Awaitable[None]] | None = None

    def add(self, external_id: str, open_ticket_count: int = 0) -> None:
        self.counts[external_id] = open_ticket_count

    def remove(self, external_id: str) -> None:
        self.counts.pop(external_id, None)

    async def exists_by_external_id(self, external_id: str) -> bool:
        return external_id in self.counts

    async def increment_open_ticket_count(self, external_id: str, *, ticket_id: str | None = None) -> int:
        self.increment_calls += 1
        if self.increment_error is not None:
            raise self.increment_error
        if external_id not in self.counts:
            raise CustomerNotFoundError(f"Customer not found: {external_id}")
        if ticket_id is not None:
            if ticket_id in self.counted:
                return self.counts[external_id]
            self.counted.add(ticket_id)
        self.counts[external_id] += 1
        if self.on_increment is not None:
            hook, self.on_increment = self.on_increment, None
            await hook()
        return self.counts[external_id]


@pytest.fixture
def no_wait_retry() -> RetryPolicy:
    return RetryPolicy(attempts=3, initial_delay=0.0)


@pytest.fixture
def ticket_store() -> InMemoryTicketStore:
    return InMemoryTicketStore()


@pytest.fixture
def customer_store() -> InMemoryCustomerStore:
    store = InMemoryCustomerStore()
    store.add("c1")
    return store


@pytest.fixture
def ticket_service(ticket_store: InMemoryTicketStore, no_wait_retry: RetryPolicy) -> TicketService:
    return TicketService(ticket_store, retry_policy=no_wait_retry)


@pytest.fixture
def orchestrator(ticket_service: TicketService, customer_store: InMemoryCustomerStore) -> TicketCreationOrchestrator:
    return TicketCreationOrchestrator(ticket_service, customer_store)


@pytest.fixture
def make_ticket() -> Callable[..., Ticket]:
    def factory(
        *,
        customer: str = "c1",
        title: str = "A",
        description: str = "Printer is on fire",
        status: TicketStatus = TicketStatus.OPEN,
        priority: TicketPriority = TicketPriority.MEDIUM,
    ) -> Ticket:
        return Ticket(
            customer_external_id=customer,
            title=title,
            description=description,
            status=status,
            priority=priority,
        )

    return factory
