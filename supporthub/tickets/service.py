from __future__ import annotations

import copy
from datetime import datetime
from typing import Callable, Sequence

from supporthub.core.retry import RetryPolicy

from .models import SyncStatus, Ticket, TicketComment, TicketEventType, TicketPriority, TicketStatus
from .repository import DuplicateIdempotencyKeyError, StaleTicketError, TicketStore


class TicketServiceError(RuntimeError):
    """Base error for ticket service issues."""


class TicketNotFoundError(TicketServiceError):
    """Raised when a ticket could not be located."""


_TERMINAL_STATUSES = frozenset({TicketStatus.CLOSED, TicketStatus.CANCELLED})

# Applies a change in place; returns False when there is nothing to write.
TicketMutation = Callable[[Ticket], bool]


class TicketService:
    """Ticket lifecycle operations on top of a :class:`TicketStore`."""

    def __init__(self, repository: TicketStore, *, retry_policy: RetryPolicy | None = None) -> None:
        self._repository = repository
        self._retry_policy = retry_policy or RetryPolicy()

    async def save(self, ticket: Ticket) -> Ticket:
        async for attempt in self._retry_policy.retrying(
            give_up_on=(DuplicateIdempotencyKeyError, StaleTicketError)
        ):
            with attempt:
                return await self._repository.save(ticket)
        raise RuntimeError("retry loop exited without a result")  # pragma: no cover

    async def find_by_id(self, ticket_id: str) -> Ticket | None:
        return await self._repository.find_by_id(ticket_id)

    async def find_by_idempotency_key(self, idempotency_key: str) -> Ticket | None:
        return await self._repository.find_by_idempotency_key(idempotency_key)

    async def find_by_sync_status(self, sync_status: SyncStatus) -> Sequence[Ticket]:
        return await self._repository.find_by_sync_status(sync_status)

    async def get_ticket(self, ticket_id: str) -> Ticket:
        ticket = await self._repository.find_by_id(ticket_id)
        if ticket is None:
            raise TicketNotFoundError(f"Ticket not found: {ticket_id}")
        return ticket

    async def mark_synced(self, ticket: Ticket, description: str) -> Ticket:
        """Store ``SYNCED`` with its STATUS_CHANGED event and return the stored ticket.

        ``ticket`` itself is left untouched, so a caller that falls back to
        ``FAILED`` never carries the success event.
        """

        def apply(current: Ticket) -> bool:
            if current.sync_status is SyncStatus.SYNCED:
                return False
            current.sync_status = SyncStatus.SYNCED
            current.record(TicketEventType.STATUS_CHANGED, description, current.customer_external_id)
            return True

        return await self._update(self._require_id(ticket), apply, loaded=copy.deepcopy(ticket))

    async def mark_failed(self, ticket: Ticket) -> Ticket:
        """Store ``FAILED`` unless the ticket already has a sync outcome."""

        def apply(current: Ticket) -> bool:
            if current.sync_status is not None:
                return False
            current.sync_status = SyncStatus.FAILED
            return True

        return await self._update(self._require_id(ticket), apply, loaded=copy.deepcopy(ticket))

    async def add_comment(self, ticket_id: str, *, content: str, author_external_id: str) -> Ticket:
        def apply(ticket: Ticket) -> bool:
            ticket.add_comment(TicketComment(content=content, author_external_id=author_external_id))
            ticket.record(TicketEventType.COMMENT_ADDED, f"Comment added: {content}", author_external_id)
            return True

        return await self._update(ticket_id, apply)

    async def update_status(self, ticket_id: str, *, new_status: TicketStatus, performed_by: str) -> Ticket:
        def apply(ticket: Ticket) -> bool:
            old_status = ticket.status
            if old_status == new_status:
                return False
            ticket.status = new_status
            ticket.record(
                TicketEventType.STATUS_CHANGED,
                f"Status changed from {old_status.value} to {new_status.value}",
                performed_by,
            )
            if new_status in _TERMINAL_STATUSES:
                ticket.record(TicketEventType.CLOSED, f"Ticket {new_status.value.lower()}", performed_by)
            return True

        return await self._update(ticket_id, apply)

    async def update_priority(
        self, ticket_id: str, *, new_priority: TicketPriority, performed_by: str
    ) -> Ticket:
        def apply(ticket: Ticket) -> bool:
            old_priority = ticket.priority
            if old_priority == new_priority:
                return False
            ticket.priority = new_priority
            ticket.record(
                TicketEventType.PRIORITY_CHANGED,
                f"Priority changed from {old_priority.value} to {new_priority.value}",
                performed_by,
            )
            return True

        return await self._update(ticket_id, apply)

    async def find_tickets(
        self,
        *,
        status: TicketStatus | None = None,
        priority: TicketPriority | None = None,
        customer_external_id: str | None = None,
        from_date: datetime | None = None,
        to_date: datetime | None = None,
    ) -> Sequence[Ticket]:
        if from_date is not None and to_date is not None and from_date > to_date:
            raise ValueError("from_date must not be after to_date")
        return await self._repository.find_tickets(
            status=status,
            priority=priority,
            customer_external_id=customer_external_id or None,
            from_date=from_date,
            to_date=to_date,
        )

    async def find_tickets_by_customer(
        self,
        customer_external_id: str,
        *,
        status: TicketStatus | None = None,
        priority: TicketPriority | None = None,
    ) -> Sequence[Ticket]:
        return await self._repository.find_tickets(
            status=status,
            priority=priority,
            customer_external_id=customer_external_id,
        )

    async def _update(self, ticket_id: str, mutation: TicketMutation, *, loaded: Ticket | None = None) -> Ticket:
        """Apply ``mutation`` and save, reloading and reapplying after a lost update.

        ``loaded`` is used for the first attempt instead of reading the ticket.
        """

        async for attempt in self._retry_policy.retrying(give_up_on=(TicketNotFoundError,)):
            with attempt:
                ticket, loaded = loaded, None
                if ticket is None:
                    ticket = await self.get_ticket(ticket_id)
                if not mutation(ticket):
                    return ticket
                return await self._repository.save(ticket)
        raise RuntimeError("retry loop exited without a result")  # pragma: no cover

    @staticmethod
    def _require_id(ticket: Ticket) -> str:
        if ticket.id is None:
            raise ValueError("Ticket has not been stored yet")
        return ticket.id
