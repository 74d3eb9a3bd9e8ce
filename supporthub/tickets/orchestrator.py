"""Ticket creation saga spanning the ticket documents and the customer counter.

The two stores share no transaction. A ticket is first persisted on its own
(phase 1); the customer's open ticket counter is then incremented (phase 2)
and the ticket is marked ``SYNCED``. When phase 2 fails the ticket is kept and
marked ``FAILED`` so that :class:`~supporthub.tickets.recovery.TicketRecoveryService`
can replay phase 2 later.
"""

from __future__ import annotations

import logging
import uuid

from opentelemetry import trace

from supporthub.customers.repository import CustomerCounterStore

from .models import (
    TICKET_COUNT_INCREMENTED,
    TICKET_COUNT_INCREMENTED_RECOVERED,
    TICKET_CREATED,
    SyncStatus,
    Ticket,
    TicketEventType,
)
from .repository import DuplicateIdempotencyKeyError
from .service import TicketService

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class TicketSagaError(RuntimeError):
    """Base error for the ticket creation saga."""


class PreconditionFailedError(TicketSagaError):
    """Raised when the referenced customer does not exist; nothing was persisted."""


class SyncFailureError(TicketSagaError):
    """Raised when the ticket was persisted but the counter update failed.

    ``ticket`` is the stored ticket, left with ``SyncStatus.FAILED``.
    """

    def __init__(self, message: str, *, ticket: Ticket) -> None:
        super().__init__(message)
        self.ticket = ticket


class TicketCreationOrchestrator:
    """Create tickets exactly once and keep the customer counter in step."""

    def __init__(self, tickets: TicketService, customers: CustomerCounterStore) -> None:
        self._tickets = tickets
        self._customers = customers

    async def create_ticket(self, ticket: Ticket, idempotency_key: str | None = None) -> Ticket:
        if not idempotency_key or not idempotency_key.strip():
            idempotency_key = str(uuid.uuid4())

        with tracer.start_as_current_span("ticket.create") as span:
            span.set_attribute("ticket.idempotency_key", idempotency_key)
            span.set_attribute("ticket.customer_external_id", ticket.customer_external_id)

            existing = await self._tickets.find_by_idempotency_key(idempotency_key)
            if existing is not None:
                logger.info("Ticket already exists with idempotency key: %s", idempotency_key)
                span.set_attribute("ticket.replayed", True)
                return existing

            customer_external_id = ticket.customer_external_id
            if not await self._customers.exists_by_external_id(customer_external_id):
                raise PreconditionFailedError(f"Customer does not exist: {customer_external_id}")

            ticket.idempotency_key = idempotency_key
            ticket.record(TicketEventType.CREATED, TICKET_CREATED, customer_external_id)

            try:
                saved = await self._tickets.save(ticket)
            except DuplicateIdempotencyKeyError:
                winner = await self._tickets.find_by_idempotency_key(idempotency_key)
                if winner is None:
                    raise
                if winner.id != ticket.id:
                    logger.info(
                        "Concurrent request won idempotency key %s; returning ticket %s", idempotency_key, winner.id
                    )
                    span.set_attribute("ticket.replayed", True)
                    return winner
                # an earlier attempt of this save committed
                saved = winner

            span.set_attribute("ticket.id", saved.id or "")
            try:
                synced = await self._sync_to_customer(saved, TICKET_COUNT_INCREMENTED)
            except Exception as exc:
                logger.exception(
                    "Failed to increment ticket count for customer %s (ticket %s)",
                    customer_external_id,
                    saved.id,
                )
                raise SyncFailureError(
                    f"Failed to complete ticket creation: {exc}", ticket=await self._record_failure(saved)
                ) from exc

            logger.info("Ticket %s created with idempotency key: %s", synced.id, idempotency_key)
            return synced

    async def recover_ticket(self, ticket: Ticket) -> bool:
        """Replay phase 2 for a ``FAILED`` ticket; report success instead of raising.

        The ticket is reloaded before phase 2, so edits made after the sweep
        read it are kept.
        """

        with tracer.start_as_current_span("ticket.recover") as span:
            span.set_attribute("ticket.id", ticket.id or "")
            if ticket.sync_status is SyncStatus.SYNCED:
                return True

            customer_external_id = ticket.customer_external_id
            try:
                exists = await self._customers.exists_by_external_id(customer_external_id)
            except Exception:
                logger.exception("Could not check customer %s for ticket %s", customer_external_id, ticket.id)
                return False
            if not exists:
                logger.warning("Customer %s no longer exists for ticket %s", customer_external_id, ticket.id)
                return False

            current = ticket
            try:
                reloaded = await self._tickets.find_by_id(ticket.id) if ticket.id else None
                if reloaded is None:
                    logger.warning("Ticket %s disappeared before recovery", ticket.id)
                    return False
                current = reloaded
                if current.sync_status is SyncStatus.SYNCED:
                    return True
                await self._sync_to_customer(current, TICKET_COUNT_INCREMENTED_RECOVERED)
            except Exception:
                logger.exception(
                    "Failed to increment ticket count for customer %s in ticket %s",
                    customer_external_id,
                    ticket.id,
                )
                await self._record_failure(current)
                return False

            logger.info("Successfully recovered ticket: %s", ticket.id)
            return True

    async def _sync_to_customer(self, ticket: Ticket, description: str) -> Ticket:
        with tracer.start_as_current_span("ticket.sync"):
            await self._customers.increment_open_ticket_count(ticket.customer_external_id, ticket_id=ticket.id)
            return await self._tickets.mark_synced(ticket, description)

    async def _record_failure(self, ticket: Ticket) -> Ticket:
        try:
            return await self._tickets.mark_failed(ticket)
        except Exception:
            logger.exception("Could not persist FAILED state for ticket %s", ticket.id)
            ticket.sync_status = SyncStatus.FAILED
            return ticket
