"""Ticket aggregate, document store and the creation saga."""

from .models import (
    SyncStatus,
    Ticket,
    TicketComment,
    TicketEvent,
    TicketEventType,
    TicketPriority,
    TicketStatus,
)
from .orchestrator import (
    PreconditionFailedError,
    SyncFailureError,
    TicketCreationOrchestrator,
    TicketSagaError,
)
from .recovery import RecoveryReport, TicketRecoveryService
from .repository import DuplicateIdempotencyKeyError, StaleTicketError, TicketRepository, TicketStore
from .service import TicketNotFoundError, TicketService, TicketServiceError

__all__ = [
    "DuplicateIdempotencyKeyError",
    "PreconditionFailedError",
    "RecoveryReport",
    "SyncFailureError",
    "StaleTicketError",
    "SyncStatus",
    "Ticket",
    "TicketComment",
    "TicketCreationOrchestrator",
    "TicketEvent",
    "TicketEventType",
    "TicketNotFoundError",
    "TicketPriority",
    "TicketRecoveryService",
    "TicketRepository",
    "TicketSagaError",
    "TicketService",
    "TicketServiceError",
    "TicketStatus",
    "TicketStore",
]
