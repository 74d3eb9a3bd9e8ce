from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping

TICKET_CREATED = "Ticket created"
TICKET_COUNT_INCREMENTED = "Ticket count incremented"
TICKET_COUNT_INCREMENTED_RECOVERED = "Ticket count incremented (recovered)"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TicketStatus(str, Enum):
    """Lifecycle states of a ticket."""

    OPEN = "OPEN"
    IN_PROGRESS = "IN_PROGRESS"
    CLOSED = "CLOSED"
    CANCELLED = "CANCELLED"


class TicketPriority(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class SyncStatus(str, Enum):
    """Whether the customer counter reflects this ticket."""

    SYNCED = "SYNCED"
    FAILED = "FAILED"


class TicketEventType(str, Enum):
    CREATED = "CREATED"
    STATUS_CHANGED = "STATUS_CHANGED"
    PRIORITY_CHANGED = "PRIORITY_CHANGED"
    COMMENT_ADDED = "COMMENT_ADDED"
    ASSIGNED = "ASSIGNED"
    REOPENED = "REOPENED"
    CLOSED = "CLOSED"


@dataclass(slots=True, frozen=True)
class TicketEvent:
    """Immutable entry of a ticket's audit log."""

    event_type: TicketEventType
    description: str
    performed_by: str
    timestamp: datetime = field(default_factory=_utcnow)

    def to_document(self) -> dict[str, Any]:
        return {
            "event_type": self.event_type.value,
            "description": self.description,
            "performed_by": self.performed_by,
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_document(cls, data: Mapping[str, Any]) -> "TicketEvent":
        return cls(
            event_type=TicketEventType(str(data["event_type"])),
            description=str(data["description"]),
            performed_by=str(data["performed_by"]),
            timestamp=_parse_datetime(data["timestamp"]),
        )


@dataclass(slots=True)
class TicketComment:
    content: str
    author_external_id: str
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    def to_document(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "content": self.content,
            "author_external_id": self.author_external_id,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_document(cls, data: Mapping[str, Any]) -> "TicketComment":
        return cls(
            id=str(data["id"]),
            content=str(data["content"]),
            author_external_id=str(data["author_external_id"]),
            created_at=_parse_datetime(data["created_at"]),
            updated_at=_parse_datetime(data["updated_at"]),
        )


@dataclass(slots=True)
class Ticket:
    """Ticket aggregate stored as a single document.

    ``comments`` and ``events`` only ever grow; use :meth:`add_comment` and
    :meth:`add_event` so that ``updated_at`` follows every mutation.
    ``version`` is the stored revision this copy was loaded from.
    """

    customer_external_id: str
    title: str
    description: str
    status: TicketStatus = TicketStatus.OPEN
    priority: TicketPriority = TicketPriority.MEDIUM
    id: str | None = None
    idempotency_key: str | None = None
    sync_status: SyncStatus | None = None
    version: int = 0
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)
    comments: list[TicketComment] = field(default_factory=list)
    events: list[TicketEvent] = field(default_factory=list)

    def add_event(self, event: TicketEvent) -> None:
        self.events.append(event)
        self.updated_at = _utcnow()

    def add_comment(self, comment: TicketComment) -> None:
        self.comments.append(comment)
        self.updated_at = _utcnow()

    def record(self, event_type: TicketEventType, description: str, performed_by: str) -> TicketEvent:
        event = TicketEvent(event_type=event_type, description=description, performed_by=performed_by)
        self.add_event(event)
        return event

    def to_document(self) -> dict[str, Any]:
        """Return the JSON-serialisable body stored alongside the indexed columns."""

        return {
            "title": self.title,
            "description": self.description,
            "comments": [comment.to_document() for comment in self.comments],
            "events": [event.to_document() for event in self.events],
        }

    @classmethod
    def from_record(cls, row: Mapping[str, Any], document: Mapping[str, Any]) -> "Ticket":
        sync_status = row.get("sync_status")
        key = row.get("idempotency_key")
        return cls(
            id=str(row["id"]),
            customer_external_id=str(row["customer_external_id"]),
            title=str(document.get("title", "")),
            description=str(document.get("description", "")),
            status=TicketStatus(str(row["status"])),
            priority=TicketPriority(str(row["priority"])),
            idempotency_key=str(key) if key is not None else None,
            sync_status=SyncStatus(str(sync_status)) if sync_status else None,
            version=int(row.get("version") or 0),
            created_at=_parse_datetime(row["created_at"]),
            updated_at=_parse_datetime(row["updated_at"]),
            comments=[TicketComment.from_document(item) for item in document.get("comments") or []],
            events=[TicketEvent.from_document(item) for item in document.get("events") or []],
        )


def _parse_datetime(value: Any) -> datetime:
    if not isinstance(value, datetime):
        value = datetime.fromisoformat(str(value))
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
