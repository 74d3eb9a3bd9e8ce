from __future__ import annotations

from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Header, HTTPException, Query, status
from pydantic import BaseModel, Field

from supporthub.dependencies.tickets import TicketOrchestratorDep, TicketServiceDep
from supporthub.tickets.models import (
    SyncStatus,
    Ticket,
    TicketComment,
    TicketEvent,
    TicketEventType,
    TicketPriority,
    TicketStatus,
)
from supporthub.tickets.orchestrator import PreconditionFailedError, SyncFailureError
from supporthub.tickets.repository import StaleTicketError
from supporthub.tickets.service import TicketNotFoundError

router = APIRouter(prefix="/tickets", tags=["tickets"])


class TicketCreateRequest(BaseModel):
    customer_external_id: str
    title: str
    description: str
    status: TicketStatus = Field(default=TicketStatus.OPEN)
    priority: TicketPriority = Field(default=TicketPriority.MEDIUM)


class TicketCommentCreateRequest(BaseModel):
    content: str
    author_external_id: str


class TicketStatusChangeRequest(BaseModel):
    status: TicketStatus
    performed_by: str


class TicketPriorityChangeRequest(BaseModel):
    priority: TicketPriority
    performed_by: str


class TicketCommentResponse(BaseModel):
    id: str
    content: str
    author_external_id: str
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_entity(cls, comment: TicketComment) -> "TicketCommentResponse":
        return cls(
            id=comment.id,
            content=comment.content,
            author_external_id=comment.author_external_id,
            created_at=comment.created_at,
            updated_at=comment.updated_at,
        )


class TicketEventResponse(BaseModel):
    event_type: TicketEventType
    description: str
    performed_by: str
    timestamp: datetime

    @classmethod
    def from_entity(cls, event: TicketEvent) -> "TicketEventResponse":
        return cls(
            event_type=event.event_type,
            description=event.description,
            performed_by=event.performed_by,
            timestamp=event.timestamp,
        )


class TicketResponse(BaseModel):
    id: str
    customer_external_id: str
    title: str
    description: str
    status: TicketStatus
    priority: TicketPriority
    idempotency_key: str | None
    sync_status: SyncStatus | None
    created_at: datetime
    updated_at: datetime
    comments: list[TicketCommentResponse] = Field(default_factory=list)
    events: list[TicketEventResponse] = Field(default_factory=list)

    @classmethod
    def from_ticket(cls, ticket: Ticket) -> "TicketResponse":
        return cls(
            id=ticket.id or "",
            customer_external_id=ticket.customer_external_id,
            title=ticket.title,
            description=ticket.description,
            status=ticket.status,
            priority=ticket.priority,
            idempotency_key=ticket.idempotency_key,
            sync_status=ticket.sync_status,
            created_at=ticket.created_at,
            updated_at=ticket.updated_at,
            comments=[TicketCommentResponse.from_entity(comment) for comment in ticket.comments],
            events=[TicketEventResponse.from_entity(event) for event in ticket.events],
        )


@router.post("", response_model=TicketResponse, status_code=status.HTTP_201_CREATED)
async def create_ticket(
    payload: TicketCreateRequest,
    orchestrator: TicketOrchestratorDep,
    idempotency_key: Annotated[str | None, Header(alias="Idempotency-Key")] = None,
) -> TicketResponse:
    candidate = Ticket(
        customer_external_id=payload.customer_external_id,
        title=payload.title,
        description=payload.description,
        status=payload.status,
        priority=payload.priority,
    )
    try:
        ticket = await orchestrator.create_ticket(candidate, idempotency_key)
    except PreconditionFailedError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except SyncFailureError as exc:
        raise HTTPException(
            status_code=500,
            detail={
                "message": str(exc),
                "ticket_id": exc.ticket.id,
                "sync_status": SyncStatus.FAILED.value,
            },
        ) from exc
    return TicketResponse.from_ticket(ticket)


@router.get("", response_model=list[TicketResponse], summary="List tickets matching all given filters")
async def list_tickets(
    service: TicketServiceDep,
    ticket_status: Annotated[TicketStatus | None, Query(alias="status")] = None,
    priority: TicketPriority | None = None,
    customer_external_id: str | None = None,
    from_date: datetime | None = None,
    to_date: datetime | None = None,
) -> list[TicketResponse]:
    try:
        tickets = await service.find_tickets(
            status=ticket_status,
            priority=priority,
            customer_external_id=customer_external_id,
            from_date=from_date,
            to_date=to_date,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return [TicketResponse.from_ticket(ticket) for ticket in tickets]


@router.get("/{ticket_id}", response_model=TicketResponse)
async def get_ticket(ticket_id: str, service: TicketServiceDep) -> TicketResponse:
    try:
        ticket = await service.get_ticket(ticket_id)
    except TicketNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return TicketResponse.from_ticket(ticket)


@router.post("/{ticket_id}/comments", response_model=TicketResponse)
async def add_comment(
    ticket_id: str,
    payload: TicketCommentCreateRequest,
    service: TicketServiceDep,
) -> TicketResponse:
    try:
        ticket = await service.add_comment(
            ticket_id,
            content=payload.content,
            author_external_id=payload.author_external_id,
        )
    except TicketNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except StaleTicketError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return TicketResponse.from_ticket(ticket)


@router.put("/{ticket_id}/status", response_model=TicketResponse)
async def update_status(
    ticket_id: str,
    payload: TicketStatusChangeRequest,
    service: TicketServiceDep,
) -> TicketResponse:
    try:
        ticket = await service.update_status(
            ticket_id,
            new_status=payload.status,
            performed_by=payload.performed_by,
        )
    except TicketNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except StaleTicketError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return TicketResponse.from_ticket(ticket)


@router.put("/{ticket_id}/priority", response_model=TicketResponse)
async def update_priority(
    ticket_id: str,
    payload: TicketPriorityChangeRequest,
    service: TicketServiceDep,
) -> TicketResponse:
    try:
        ticket = await service.update_priority(
            ticket_id,
            new_priority=payload.priority,
            performed_by=payload.performed_by,
        )
    except TicketNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except StaleTicketError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return TicketResponse.from_ticket(ticket)
