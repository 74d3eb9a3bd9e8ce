from __future__ import annotations

from typing import Annotated

from fastapi import Depends, HTTPException, Request

from supporthub.tickets.orchestrator import TicketCreationOrchestrator
from supporthub.tickets.service import TicketService


async def get_ticket_service(request: Request) -> TicketService:
    service = getattr(request.app.state, "ticket_service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Ticket service is not configured")
    return service


async def get_ticket_orchestrator(request: Request) -> TicketCreationOrchestrator:
    orchestrator = getattr(request.app.state, "ticket_orchestrator", None)
    if orchestrator is None:
        raise HTTPException(status_code=503, detail="Ticket creation is not configured")
    return orchestrator


TicketServiceDep = Annotated[TicketService, Depends(get_ticket_service)]
TicketOrchestratorDep = Annotated[TicketCreationOrchestrator, Depends(get_ticket_orchestrator)]
