from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass(slots=True)
class Customer:
    """Customer aggregate as seen by the ticket saga."""

    external_id: str
    name: str
    email: str
    open_ticket_count: int
    created_at: datetime
    updated_at: datetime
