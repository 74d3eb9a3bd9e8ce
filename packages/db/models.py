"""SQLModel table definitions for the customer side of SupportHub."""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import CheckConstraint, Column, DateTime, Integer, String
from sqlmodel import Field, SQLModel


def _utcnow() -> datetime:
    """Return a timezone aware UTC timestamp."""

    return datetime.now(timezone.utc)


class CustomerTable(SQLModel, table=True):
    """Customer aggregate carrying the denormalized open ticket counter."""

    __tablename__ = "customers"
    __table_args__ = (CheckConstraint("open_ticket_count >= 0", name="ck_customers_open_ticket_count"),)

    id: int | None = Field(default=None, primary_key=True)
    external_id: str = Field(sa_column=Column(String(255), nullable=False, unique=True, index=True))
    name: str = Field(sa_column=Column(String(255), nullable=False))
    email: str = Field(sa_column=Column(String(255), nullable=False, unique=True))
    open_ticket_count: int = Field(default=0, sa_column=Column(Integer, nullable=False, default=0))
    created_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))


class CountedTicketTable(SQLModel, table=True):
    """Ledger of ticket ids already reflected in a customer's counter."""

    __tablename__ = "customer_counted_tickets"

    ticket_id: str = Field(sa_column=Column(String(36), primary_key=True))
    customer_external_id: str = Field(sa_column=Column(String(255), nullable=False, index=True))
    counted_at: datetime = Field(default_factory=_utcnow, sa_column=Column(DateTime(timezone=True), nullable=False))
