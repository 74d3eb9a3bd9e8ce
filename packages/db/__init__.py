"""Database models and utilities."""

from .models import CountedTicketTable, CustomerTable

__all__ = [
    "CountedTicketTable",
    "CustomerTable",
]
