"""Customer aggregate and its open ticket counter store."""

from .models import Customer
from .repository import CustomerCounterStore, CustomerNotFoundError, CustomerRepository, StaleCounterError

__all__ = [
    "Customer",
    "CustomerCounterStore",
    "CustomerNotFoundError",
    "CustomerRepository",
    "StaleCounterError",
]
