"""Per-turn customer context: store, customer, orders, cart, catalog, FAQ."""

from . import schemas
from .aggregator import ContextAggregator
from .loyalty import loyalty_tier, support_priority
from .repository import InMemoryCommerceRepository, PostgresCommerceRepository

__all__ = [
    "ContextAggregator",
    "InMemoryCommerceRepository",
    "PostgresCommerceRepository",
    "loyalty_tier",
    "schemas",
    "support_priority",
]
