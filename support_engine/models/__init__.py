"""SQLAlchemy declarative base and the tables the support engine touches.

The engine reads and writes through raw psycopg repositories; these models
describe the schema so migrations and test fixtures share one definition.
"""

from __future__ import annotations

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy declarative models."""


from .commerce import (  # noqa: E402
    CartItem,
    Collection,
    Customer,
    KnowledgeBaseEntry,
    Order,
    OrderItem,
    Organization,
    OrganizationMember,
    Product,
    StorePolicy,
    StoreSetting,
)
from .support import (  # noqa: E402
    ChatMessage,
    ChatSession,
    ExternalConversation,
    HelpdeskAccount,
    HelpdeskContact,
)

__all__ = [
    "Base",
    "CartItem",
    "ChatMessage",
    "ChatSession",
    "Collection",
    "Customer",
    "ExternalConversation",
    "HelpdeskAccount",
    "HelpdeskContact",
    "KnowledgeBaseEntry",
    "Order",
    "OrderItem",
    "Organization",
    "OrganizationMember",
    "Product",
    "StorePolicy",
    "StoreSetting",
]
