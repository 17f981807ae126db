"""Pydantic models describing the per-turn customer context bundle."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field


class LoyaltyTier(str, Enum):
    BRONZE = "Bronze"
    SILVER = "Silver"
    GOLD = "Gold"
    PLATINUM = "Platinum"


class SupportPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class StoreProfile(BaseModel):
    id: UUID
    name: str
    email: str | None = None
    phone: str | None = None
    currency: str = "EUR"
    business_hours: dict[str, Any] = Field(default_factory=dict)
    policies: dict[str, str] = Field(default_factory=dict)


class CustomerStats(BaseModel):
    """Lifetime aggregates over a customer's orders."""

    lifetime_spend: float = 0.0
    order_count: int = 0
    first_order_at: datetime | None = None
    last_order_at: datetime | None = None


class CustomerProfile(BaseModel):
    id: UUID
    email: str
    first_name: str | None = None
    last_name: str | None = None
    phone: str | None = None
    created_at: datetime | None = None
    tier: LoyaltyTier = LoyaltyTier.BRONZE
    support_priority: SupportPriority = SupportPriority.LOW
    lifetime_spend: float = 0.0
    order_count: int = 0

    @property
    def display_name(self) -> str:
        parts = [part for part in (self.first_name, self.last_name) if part]
        return " ".join(parts) or self.email


class OrderLine(BaseModel):
    product_id: int | None = None
    product_name: str
    quantity: int = 1
    unit_price: float = 0.0
    category: str | None = None


class OrderSummary(BaseModel):
    id: UUID
    order_number: str
    status: str
    total_amount: float
    customer_id: UUID | None = None
    customer_email: str | None = None
    shipping_address: str | None = None
    shipping_city: str | None = None
    tracking_number: str | None = None
    created_at: datetime
    shipped_at: datetime | None = None
    delivered_at: datetime | None = None
    lines: list[OrderLine] = Field(default_factory=list)


class CartLine(BaseModel):
    product_id: int
    product_name: str
    category: str | None = None
    quantity: int = 1
    unit_price: float = 0.0


class CartSnapshot(BaseModel):
    items: list[CartLine] = Field(default_factory=list)

    @property
    def total(self) -> float:
        return round(sum(item.unit_price * item.quantity for item in self.items), 2)

    @property
    def item_count(self) -> int:
        return sum(item.quantity for item in self.items)


class KnowledgeEntry(BaseModel):
    id: int
    question: str
    answer: str
    category: str | None = None
    effectiveness_score: float = 0.0


class ProductSummary(BaseModel):
    id: int
    name: str
    description: str | None = None
    category: str | None = None
    price: float
    collection_name: str | None = None
    is_featured: bool = False


class CatalogExcerpt(BaseModel):
    products: list[ProductSummary] = Field(default_factory=list)
    collections: list[str] = Field(default_factory=list)


class StaffContact(BaseModel):
    email: str
    name: str | None = None
    role: str


class CustomerContextBundle(BaseModel):
    """Everything a turn knows about the store and the customer.

    Built fresh for every turn and discarded afterwards.
    """

    store: StoreProfile
    customer: CustomerProfile | None = None
    recent_orders: list[OrderSummary] = Field(default_factory=list)
    cart: CartSnapshot = Field(default_factory=CartSnapshot)
    knowledge_base: list[KnowledgeEntry] = Field(default_factory=list)
    catalog: CatalogExcerpt = Field(default_factory=CatalogExcerpt)

    @property
    def is_anonymous(self) -> bool:
        return self.customer is None
