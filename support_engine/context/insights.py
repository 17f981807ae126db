"""Customer context for human agents working inside the helpdesk."""

from __future__ import annotations

import logging
from collections import Counter
from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field

from ..config import EngineSettings, get_settings
from ..core.clock import Clock, as_utc, utcnow
from ..core.errors import AccountNotMappedError, ContactNotMappedError
from ..helpdesk.repository import HelpdeskRepository
from ..helpdesk.schemas import SupportHistory
from . import schemas
from .loyalty import loyalty_tier, support_priority
from .repository import CommerceRepository

logger = logging.getLogger(__name__)


class InsightAction(str, Enum):
    CONTEXT = "context"
    ORDERS = "orders"
    CART = "cart"
    INSIGHTS = "insights"
    RECOMMENDATIONS = "recommendations"


class BehavioralInsights(BaseModel):
    favorite_categories: list[str] = Field(default_factory=list)
    purchase_frequency: str = "new"
    average_order_value: float = 0.0
    last_activity: datetime | None = None


class SuggestedProduct(BaseModel):
    id: int
    name: str
    price: float
    reason: str


class DiscountOpportunity(BaseModel):
    type: str
    value: str
    reason: str


class Recommendations(BaseModel):
    suggested_products: list[SuggestedProduct] = Field(default_factory=list)
    discount_opportunities: list[DiscountOpportunity] = Field(default_factory=list)


class AgentContextView(BaseModel):
    customer: schemas.CustomerProfile
    recent_orders: list[schemas.OrderSummary] = Field(default_factory=list)
    cart: schemas.CartSnapshot = Field(default_factory=schemas.CartSnapshot)
    cart_total: float = 0.0
    insights: BehavioralInsights = Field(default_factory=BehavioralInsights)
    support_history: SupportHistory = Field(default_factory=SupportHistory)
    recommendations: Recommendations = Field(default_factory=Recommendations)


def purchase_frequency(stats: schemas.CustomerStats, now: datetime) -> str:
    """Bucket a customer by average days between orders since the first one."""

    if stats.order_count < 2 or stats.first_order_at is None:
        return "new"
    days = (now - as_utc(stats.first_order_at)).total_seconds() / 86400
    if days <= 0:
        return "new"
    per_order = days / stats.order_count
    if per_order < 30:
        return "frequent"
    if per_order < 90:
        return "regular"
    return "occasional"


class CustomerInsightService:
    """Resolve a helpdesk contact to a customer and summarize them for agents."""

    def __init__(
        self,
        commerce: CommerceRepository,
        helpdesk: HelpdeskRepository,
        *,
        settings: EngineSettings | None = None,
        clock: Clock = utcnow,
    ) -> None:
        self._commerce = commerce
        self._helpdesk = helpdesk
        self._settings = settings or get_settings()
        self._clock = clock

    def for_contact(self, contact_id: int, account_id: int) -> AgentContextView:
        organization_id = self._helpdesk.get_account_organization(account_id)
        if organization_id is None:
            raise AccountNotMappedError(f"Helpdesk account {account_id} is not mapped")
        mapping = self._helpdesk.get_contact(organization_id, contact_id)
        if mapping is None or mapping.customer_id is None:
            raise ContactNotMappedError(f"Helpdesk contact {contact_id} is not mapped")
        customer_id = mapping.customer_id
        customer = self._commerce.get_customer(organization_id, customer_id)
        if customer is None:
            raise ContactNotMappedError(
                f"Customer for helpdesk contact {contact_id} no longer exists"
            )

        stats = self._commerce.get_customer_stats(organization_id, customer_id)
        tier = loyalty_tier(stats, self._settings.loyalty)
        customer = customer.model_copy(
            update={
                "tier": tier,
                "support_priority": support_priority(tier),
                "lifetime_spend": stats.lifetime_spend,
                "order_count": stats.order_count,
            }
        )
        orders = self._commerce.list_recent_orders(
            organization_id, customer_id, self._settings.recent_order_limit
        )
        cart = self._commerce.get_cart(organization_id, customer_id)
        return AgentContextView(
            customer=customer,
            recent_orders=orders,
            cart=cart,
            cart_total=cart.total,
            insights=self._insights(stats, orders),
            support_history=self._helpdesk.contact_history(organization_id, contact_id),
            recommendations=self._recommendations(organization_id, cart),
        )

    def _insights(
        self, stats: schemas.CustomerStats, orders: list[schemas.OrderSummary]
    ) -> BehavioralInsights:
        if stats.order_count == 0:
            return BehavioralInsights()
        categories = Counter(
            line.category for order in orders for line in order.lines if line.category
        )
        return BehavioralInsights(
            favorite_categories=[name for name, _ in categories.most_common(3)],
            purchase_frequency=purchase_frequency(stats, self._clock()),
            average_order_value=round(stats.lifetime_spend / stats.order_count, 2),
            last_activity=stats.last_order_at,
        )

    def _recommendations(
        self, organization_id: UUID, cart: schemas.CartSnapshot
    ) -> Recommendations:
        featured = self._commerce.list_featured_products(organization_id, 3)
        suggestions = [
            SuggestedProduct(id=p.id, name=p.name, price=p.price, reason="Popular product")
            for p in featured
        ]
        discounts = []
        threshold = self._settings.discount_cart_threshold
        if cart.items and cart.total > threshold:
            discounts.append(
                DiscountOpportunity(
                    type="percentage",
                    value="10%",
                    reason=f"Cart value over {threshold:.0f}",
                )
            )
        return Recommendations(
            suggested_products=suggestions, discount_opportunities=discounts
        )


def select_slice(view: AgentContextView, action: InsightAction) -> dict:
    """Return the part of ``view`` requested by ``action`` as JSON data."""

    if action == InsightAction.ORDERS:
        return {"orders": [o.model_dump(mode="json") for o in view.recent_orders]}
    if action == InsightAction.CART:
        return {
            "cart": {
                **view.cart.model_dump(mode="json"),
                "total": view.cart_total,
                "items_count": view.cart.item_count,
            }
        }
    if action == InsightAction.INSIGHTS:
        return {"insights": view.insights.model_dump(mode="json")}
    if action == InsightAction.RECOMMENDATIONS:
        return {"recommendations": view.recommendations.model_dump(mode="json")}
    data = view.model_dump(mode="json")
    data["customer"]["name"] = view.customer.display_name
    return {"context": data}
