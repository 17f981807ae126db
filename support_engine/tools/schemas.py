"""Tool argument models and typed tool results."""

from __future__ import annotations

from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class ToolStatus(str, Enum):
    OK = "ok"
    NOT_FOUND = "not_found"
    INVALID = "invalid"
    ESCALATE = "escalate"


class ToolResult(BaseModel):
    """Outcome of one tool call; ``content`` is customer-facing text."""

    status: ToolStatus
    content: str
    data: dict[str, Any] = Field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return self.status == ToolStatus.OK

    @property
    def escalation_reason(self) -> str | None:
        if self.status != ToolStatus.ESCALATE:
            return None
        return str(self.data.get("reason") or "agent_requested")


class ToolInvocation(BaseModel):
    name: str
    arguments: dict[str, Any] = Field(default_factory=dict)
    result: ToolResult


class _ToolArgs(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", str_strip_whitespace=True)


class OrderLookupArgs(_ToolArgs):
    """Find an order by its number or by the email it was placed with."""

    order_number: str | None = Field(
        default=None, alias="orderNumber", description="Order number, e.g. 1001"
    )
    customer_email: str | None = Field(
        default=None, alias="customerEmail", description="Email address used for the order"
    )

    @field_validator("order_number")
    @classmethod
    def _strip_hash(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return value.lstrip("#").strip() or None

    @model_validator(mode="after")
    def _require_one(self) -> "OrderLookupArgs":
        if not self.order_number and not self.customer_email:
            raise ValueError("order_number or customer_email is required")
        return self


class ProductSearchArgs(_ToolArgs):
    query: str = Field(min_length=1, description="What the customer is looking for")
    category: str | None = Field(default=None, description="Optional category filter")
    min_price: float | None = Field(default=None, ge=0, alias="minPrice")
    max_price: float | None = Field(default=None, ge=0, alias="maxPrice")

    @model_validator(mode="after")
    def _price_range(self) -> "ProductSearchArgs":
        if (
            self.min_price is not None
            and self.max_price is not None
            and self.min_price > self.max_price
        ):
            raise ValueError("min_price must not exceed max_price")
        return self


class ShippingStatusArgs(_ToolArgs):
    order_number: str = Field(min_length=1, alias="orderNumber")

    @field_validator("order_number")
    @classmethod
    def _strip_hash(cls, value: str) -> str:
        stripped = value.lstrip("#").strip()
        if not stripped:
            raise ValueError("order_number must not be empty")
        return stripped


class StorePolicyArgs(_ToolArgs):
    policy_type: Literal["returns", "shipping", "exchanges"] = Field(alias="policyType")


class EscalateArgs(_ToolArgs):
    reason: str = Field(min_length=1, description="Why a human agent is needed")
    priority: Literal["low", "normal", "high", "urgent"] = "normal"
