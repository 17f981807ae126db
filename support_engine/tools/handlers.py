"""Built-in tools the assistant may call during a turn.

Each handler performs at most one repository read and never writes.
"""

from __future__ import annotations

import re
from datetime import datetime

from ..context.schemas import OrderSummary, ProductSummary
from .executor import ToolContext, ToolSpec
from .schemas import (
    EscalateArgs,
    OrderLookupArgs,
    ProductSearchArgs,
    ShippingStatusArgs,
    StorePolicyArgs,
    ToolResult,
    ToolStatus,
)

DEFAULT_POLICIES = {
    "returns": (
        "You can return unused items in their original packaging within 30 days "
        "of delivery. Start a return from your account or reply here with your "
        "order number and we will send you a return label. Refunds are issued to "
        "the original payment method within 5-7 business days after we receive "
        "the item."
    ),
    "shipping": (
        "Orders are processed within 1-2 business days. Standard delivery takes "
        "3-5 business days; you will receive a tracking number by email as soon "
        "as your order ships."
    ),
    "exchanges": (
        "Exchanges for a different size or colour are free within 30 days of "
        "delivery, subject to availability. Send us your order number and the "
        "item you would like instead."
    ),
}

_TOKEN = re.compile(r"[a-z0-9]+")


def _money(amount: float, currency: str) -> str:
    return f"{currency} {amount:.2f}"


def _date(value: datetime | None) -> str:
    return value.strftime("%Y-%m-%d") if value else "unknown"


def _order_from_bundle(context: ToolContext, args: OrderLookupArgs) -> OrderSummary | None:
    for order in context.bundle.recent_orders:
        if args.order_number and order.order_number == args.order_number:
            return order
        if (
            not args.order_number
            and args.customer_email
            and (order.customer_email or "").lower() == args.customer_email.lower()
        ):
            return order
    return None


def order_lookup(args: OrderLookupArgs, context: ToolContext) -> ToolResult:
    order = _order_from_bundle(context, args) or context.commerce.find_order(
        context.organization_id,
        order_number=args.order_number,
        customer_email=args.customer_email,
    )
    if order is None:
        reference = (
            f"number {args.order_number}" if args.order_number else f"email {args.customer_email}"
        )
        return ToolResult(
            status=ToolStatus.NOT_FOUND,
            content=(
                f"I couldn't find an order with {reference}. Please double-check the "
                "details or contact our support team if you need assistance."
            ),
            data={"order_number": args.order_number},
        )

    currency = context.bundle.store.currency
    items = ", ".join(f"{line.product_name} (Qty: {line.quantity})" for line in order.lines)
    lines = [
        f"I found your order #{order.order_number}:",
        "",
        f"Status: {order.status}",
    ]
    if items:
        lines.append(f"Items: {items}")
    lines.append(f"Total: {_money(order.total_amount, currency)}")
    lines.append(f"Order Date: {_date(order.created_at)}")
    if order.status == "shipped":
        destination = order.shipping_city or order.shipping_address
        lines.append("")
        lines.append(
            f"Your order has been shipped to {destination}." if destination
            else "Your order has been shipped."
        )
    elif order.status in {"pending", "processing"}:
        lines.append("")
        lines.append("Your order is being prepared for shipping.")
    return ToolResult(
        status=ToolStatus.OK,
        content="\n".join(lines),
        data={"order_number": order.order_number, "order_status": order.status},
    )


def _within_filters(product: ProductSummary, args: ProductSearchArgs) -> bool:
    if args.category and (product.category or "").lower() != args.category.lower():
        return False
    if args.min_price is not None and product.price < args.min_price:
        return False
    if args.max_price is not None and product.price > args.max_price:
        return False
    return True


def _fallback_matches(
    args: ProductSearchArgs, catalog: list[ProductSummary], limit: int
) -> list[ProductSummary]:
    tokens = {token for token in _TOKEN.findall(args.query.lower()) if len(token) >= 3}
    if not tokens:
        return []
    scored = []
    for product in catalog:
        if not _within_filters(product, args):
            continue
        text = " ".join(
            part for part in (product.name, product.description, product.category) if part
        ).lower()
        words = set(_TOKEN.findall(text))
        hits = sum(1 for token in tokens if token in words or any(w.startswith(token) for w in words))
        if hits:
            scored.append((hits, product))
    scored.sort(key=lambda item: (-item[0], not item[1].is_featured, item[1].name))
    return [product for _, product in scored[:limit]]


def product_search(args: ProductSearchArgs, context: ToolContext) -> ToolResult:
    limit = context.settings.product_search_limit
    products = context.commerce.search_products(
        context.organization_id,
        args.query,
        category=args.category,
        min_price=args.min_price,
        max_price=args.max_price,
        limit=limit,
    )
    source = "search"
    if not products:
        products = _fallback_matches(args, context.bundle.catalog.products, limit)
        source = "catalog"
    if not products:
        return ToolResult(
            status=ToolStatus.NOT_FOUND,
            content=(
                f'I couldn\'t find any products matching "{args.query}". You might want '
                "to browse our full catalog or try a different search term."
            ),
            data={"query": args.query},
        )
    currency = context.bundle.store.currency
    listing = "\n".join(f"{p.name} - {_money(p.price, currency)}" for p in products)
    return ToolResult(
        status=ToolStatus.OK,
        content=(
            f'Here are some products matching "{args.query}":\n\n{listing}\n\n'
            "Would you like more information about any of these products?"
        ),
        data={
            "query": args.query,
            "product_ids": [p.id for p in products],
            "source": source,
        },
    )


def check_shipping_status(args: ShippingStatusArgs, context: ToolContext) -> ToolResult:
    lookup = OrderLookupArgs(order_number=args.order_number)
    order = _order_from_bundle(context, lookup) or context.commerce.find_order(
        context.organization_id, order_number=args.order_number
    )
    if order is None:
        return ToolResult(
            status=ToolStatus.NOT_FOUND,
            content=(
                f"I couldn't find an order with number {args.order_number}. Please "
                "double-check the order number."
            ),
            data={"order_number": args.order_number},
        )
    number = order.order_number
    address = ", ".join(part for part in (order.shipping_address, order.shipping_city) if part)
    if order.status == "pending":
        text = f"Order #{number} has been received and is waiting to be processed."
    elif order.status == "processing":
        text = f"Order #{number} is being prepared for shipping."
    elif order.status == "shipped":
        text = f"Order #{number} was shipped on {_date(order.shipped_at)}"
        if order.tracking_number:
            text += f" with tracking number {order.tracking_number}"
        text += f". It is on its way to {address}." if address else "."
    elif order.status == "delivered":
        text = f"Order #{number} was delivered on {_date(order.delivered_at)}"
        text += f" to {address}." if address else "."
    elif order.status == "cancelled":
        text = f"Order #{number} was cancelled and will not be shipped."
    else:
        text = f"Order #{number} currently has status '{order.status}'."
    return ToolResult(
        status=ToolStatus.OK,
        content=text,
        data={
            "order_number": number,
            "order_status": order.status,
            "tracking_number": order.tracking_number,
        },
    )


def get_store_policies(args: StorePolicyArgs, context: ToolContext) -> ToolResult:
    override = context.bundle.store.policies.get(args.policy_type)
    if override is None:
        override = context.commerce.get_store_policy(context.organization_id, args.policy_type)
    text = override or DEFAULT_POLICIES[args.policy_type]
    return ToolResult(
        status=ToolStatus.OK,
        content=text,
        data={"policy_type": args.policy_type, "source": "store" if override else "default"},
    )


def escalate_to_agent(args: EscalateArgs, context: ToolContext) -> ToolResult:
    return ToolResult(
        status=ToolStatus.ESCALATE,
        content=(
            "I'm connecting you with one of our support specialists who will be able "
            "to help you better. Please hold on for just a moment."
        ),
        data={"reason": args.reason, "priority": args.priority},
    )


BUILTIN_TOOLS = (
    ToolSpec(
        name="order_lookup",
        description="Look up an order by order number or by the customer's email address.",
        args_model=OrderLookupArgs,
        handler=order_lookup,
    ),
    ToolSpec(
        name="product_search",
        description="Search the store's active products, optionally by category or price.",
        args_model=ProductSearchArgs,
        handler=product_search,
    ),
    ToolSpec(
        name="check_shipping_status",
        description="Report the shipping status, dates and address of an order.",
        args_model=ShippingStatusArgs,
        handler=check_shipping_status,
    ),
    ToolSpec(
        name="get_store_policies",
        description="Return the store's returns, shipping or exchanges policy.",
        args_model=StorePolicyArgs,
        handler=get_store_policies,
    ),
    ToolSpec(
        name="escalate_to_agent",
        description="Hand the conversation to a human agent when you cannot help.",
        args_model=EscalateArgs,
        handler=escalate_to_agent,
    ),
)
