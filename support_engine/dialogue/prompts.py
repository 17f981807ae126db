"""System prompt assembly from the customer context bundle."""

from __future__ import annotations

from langdetect import DetectorFactory, LangDetectException, detect

from ..context.schemas import CustomerContextBundle

# langdetect is randomized unless seeded.
DetectorFactory.seed = 0

_MIN_DETECTABLE_CHARS = 12


def detect_language(text: str) -> str | None:
    """Return an ISO 639-1 code for ``text`` or ``None`` when unsure."""

    if not text or len(text.strip()) < _MIN_DETECTABLE_CHARS:
        return None
    try:
        return detect(text)
    except LangDetectException:
        return None


class PromptBuilder:
    """Render the system prompt: store identity, customer, policies, catalog, FAQ."""

    def __init__(self, *, max_products: int = 10, max_knowledge: int = 8) -> None:
        self._max_products = max_products
        self._max_knowledge = max_knowledge

    def system_prompt(
        self,
        bundle: CustomerContextBundle,
        message: str,
        reply_language: str | None = None,
    ) -> str:
        store = bundle.store
        sections = [
            f"You are a helpful customer service assistant for {store.name}. "
            "Always be polite, helpful and professional.",
            "Store information:\n"
            f"- Name: {store.name}\n"
            f"- Email: {store.email or 'Not available'}\n"
            f"- Phone: {store.phone or 'Not available'}\n"
            f"- Currency: {store.currency}",
            self._customer_section(bundle),
        ]
        if store.policies:
            sections.append(
                "Store policies:\n"
                + "\n".join(f"- {name}: {text}" for name, text in sorted(store.policies.items()))
            )
        if bundle.catalog.products:
            products = bundle.catalog.products[: self._max_products]
            sections.append(
                "Catalog excerpt:\n"
                + "\n".join(f"- {p.name} ({store.currency} {p.price:.2f})" for p in products)
            )
        if bundle.knowledge_base:
            entries = bundle.knowledge_base[: self._max_knowledge]
            sections.append(
                "Frequently asked questions:\n"
                + "\n".join(f"Q: {e.question}\nA: {e.answer}" for e in entries)
            )
        sections.append(
            "Guidelines:\n"
            "- For questions about a specific order use order_lookup or check_shipping_status.\n"
            "- For product questions use product_search.\n"
            "- For returns, shipping or exchange rules use get_store_policies.\n"
            "- If you cannot help or the customer is upset, use escalate_to_agent.\n"
            "- Keep answers concise and never invent order details."
        )
        language = reply_language or detect_language(message)
        sections.append(
            f"Reply in the language with ISO code '{language}'."
            if language
            else "Reply in the same language as the customer."
        )
        return "\n\n".join(section for section in sections if section)

    @staticmethod
    def _customer_section(bundle: CustomerContextBundle) -> str:
        customer = bundle.customer
        if customer is None:
            return "Customer: not logged in."
        return (
            "Customer context:\n"
            f"- Name: {customer.display_name}\n"
            f"- Email: {customer.email}\n"
            f"- Loyalty tier: {customer.tier.value}\n"
            f"- Previous orders: {customer.order_count}\n"
            f"- Items in cart: {bundle.cart.item_count}"
        )
