from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone

import pytest

from conftest import CUSTOMER_ID, NOW, ORG_ID
from support_engine.context import schemas
from support_engine.context.insights import (
    CustomerInsightService,
    InsightAction,
    purchase_frequency,
    select_slice,
)
from support_engine.core.errors import AccountNotMappedError, ContactNotMappedError
from support_engine.helpdesk.schemas import ContactMapping


@pytest.fixture
def insights(commerce, helpdesk, settings):
    helpdesk.map_contact(
        ContactMapping(organization_id=ORG_ID, external_contact_id=42, customer_id=CUSTOMER_ID)
    )
    return CustomerInsightService(commerce, helpdesk, settings=settings, clock=lambda: NOW)


def test_view_for_mapped_contact(insights):
    view = insights.for_contact(42, 7)

    assert view.customer.email == "sanne@example.com"
    assert view.customer.order_count == 2
    assert [o.order_number for o in view.recent_orders] == ["1001", "0998"]
    assert view.insights.favorite_categories == ["Textiles", "Furniture"]
    assert view.insights.average_order_value == pytest.approx(119.45)
    assert view.insights.purchase_frequency == "frequent"
    assert [p.name for p in view.recommendations.suggested_products] == [
        "Ceramic Vase",
        "Linen Throw",
    ]
    assert view.recommendations.discount_opportunities == []


def test_large_cart_offers_discount(insights, commerce):
    commerce.set_cart(
        ORG_ID,
        CUSTOMER_ID,
        schemas.CartSnapshot(
            items=[
                schemas.CartLine(
                    product_id=2, product_name="Oak Side Table", quantity=6, unit_price=89.0
                )
            ]
        ),
    )

    view = insights.for_contact(42, 7)

    assert view.cart_total == pytest.approx(534.0)
    assert view.recommendations.discount_opportunities[0].value == "10%"


def test_unmapped_account_and_contact(insights):
    with pytest.raises(AccountNotMappedError):
        insights.for_contact(42, 999)
    with pytest.raises(ContactNotMappedError):
        insights.for_contact(43, 7)


def test_select_slice_shapes(insights):
    view = insights.for_contact(42, 7)

    assert set(select_slice(view, InsightAction.ORDERS)) == {"orders"}
    assert select_slice(view, InsightAction.CART)["cart"]["items_count"] == 0
    assert "favorite_categories" in select_slice(view, InsightAction.INSIGHTS)["insights"]
    assert select_slice(view, InsightAction.CONTEXT)["context"]["customer"]["name"] == (
        "Sanne de Vries"
    )


def test_purchase_frequency_buckets():
    now = datetime(2024, 6, 1, tzinfo=timezone.utc)

    def stats(days, count):
        return schemas.CustomerStats(
            order_count=count, first_order_at=now - timedelta(days=days)
        )

    assert purchase_frequency(stats(10, 1), now) == "new"
    assert purchase_frequency(stats(50, 4), now) == "frequent"
    assert purchase_frequency(stats(100, 2), now) == "regular"
    assert purchase_frequency(stats(400, 2), now) == "occasional"


def test_support_history_is_stable_while_webhooks_write(helpdesk):
    def mirror_conversation(conversation_id):
        with helpdesk.mirror_for_update(ORG_ID, conversation_id) as mirror:
            mirror.external_contact_id = 42
            mirror.started_at = NOW

    def read_history(_):
        return helpdesk.contact_history(ORG_ID, 42).previous_conversations

    with ThreadPoolExecutor(max_workers=8) as pool:
        writes = [pool.submit(mirror_conversation, index) for index in range(200)]
        counts = list(pool.map(read_history, range(200)))
        for write in writes:
            write.result()

    assert all(0 <= count <= 200 for count in counts)
    assert helpdesk.contact_history(ORG_ID, 42).previous_conversations == 200
