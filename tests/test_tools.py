import json

import pytest

from conftest import CUSTOMER_ID, ORG_ID
from support_engine.context.aggregator import ContextAggregator
from support_engine.core.errors import UpstreamServiceError
from support_engine.tools import default_tool_executor
from support_engine.tools.executor import INVALID_ARGS_TEXT, UNKNOWN_TOOL_TEXT, ToolContext
from support_engine.tools.schemas import ToolStatus


@pytest.fixture
def executor():
    return default_tool_executor()


@pytest.fixture
def tool_context(commerce, settings, session_store):
    aggregator = ContextAggregator(commerce, settings=settings)
    try:
        session = session_store.get_or_create_session("tools", ORG_ID, CUSTOMER_ID)
        bundle = aggregator.build(session, ORG_ID)
    finally:
        aggregator.shutdown()
    return ToolContext(ORG_ID, bundle, commerce, settings)


def test_schemas_describe_every_builtin_tool(executor):
    names = [schema["function"]["name"] for schema in executor.schemas()]

    assert names == [
        "order_lookup",
        "product_search",
        "check_shipping_status",
        "get_store_policies",
        "escalate_to_agent",
    ]
    policy = executor.schemas()[3]["function"]["parameters"]
    assert policy["properties"]["policyType"]["enum"] == ["returns", "shipping", "exchanges"]


def test_order_lookup_formats_order(executor, tool_context):
    invocation = executor.execute("order_lookup", '{"orderNumber": "#1001"}', tool_context)

    assert invocation.result.status == ToolStatus.OK
    text = invocation.result.content
    assert text.startswith("I found your order #1001:")
    assert "Status: shipped" in text
    assert "Items: Linen Throw (Qty: 2)" in text
    assert "Total: EUR 149.90" in text
    assert "shipped to Amsterdam" in text
    assert invocation.arguments == {"order_number": "1001"}


def test_order_lookup_by_email_is_case_insensitive(executor, tool_context):
    invocation = executor.execute(
        "order_lookup", {"customerEmail": "SANNE@example.com"}, tool_context
    )

    assert invocation.result.status == ToolStatus.OK
    assert "#1001" in invocation.result.content


def test_order_lookup_not_found(executor, tool_context):
    invocation = executor.execute("order_lookup", '{"orderNumber": "4242"}', tool_context)

    assert invocation.result.status == ToolStatus.NOT_FOUND
    assert "4242" in invocation.result.content


def test_product_search_uses_repository_then_catalog(executor, tool_context):
    direct = executor.execute("product_search", {"query": "vase"}, tool_context)
    assert direct.result.status == ToolStatus.OK
    assert "Ceramic Vase - EUR 39.50" in direct.result.content
    assert direct.result.data["source"] == "search"

    fuzzy = executor.execute("product_search", {"query": "linen blanket"}, tool_context)
    assert fuzzy.result.status == ToolStatus.OK
    assert fuzzy.result.data["source"] == "catalog"
    assert fuzzy.result.data["product_ids"] == [1]

    none = executor.execute("product_search", {"query": "surfboard"}, tool_context)
    assert none.result.status == ToolStatus.NOT_FOUND


def test_catalog_fallback_respects_price_and_category(executor, tool_context):
    too_pricey = executor.execute(
        "product_search", {"query": "oak tables", "maxPrice": 50}, tool_context
    )
    assert too_pricey.result.status == ToolStatus.NOT_FOUND
    assert "Oak Side Table" not in too_pricey.result.content

    in_range = executor.execute(
        "product_search", {"query": "oak tables", "maxPrice": 100}, tool_context
    )
    assert in_range.result.data == {"product_ids": [2], "source": "catalog"}

    other_category = executor.execute(
        "product_search", {"query": "linen blanket", "category": "Furniture"}, tool_context
    )
    assert other_category.result.status == ToolStatus.NOT_FOUND

    same_category = executor.execute(
        "product_search", {"query": "linen blanket", "category": "textiles"}, tool_context
    )
    assert same_category.result.data["product_ids"] == [1]


def test_shipping_status_mentions_tracking(executor, tool_context):
    invocation = executor.execute(
        "check_shipping_status", json.dumps({"orderNumber": "1001"}), tool_context
    )

    assert invocation.result.content.startswith("Order #1001 was shipped on")
    assert "3SABC123" in invocation.result.content


def test_store_policy_prefers_store_text(executor, tool_context, commerce):
    default = executor.execute("get_store_policies", {"policyType": "returns"}, tool_context)
    assert default.result.data["source"] == "default"
    assert "30 days" in default.result.content

    commerce.stores[ORG_ID].policies["returns"] = "Returns within 14 days."
    store = executor.execute("get_store_policies", {"policyType": "returns"}, tool_context)
    assert store.result.content == "Returns within 14 days."
    assert store.result.data["source"] == "store"


def test_escalate_to_agent_requests_escalation(executor, tool_context):
    invocation = executor.execute(
        "escalate_to_agent", {"reason": "refund dispute", "priority": "high"}, tool_context
    )

    assert invocation.result.status == ToolStatus.ESCALATE
    assert invocation.result.escalation_reason == "refund dispute"


def test_unknown_tool_escalates(executor, tool_context):
    invocation = executor.execute("cancel_order", "{}", tool_context)

    assert invocation.result.status == ToolStatus.ESCALATE
    assert invocation.result.content == UNKNOWN_TOOL_TEXT
    assert invocation.result.escalation_reason == "unknown_tool"


@pytest.mark.parametrize(
    "name, arguments",
    [
        ("order_lookup", "{not json"),
        ("order_lookup", "[1, 2]"),
        ("order_lookup", "{}"),
        ("get_store_policies", '{"policyType": "warranty"}'),
        ("product_search", '{"query": "lamp", "minPrice": 50, "maxPrice": 10}'),
    ],
)
def test_invalid_arguments_are_typed_results(executor, tool_context, name, arguments):
    invocation = executor.execute(name, arguments, tool_context)

    assert invocation.result.status == ToolStatus.INVALID
    assert invocation.result.content == INVALID_ARGS_TEXT


def test_repository_failure_is_upstream_error(executor, tool_context, commerce, monkeypatch):
    def boom(*_args, **_kwargs):
        raise RuntimeError("connection reset")

    monkeypatch.setattr(commerce, "find_order", boom)

    with pytest.raises(UpstreamServiceError):
        executor.execute("order_lookup", {"orderNumber": "7777"}, tool_context)
