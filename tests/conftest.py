import pathlib
import sys
import uuid
from datetime import datetime, timedelta, timezone

import pytest
from fastapi import FastAPI, Request

sys.path.append(str(pathlib.Path(__file__).resolve().parents[1]))
from support_engine.app_logging import init_logging
from support_engine.config import EngineSettings
from support_engine.context import schemas as ctx
from support_engine.context.aggregator import ContextAggregator
from support_engine.context.repository import InMemoryCommerceRepository
from support_engine.dialogue.engine import TurnEngine
from support_engine.dialogue.llm import ModelReply, ToolCall
from support_engine.dialogue.orchestrator import DialogueOrchestrator
from support_engine.helpdesk.repository import InMemoryHelpdeskRepository
from support_engine.sessions.repository import InMemorySessionRepository
from support_engine.sessions.service import SessionStore, shared_session_scope
from support_engine.tools import default_tool_executor

ORG_ID = uuid.UUID("6f1c2d9e-3b7a-4c1e-9a55-0d2f3e4a5b6c")
CUSTOMER_ID = uuid.UUID("0b8f3c41-5d2e-4f6a-8b7c-9d0e1f2a3b4c")
NOW = datetime(2024, 5, 20, 12, 0, tzinfo=timezone.utc)


class ScriptedLLM:
    """LLM client that replays canned replies and records each request."""

    def __init__(self, *replies: ModelReply) -> None:
        self._replies = list(replies)
        self.calls: list[dict] = []

    def complete(self, *, model, messages, tools=None, params=None):
        self.calls.append(
            {"model": model, "messages": list(messages), "tools": tools, "params": params}
        )
        if not self._replies:
            raise AssertionError("ScriptedLLM ran out of replies")
        reply = self._replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply


def text_reply(content: str, model: str = "gpt-4o-mini") -> ModelReply:
    return ModelReply(content=content, model=model)


def tool_reply(
    name: str, arguments: str, content: str | None = None, model: str = "gpt-4o-mini"
) -> ModelReply:
    return ModelReply(
        content=content,
        model=model,
        tool_calls=[ToolCall(id=f"call_{name}", name=name, arguments=arguments)],
    )


@pytest.fixture
def settings() -> EngineSettings:
    return EngineSettings()


@pytest.fixture
def commerce() -> InMemoryCommerceRepository:
    repo = InMemoryCommerceRepository()
    repo.add_store(
        ctx.StoreProfile(
            id=ORG_ID,
            name="Lumen Living",
            email="help@lumen.example",
            phone="+31 20 555 0100",
            currency="EUR",
        )
    )
    repo.add_customer(
        ORG_ID,
        ctx.CustomerProfile(
            id=CUSTOMER_ID,
            email="sanne@example.com",
            first_name="Sanne",
            last_name="de Vries",
        ),
    )
    repo.add_order(
        ORG_ID,
        ctx.OrderSummary(
            id=uuid.uuid4(),
            order_number="1001",
            status="shipped",
            total_amount=149.90,
            customer_id=CUSTOMER_ID,
            customer_email="sanne@example.com",
            shipping_address="Keizersgracht 1",
            shipping_city="Amsterdam",
            tracking_number="3SABC123",
            created_at=NOW - timedelta(days=6),
            shipped_at=NOW - timedelta(days=4),
            lines=[
                ctx.OrderLine(
                    product_id=1,
                    product_name="Linen Throw",
                    quantity=2,
                    unit_price=74.95,
                    category="Textiles",
                )
            ],
        ),
    )
    repo.add_order(
        ORG_ID,
        ctx.OrderSummary(
            id=uuid.uuid4(),
            order_number="0998",
            status="delivered",
            total_amount=89.00,
            customer_id=CUSTOMER_ID,
            customer_email="sanne@example.com",
            created_at=NOW - timedelta(days=40),
            delivered_at=NOW - timedelta(days=36),
            lines=[
                ctx.OrderLine(
                    product_id=2,
                    product_name="Oak Side Table",
                    quantity=1,
                    unit_price=89.00,
                    category="Furniture",
                )
            ],
        ),
    )
    repo.add_product(
        ORG_ID,
        ctx.ProductSummary(
            id=1, name="Linen Throw", description="Stonewashed linen", category="Textiles",
            price=74.95, is_featured=True,
        ),
    )
    repo.add_product(
        ORG_ID,
        ctx.ProductSummary(
            id=2, name="Oak Side Table", description="Solid oak", category="Furniture",
            price=89.00,
        ),
    )
    repo.add_product(
        ORG_ID,
        ctx.ProductSummary(
            id=3, name="Ceramic Vase", description="Hand-thrown stoneware vase",
            category="Decor", price=39.50, is_featured=True,
        ),
    )
    repo.add_knowledge(
        ORG_ID,
        ctx.KnowledgeEntry(
            id=1,
            question="How long does delivery take?",
            answer="Standard delivery takes 3-5 business days.",
            category="shipping",
            effectiveness_score=0.9,
        ),
    )
    return repo


@pytest.fixture
def session_store() -> SessionStore:
    return SessionStore(InMemorySessionRepository(), clock=lambda: NOW)


@pytest.fixture
def helpdesk() -> InMemoryHelpdeskRepository:
    repo = InMemoryHelpdeskRepository()
    repo.map_account(7, ORG_ID)
    return repo


@pytest.fixture
def engine_factory(settings, commerce, session_store):
    """Build a ``TurnEngine`` around a scripted LLM."""

    aggregators: list[ContextAggregator] = []

    def _create(llm: ScriptedLLM, engine_settings: EngineSettings | None = None) -> TurnEngine:
        active = engine_settings or settings
        aggregator = ContextAggregator(commerce, settings=active)
        aggregators.append(aggregator)
        orchestrator = DialogueOrchestrator(
            llm, default_tool_executor(), commerce, settings=active
        )
        return TurnEngine(
            shared_session_scope(session_store), aggregator, orchestrator, settings=active
        )

    yield _create
    for aggregator in aggregators:
        aggregator.shutdown()


@pytest.fixture
def app_factory(monkeypatch):
    def _create_app(log_dir: str, log_request_bodies: bool = False):
        """Create a FastAPI app with logging initialised."""
        monkeypatch.setenv("LOG_DIR", str(log_dir))
        if log_request_bodies:
            monkeypatch.setenv("LOG_REQUEST_BODIES", "true")
        app = FastAPI()

        @app.post("/echo")
        async def echo(request: Request):
            return await request.json()

        init_logging(app)
        return app

    return _create_app
