"""Service wiring shared by the HTTP routers.

With ``DATABASE_URL`` set every component is backed by PostgreSQL; without
it the engine runs on in-memory repositories, which is only useful for local
experiments and tests. Routers resolve their services through the
``get_*`` dependencies below so tests can swap them via
``app.dependency_overrides``.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Callable, Iterator
from contextlib import AbstractContextManager as ContextManager, contextmanager, nullcontext
from dataclasses import dataclass
from functools import lru_cache, partial

import psycopg

from ..config import EngineSettings, get_settings
from ..context.aggregator import ContextAggregator
from ..context.insights import CustomerInsightService
from ..context.repository import (
    CommerceRepository,
    InMemoryCommerceRepository,
    PostgresCommerceRepository,
)
from ..core.db import transaction
from ..dialogue.engine import TurnEngine
from ..dialogue.llm import OpenAIChatClient
from ..dialogue.orchestrator import DialogueOrchestrator
from ..dialogue.providers import ProviderRegistry
from ..helpdesk.automation import HelpdeskAutomation, LoggingHelpdeskAutomation
from ..helpdesk.reconciler import WebhookReconciler
from ..helpdesk.repository import (
    InMemoryHelpdeskRepository,
    PostgresHelpdeskRepository,
    postgres_unit_of_work,
)
from ..sessions.repository import InMemorySessionRepository, PostgresSessionRepository
from ..sessions.service import (
    SessionScope,
    SessionStore,
    postgres_session_scope,
    shared_session_scope,
)
from ..tools import default_tool_executor

logger = logging.getLogger(__name__)

ReconcilerScope = Callable[[], ContextManager[WebhookReconciler]]
InsightScope = Callable[[], ContextManager[CustomerInsightService]]


@dataclass
class EngineComponents:
    settings: EngineSettings
    commerce: CommerceRepository
    aggregator: ContextAggregator
    turn_engine: TurnEngine
    reconciler_scope: ReconcilerScope
    insight_scope: InsightScope

    def shutdown(self) -> None:
        self.aggregator.shutdown()


def _turn_engine(
    settings: EngineSettings,
    commerce: CommerceRepository,
    aggregator: ContextAggregator,
    sessions: SessionScope,
) -> TurnEngine:
    credentials = ProviderRegistry().get_credentials(settings.llm_provider)
    llm = OpenAIChatClient(
        credentials,
        timeout=settings.llm_timeout_seconds,
        max_retries=settings.llm_max_retries,
    )
    orchestrator = DialogueOrchestrator(
        llm, default_tool_executor(), commerce, settings=settings
    )
    return TurnEngine(sessions, aggregator, orchestrator, settings=settings)


def postgres_components(
    database_url: str,
    settings: EngineSettings,
    automation: HelpdeskAutomation | None = None,
) -> EngineComponents:
    commerce = PostgresCommerceRepository(partial(psycopg.connect, database_url))
    aggregator = ContextAggregator(commerce, settings=settings)
    automation = automation or LoggingHelpdeskAutomation()

    @contextmanager
    def reconciler_scope() -> Iterator[WebhookReconciler]:
        with transaction(database_url) as conn:
            yield WebhookReconciler(
                PostgresHelpdeskRepository(conn),
                commerce=commerce,
                unit_of_work=partial(postgres_unit_of_work, database_url),
                sessions=SessionStore(PostgresSessionRepository(conn)),
                automation=automation,
                settings=settings,
            )

    @contextmanager
    def insight_scope() -> Iterator[CustomerInsightService]:
        with transaction(database_url) as conn:
            yield CustomerInsightService(
                commerce, PostgresHelpdeskRepository(conn), settings=settings
            )

    return EngineComponents(
        settings=settings,
        commerce=commerce,
        aggregator=aggregator,
        turn_engine=_turn_engine(
            settings, commerce, aggregator, partial(postgres_session_scope, database_url)
        ),
        reconciler_scope=reconciler_scope,
        insight_scope=insight_scope,
    )


def in_memory_components(
    settings: EngineSettings,
    *,
    commerce: InMemoryCommerceRepository | None = None,
    helpdesk: InMemoryHelpdeskRepository | None = None,
    sessions: SessionStore | None = None,
    automation: HelpdeskAutomation | None = None,
) -> EngineComponents:
    commerce = commerce or InMemoryCommerceRepository()
    helpdesk = helpdesk or InMemoryHelpdeskRepository()
    sessions = sessions or SessionStore(InMemorySessionRepository())
    aggregator = ContextAggregator(commerce, settings=settings)
    reconciler = WebhookReconciler(
        helpdesk,
        commerce=commerce,
        unit_of_work=helpdesk.unit_of_work,
        sessions=sessions,
        automation=automation,
        settings=settings,
    )
    insights = CustomerInsightService(commerce, helpdesk, settings=settings)
    return EngineComponents(
        settings=settings,
        commerce=commerce,
        aggregator=aggregator,
        turn_engine=_turn_engine(
            settings, commerce, aggregator, shared_session_scope(sessions)
        ),
        reconciler_scope=lambda: nullcontext(reconciler),
        insight_scope=lambda: nullcontext(insights),
    )


@lru_cache(maxsize=1)
def get_components() -> EngineComponents:
    settings = get_settings()
    database_url = os.getenv("DATABASE_URL")
    if database_url:
        return postgres_components(database_url, settings)
    logger.warning("DATABASE_URL is not set; using in-memory repositories")
    return in_memory_components(settings)


def get_engine_settings() -> EngineSettings:
    return get_components().settings


def get_turn_engine() -> TurnEngine:
    return get_components().turn_engine


def get_reconciler_scope() -> ReconcilerScope:
    return get_components().reconciler_scope


def get_insight_scope() -> InsightScope:
    return get_components().insight_scope


def shutdown_components() -> None:
    if get_components.cache_info().currsize:
        get_components().shutdown()
    get_components.cache_clear()
