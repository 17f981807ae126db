"""Per-turn customer context assembly."""

from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, TypeVar
from uuid import UUID

from ..config import EngineSettings, get_settings
from ..core.errors import ContextUnavailableError, OrganizationNotFoundError
from ..sessions.schemas import ChatSession
from . import schemas
from .loyalty import loyalty_tier, support_priority
from .repository import CommerceRepository

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ContextAggregator:
    """Builds a :class:`~.schemas.CustomerContextBundle` for one turn.

    The reads are independent, so they are submitted to a shared
    :class:`ThreadPoolExecutor` and joined before the bundle is returned.
    Only the store profile is mandatory; every other read degrades to an
    empty value with a warning.
    """

    def __init__(
        self,
        repository: CommerceRepository,
        *,
        settings: EngineSettings | None = None,
        executor: ThreadPoolExecutor | None = None,
    ) -> None:
        self._repository = repository
        self._settings = settings or get_settings()
        self._executor = executor or ThreadPoolExecutor(
            max_workers=self._settings.context_workers,
            thread_name_prefix="context",
        )

    def build(
        self,
        session: ChatSession,
        organization_id: UUID,
        customer_id: UUID | None = None,
    ) -> schemas.CustomerContextBundle:
        customer_id = customer_id or session.customer_id
        settings = self._settings
        repo = self._repository

        store_future = self._executor.submit(repo.get_store_profile, organization_id)
        optional: dict[str, tuple[Future, Any]] = {
            "knowledge_base": (
                self._executor.submit(
                    repo.list_knowledge_base, organization_id, settings.knowledge_base_limit
                ),
                [],
            ),
            "catalog": (
                self._executor.submit(
                    repo.get_catalog_excerpt, organization_id, settings.catalog_excerpt_limit
                ),
                schemas.CatalogExcerpt(),
            ),
        }
        if customer_id is not None:
            optional.update(
                {
                    "customer": (
                        self._executor.submit(repo.get_customer, organization_id, customer_id),
                        None,
                    ),
                    "stats": (
                        self._executor.submit(
                            repo.get_customer_stats, organization_id, customer_id
                        ),
                        schemas.CustomerStats(),
                    ),
                    "recent_orders": (
                        self._executor.submit(
                            repo.list_recent_orders,
                            organization_id,
                            customer_id,
                            settings.recent_order_limit,
                        ),
                        [],
                    ),
                    "cart": (
                        self._executor.submit(repo.get_cart, organization_id, customer_id),
                        schemas.CartSnapshot(),
                    ),
                }
            )

        try:
            store = store_future.result()
        except Exception as exc:
            for future, _ in optional.values():
                future.cancel()
            logger.exception("Store profile fetch failed for organization %s", organization_id)
            raise ContextUnavailableError("Store profile could not be loaded") from exc
        if store is None:
            for future, _ in optional.values():
                future.cancel()
            raise OrganizationNotFoundError(f"Organization {organization_id} not found")

        results = {
            name: self._optional_result(name, future, default)
            for name, (future, default) in optional.items()
        }

        customer: schemas.CustomerProfile | None = results.get("customer")
        if customer is not None:
            stats: schemas.CustomerStats = results["stats"]
            tier = loyalty_tier(stats, settings.loyalty)
            customer = customer.model_copy(
                update={
                    "tier": tier,
                    "support_priority": support_priority(tier),
                    "lifetime_spend": stats.lifetime_spend,
                    "order_count": stats.order_count,
                }
            )
            return schemas.CustomerContextBundle(
                store=store,
                customer=customer,
                recent_orders=results["recent_orders"],
                cart=results["cart"],
                knowledge_base=results["knowledge_base"],
                catalog=results["catalog"],
            )

        if customer_id is not None:
            logger.info(
                "Customer %s not found for organization %s; treating as anonymous",
                customer_id,
                organization_id,
            )
        return schemas.CustomerContextBundle(
            store=store,
            knowledge_base=results["knowledge_base"],
            catalog=results["catalog"],
        )

    def _optional_result(self, name: str, future: Future[T], default: T) -> T:
        try:
            return future.result()
        except Exception:
            logger.warning("Context read %r failed; continuing without it", name, exc_info=True)
            return default

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False)
