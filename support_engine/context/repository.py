"""Read-only access to storefront data (store, catalog, customers, orders)."""

from __future__ import annotations

import threading
from collections.abc import Callable
from typing import Any, Dict, List, Optional, Protocol
from uuid import UUID

import psycopg
from psycopg.rows import dict_row

from ..core.db import apply_organization_settings
from . import schemas


class CommerceRepository(Protocol):
    """Storefront reads used by the aggregator, the tools and the insights."""

    def get_store_profile(self, organization_id: UUID) -> Optional[schemas.StoreProfile]: ...

    def get_store_policy(self, organization_id: UUID, policy_type: str) -> Optional[str]: ...

    def get_store_setting(
        self, organization_id: UUID, setting_type: str
    ) -> Optional[Dict[str, Any]]: ...

    def list_knowledge_base(
        self, organization_id: UUID, limit: int
    ) -> List[schemas.KnowledgeEntry]: ...

    def get_catalog_excerpt(self, organization_id: UUID, limit: int) -> schemas.CatalogExcerpt: ...

    def get_customer(
        self, organization_id: UUID, customer_id: UUID
    ) -> Optional[schemas.CustomerProfile]: ...

    def get_customer_stats(
        self, organization_id: UUID, customer_id: UUID
    ) -> schemas.CustomerStats: ...

    def list_recent_orders(
        self, organization_id: UUID, customer_id: UUID, limit: int
    ) -> List[schemas.OrderSummary]: ...

    def get_cart(self, organization_id: UUID, customer_id: UUID) -> schemas.CartSnapshot: ...

    def find_order(
        self,
        organization_id: UUID,
        *,
        order_number: Optional[str] = None,
        customer_email: Optional[str] = None,
    ) -> Optional[schemas.OrderSummary]: ...

    def search_products(
        self,
        organization_id: UUID,
        query: str,
        *,
        category: Optional[str] = None,
        min_price: Optional[float] = None,
        max_price: Optional[float] = None,
        limit: int = 5,
    ) -> List[schemas.ProductSummary]: ...

    def list_featured_products(
        self, organization_id: UUID, limit: int
    ) -> List[schemas.ProductSummary]: ...

    def list_staff(
        self, organization_id: UUID, roles: tuple[str, ...]
    ) -> List[schemas.StaffContact]: ...


_ORDER_SELECT = """
    SELECT o.id, o.order_number, o.status, o.total_amount, o.customer_id,
           o.customer_email, o.shipping_address, o.shipping_city,
           o.tracking_number, o.created_at, o.shipped_at, o.delivered_at,
           COALESCE(
               json_agg(
                   json_build_object(
                       'product_id', oi.product_id,
                       'product_name', oi.product_name,
                       'quantity', oi.quantity,
                       'unit_price', oi.unit_price,
                       'category', p.category
                   ) ORDER BY oi.id
               ) FILTER (WHERE oi.id IS NOT NULL),
               '[]'::json
           ) AS lines
    FROM orders o
    LEFT JOIN order_items oi ON oi.order_id = o.id
    LEFT JOIN products p ON p.id = oi.product_id
"""


def _as_float(value: Any) -> float:
    return float(value) if value is not None else 0.0


def _order_from_row(row: Dict[str, Any]) -> schemas.OrderSummary:
    data = dict(row)
    data["total_amount"] = _as_float(data.get("total_amount"))
    data["lines"] = [schemas.OrderLine(**line) for line in data.get("lines") or []]
    return schemas.OrderSummary(**data)


def _product_from_row(row: Dict[str, Any]) -> schemas.ProductSummary:
    data = dict(row)
    data["price"] = _as_float(data.get("price"))
    return schemas.ProductSummary(**data)


class PostgresCommerceRepository:
    """PostgreSQL implementation of :class:`CommerceRepository`.

    Every read opens its own short-lived connection so independent reads can
    run concurrently on worker threads.
    """

    def __init__(self, connect: Callable[[], psycopg.Connection]) -> None:
        self._connect = connect

    def _fetch(
        self, organization_id: UUID, sql: str, params: tuple[Any, ...], *, one: bool = False
    ) -> Any:
        with self._connect() as conn:
            apply_organization_settings(conn, organization_id)
            with conn.cursor(row_factory=dict_row) as cur:
                cur.execute(sql, params)
                return cur.fetchone() if one else cur.fetchall()

    def get_store_profile(self, organization_id: UUID) -> Optional[schemas.StoreProfile]:
        row = self._fetch(
            organization_id,
            """
            SELECT o.id, o.name, o.email, o.phone, o.currency, o.business_hours,
                   COALESCE(
                       (SELECT json_object_agg(p.policy_type, p.content)
                        FROM store_policies p WHERE p.organization_id = o.id),
                       '{}'::json
                   ) AS policies
            FROM organizations o
            WHERE o.id = %s
            """,
            (organization_id,),
            one=True,
        )
        if not row:
            return None
        data = dict(row)
        data["business_hours"] = data.get("business_hours") or {}
        return schemas.StoreProfile(**data)

    def get_store_policy(self, organization_id: UUID, policy_type: str) -> Optional[str]:
        row = self._fetch(
            organization_id,
            "SELECT content FROM store_policies WHERE organization_id = %s AND policy_type = %s",
            (organization_id, policy_type),
            one=True,
        )
        return row["content"] if row else None

    def get_store_setting(
        self, organization_id: UUID, setting_type: str
    ) -> Optional[Dict[str, Any]]:
        row = self._fetch(
            organization_id,
            "SELECT settings FROM store_settings WHERE organization_id = %s AND setting_type = %s",
            (organization_id, setting_type),
            one=True,
        )
        return row["settings"] if row else None

    def list_knowledge_base(
        self, organization_id: UUID, limit: int
    ) -> List[schemas.KnowledgeEntry]:
        rows = self._fetch(
            organization_id,
            """
            SELECT id, question, answer, category, effectiveness_score
            FROM knowledge_base_entries
            WHERE is_active AND (organization_id = %s OR organization_id IS NULL)
            ORDER BY effectiveness_score DESC, id ASC
            LIMIT %s
            """,
            (organization_id, limit),
        )
        return [schemas.KnowledgeEntry(**row) for row in rows]

    def get_catalog_excerpt(self, organization_id: UUID, limit: int) -> schemas.CatalogExcerpt:
        rows = self._fetch(
            organization_id,
            """
            SELECT p.id, p.name, p.description, p.category, p.price, p.is_featured,
                   c.name AS collection_name
            FROM products p
            LEFT JOIN collections c ON c.id = p.collection_id
            WHERE p.organization_id = %s AND p.is_active
            ORDER BY p.is_featured DESC, p.name ASC
            LIMIT %s
            """,
            (organization_id, limit),
        )
        collections = self._fetch(
            organization_id,
            "SELECT name FROM collections WHERE organization_id = %s AND is_active ORDER BY name",
            (organization_id,),
        )
        return schemas.CatalogExcerpt(
            products=[_product_from_row(row) for row in rows],
            collections=[row["name"] for row in collections],
        )

    def get_customer(
        self, organization_id: UUID, customer_id: UUID
    ) -> Optional[schemas.CustomerProfile]:
        row = self._fetch(
            organization_id,
            """
            SELECT id, email, first_name, last_name, phone, created_at
            FROM customers
            WHERE id = %s AND organization_id = %s
            """,
            (customer_id, organization_id),
            one=True,
        )
        return schemas.CustomerProfile(**row) if row else None

    def get_customer_stats(
        self, organization_id: UUID, customer_id: UUID
    ) -> schemas.CustomerStats:
        row = self._fetch(
            organization_id,
            """
            SELECT COALESCE(SUM(total_amount), 0) AS lifetime_spend,
                   COUNT(*) AS order_count,
                   MIN(created_at) AS first_order_at,
                   MAX(created_at) AS last_order_at
            FROM orders
            WHERE organization_id = %s AND customer_id = %s AND status <> 'cancelled'
            """,
            (organization_id, customer_id),
            one=True,
        )
        data = dict(row or {})
        data["lifetime_spend"] = _as_float(data.get("lifetime_spend"))
        return schemas.CustomerStats(**data)

    def list_recent_orders(
        self, organization_id: UUID, customer_id: UUID, limit: int
    ) -> List[schemas.OrderSummary]:
        rows = self._fetch(
            organization_id,
            _ORDER_SELECT
            + """
            WHERE o.organization_id = %s AND o.customer_id = %s
            GROUP BY o.id
            ORDER BY o.created_at DESC
            LIMIT %s
            """,
            (organization_id, customer_id, limit),
        )
        return [_order_from_row(row) for row in rows]

    def get_cart(self, organization_id: UUID, customer_id: UUID) -> schemas.CartSnapshot:
        rows = self._fetch(
            organization_id,
            """
            SELECT ci.product_id, p.name AS product_name, p.category,
                   ci.quantity, p.price AS unit_price
            FROM cart_items ci
            JOIN products p ON p.id = ci.product_id
            WHERE ci.organization_id = %s AND ci.customer_id = %s
            ORDER BY ci.updated_at DESC
            """,
            (organization_id, customer_id),
        )
        items = []
        for row in rows:
            data = dict(row)
            data["unit_price"] = _as_float(data.get("unit_price"))
            items.append(schemas.CartLine(**data))
        return schemas.CartSnapshot(items=items)

    def find_order(
        self,
        organization_id: UUID,
        *,
        order_number: Optional[str] = None,
        customer_email: Optional[str] = None,
    ) -> Optional[schemas.OrderSummary]:
        if order_number:
            where, param = "o.order_number = %s", order_number
        elif customer_email:
            where, param = "lower(o.customer_email) = lower(%s)", customer_email
        else:
            return None
        row = self._fetch(
            organization_id,
            _ORDER_SELECT
            + f"""
            WHERE o.organization_id = %s AND {where}
            GROUP BY o.id
            ORDER BY o.created_at DESC
            LIMIT 1
            """,
            (organization_id, param),
            one=True,
        )
        return _order_from_row(row) if row else None

    def search_products(
        self,
        organization_id: UUID,
        query: str,
        *,
        category: Optional[str] = None,
        min_price: Optional[float] = None,
        max_price: Optional[float] = None,
        limit: int = 5,
    ) -> List[schemas.ProductSummary]:
        pattern = f"%{query.strip()}%"
        clauses = [
            "p.organization_id = %s",
            "p.is_active",
            "(p.name ILIKE %s OR p.description ILIKE %s OR p.category ILIKE %s)",
        ]
        params: list[Any] = [organization_id, pattern, pattern, pattern]
        if category:
            clauses.append("p.category ILIKE %s")
            params.append(category)
        if min_price is not None:
            clauses.append("p.price >= %s")
            params.append(min_price)
        if max_price is not None:
            clauses.append("p.price <= %s")
            params.append(max_price)
        params.extend([pattern, limit])
        rows = self._fetch(
            organization_id,
            f"""
            SELECT p.id, p.name, p.description, p.category, p.price, p.is_featured,
                   c.name AS collection_name
            FROM products p
            LEFT JOIN collections c ON c.id = p.collection_id
            WHERE {' AND '.join(clauses)}
            ORDER BY CASE WHEN p.name ILIKE %s THEN 0 ELSE 1 END,
                     p.is_featured DESC, p.name ASC
            LIMIT %s
            """,
            tuple(params),
        )
        return [_product_from_row(row) for row in rows]

    def list_featured_products(
        self, organization_id: UUID, limit: int
    ) -> List[schemas.ProductSummary]:
        rows = self._fetch(
            organization_id,
            """
            SELECT p.id, p.name, p.description, p.category, p.price, p.is_featured,
                   c.name AS collection_name
            FROM products p
            LEFT JOIN collections c ON c.id = p.collection_id
            WHERE p.organization_id = %s AND p.is_active AND p.is_featured
            ORDER BY p.name ASC
            LIMIT %s
            """,
            (organization_id, limit),
        )
        return [_product_from_row(row) for row in rows]

    def list_staff(
        self, organization_id: UUID, roles: tuple[str, ...]
    ) -> List[schemas.StaffContact]:
        rows = self._fetch(
            organization_id,
            """
            SELECT email, name, role
            FROM organization_members
            WHERE organization_id = %s AND is_active AND role = ANY(%s)
            ORDER BY email
            """,
            (organization_id, list(roles)),
        )
        return [schemas.StaffContact(**row) for row in rows]


class InMemoryCommerceRepository:
    """Dictionary-backed storefront used by tests and local development."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.stores: Dict[UUID, schemas.StoreProfile] = {}
        self.settings: Dict[tuple[UUID, str], Dict[str, Any]] = {}
        self.knowledge: Dict[UUID | None, List[schemas.KnowledgeEntry]] = {}
        self.catalog: Dict[UUID, List[schemas.ProductSummary]] = {}
        self.collections: Dict[UUID, List[str]] = {}
        self.customers: Dict[UUID, Dict[UUID, schemas.CustomerProfile]] = {}
        self.orders: Dict[UUID, List[schemas.OrderSummary]] = {}
        self.carts: Dict[tuple[UUID, UUID], schemas.CartSnapshot] = {}
        self.staff: Dict[UUID, List[schemas.StaffContact]] = {}

    # Fixture helpers ---------------------------------------------------------
    def add_store(self, store: schemas.StoreProfile) -> schemas.StoreProfile:
        with self._lock:
            self.stores[store.id] = store
        return store

    def add_customer(
        self, organization_id: UUID, customer: schemas.CustomerProfile
    ) -> schemas.CustomerProfile:
        with self._lock:
            self.customers.setdefault(organization_id, {})[customer.id] = customer
        return customer

    def add_order(
        self, organization_id: UUID, order: schemas.OrderSummary
    ) -> schemas.OrderSummary:
        with self._lock:
            self.orders.setdefault(organization_id, []).append(order)
        return order

    def add_product(
        self, organization_id: UUID, product: schemas.ProductSummary
    ) -> schemas.ProductSummary:
        with self._lock:
            self.catalog.setdefault(organization_id, []).append(product)
        return product

    def add_knowledge(
        self, organization_id: UUID | None, entry: schemas.KnowledgeEntry
    ) -> schemas.KnowledgeEntry:
        with self._lock:
            self.knowledge.setdefault(organization_id, []).append(entry)
        return entry

    def set_cart(
        self, organization_id: UUID, customer_id: UUID, cart: schemas.CartSnapshot
    ) -> None:
        with self._lock:
            self.carts[(organization_id, customer_id)] = cart

    def set_store_setting(
        self, organization_id: UUID, setting_type: str, settings: Dict[str, Any]
    ) -> None:
        with self._lock:
            self.settings[(organization_id, setting_type)] = settings

    def add_staff(self, organization_id: UUID, contact: schemas.StaffContact) -> None:
        with self._lock:
            self.staff.setdefault(organization_id, []).append(contact)

    # Reads -------------------------------------------------------------------
    def get_store_profile(self, organization_id: UUID) -> Optional[schemas.StoreProfile]:
        store = self.stores.get(organization_id)
        return store.model_copy(deep=True) if store else None

    def get_store_policy(self, organization_id: UUID, policy_type: str) -> Optional[str]:
        store = self.stores.get(organization_id)
        return store.policies.get(policy_type) if store else None

    def get_store_setting(
        self, organization_id: UUID, setting_type: str
    ) -> Optional[Dict[str, Any]]:
        return self.settings.get((organization_id, setting_type))

    def list_knowledge_base(
        self, organization_id: UUID, limit: int
    ) -> List[schemas.KnowledgeEntry]:
        entries = self.knowledge.get(organization_id, []) + self.knowledge.get(None, [])
        entries = sorted(entries, key=lambda entry: (-entry.effectiveness_score, entry.id))
        return entries[:limit]

    def get_catalog_excerpt(self, organization_id: UUID, limit: int) -> schemas.CatalogExcerpt:
        products = sorted(
            self.catalog.get(organization_id, []),
            key=lambda product: (not product.is_featured, product.name),
        )
        return schemas.CatalogExcerpt(
            products=products[:limit],
            collections=sorted(self.collections.get(organization_id, [])),
        )

    def get_customer(
        self, organization_id: UUID, customer_id: UUID
    ) -> Optional[schemas.CustomerProfile]:
        customer = self.customers.get(organization_id, {}).get(customer_id)
        return customer.model_copy(deep=True) if customer else None

    def _customer_orders(
        self, organization_id: UUID, customer_id: UUID
    ) -> List[schemas.OrderSummary]:
        orders = [
            order
            for order in self.orders.get(organization_id, [])
            if order.customer_id == customer_id
        ]
        return sorted(orders, key=lambda order: order.created_at, reverse=True)

    def get_customer_stats(
        self, organization_id: UUID, customer_id: UUID
    ) -> schemas.CustomerStats:
        orders = [
            order
            for order in self._customer_orders(organization_id, customer_id)
            if order.status != "cancelled"
        ]
        if not orders:
            return schemas.CustomerStats()
        return schemas.CustomerStats(
            lifetime_spend=round(sum(order.total_amount for order in orders), 2),
            order_count=len(orders),
            first_order_at=min(order.created_at for order in orders),
            last_order_at=max(order.created_at for order in orders),
        )

    def list_recent_orders(
        self, organization_id: UUID, customer_id: UUID, limit: int
    ) -> List[schemas.OrderSummary]:
        return self._customer_orders(organization_id, customer_id)[:limit]

    def get_cart(self, organization_id: UUID, customer_id: UUID) -> schemas.CartSnapshot:
        cart = self.carts.get((organization_id, customer_id))
        return cart.model_copy(deep=True) if cart else schemas.CartSnapshot()

    def find_order(
        self,
        organization_id: UUID,
        *,
        order_number: Optional[str] = None,
        customer_email: Optional[str] = None,
    ) -> Optional[schemas.OrderSummary]:
        orders = sorted(
            self.orders.get(organization_id, []),
            key=lambda order: order.created_at,
            reverse=True,
        )
        for order in orders:
            if order_number and order.order_number == order_number:
                return order
            if (
                not order_number
                and customer_email
                and (order.customer_email or "").lower() == customer_email.lower()
            ):
                return order
        return None

    def search_products(
        self,
        organization_id: UUID,
        query: str,
        *,
        category: Optional[str] = None,
        min_price: Optional[float] = None,
        max_price: Optional[float] = None,
        limit: int = 5,
    ) -> List[schemas.ProductSummary]:
        needle = query.strip().lower()
        hits = []
        for product in self.catalog.get(organization_id, []):
            haystack = " ".join(
                part for part in (product.name, product.description, product.category) if part
            ).lower()
            if needle not in haystack:
                continue
            if category and (product.category or "").lower() != category.lower():
                continue
            if min_price is not None and product.price < min_price:
                continue
            if max_price is not None and product.price > max_price:
                continue
            hits.append(product)
        hits.sort(
            key=lambda product: (
                needle not in product.name.lower(),
                not product.is_featured,
                product.name,
            )
        )
        return hits[:limit]

    def list_featured_products(
        self, organization_id: UUID, limit: int
    ) -> List[schemas.ProductSummary]:
        featured = [p for p in self.catalog.get(organization_id, []) if p.is_featured]
        return sorted(featured, key=lambda product: product.name)[:limit]

    def list_staff(
        self, organization_id: UUID, roles: tuple[str, ...]
    ) -> List[schemas.StaffContact]:
        return [c for c in self.staff.get(organization_id, []) if c.role in roles]
