"""Helpdesk integration: webhook reconciliation and agent-facing insights."""

from . import schemas
from .automation import HelpdeskAutomation, LoggingHelpdeskAutomation, run_immediately
from .reconciler import WebhookReconciler
from .repository import (
    InMemoryHelpdeskRepository,
    PostgresHelpdeskRepository,
    postgres_unit_of_work,
)
from .signatures import compute_signature, require_valid_signature, verify_signature

__all__ = [
    "HelpdeskAutomation",
    "InMemoryHelpdeskRepository",
    "LoggingHelpdeskAutomation",
    "PostgresHelpdeskRepository",
    "WebhookReconciler",
    "compute_signature",
    "postgres_unit_of_work",
    "require_valid_signature",
    "run_immediately",
    "schemas",
    "verify_signature",
]
