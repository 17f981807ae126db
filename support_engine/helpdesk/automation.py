"""Side effects triggered by helpdesk events.

The reconciler never waits on these. It hands callables to a ``Dispatcher``;
the HTTP layer passes FastAPI's ``BackgroundTasks.add_task`` so they run after
the response is sent, and tests pass :func:`run_immediately`.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from typing import Any, Protocol
from uuid import UUID

from ..context.schemas import StaffContact

logger = logging.getLogger(__name__)

Dispatcher = Callable[..., Any]


class HelpdeskAutomation(Protocol):
    """Outbound actions towards the helpdesk and staff."""

    def assign_conversation(
        self,
        organization_id: UUID,
        conversation_id: int,
        *,
        assignee_id: int | None = None,
        team_id: int | None = None,
    ) -> None: ...

    def notify_managers(
        self,
        organization_id: UUID,
        conversation_id: int,
        recipients: Sequence[StaffContact],
        *,
        reason: str,
    ) -> None: ...

    def trigger_follow_up(
        self, organization_id: UUID, conversation_id: int, topic: str
    ) -> None: ...

    def schedule_satisfaction_survey(
        self, organization_id: UUID, conversation_id: int
    ) -> None: ...


class LoggingHelpdeskAutomation:
    """Default automation that records each action in the application log."""

    def assign_conversation(
        self,
        organization_id: UUID,
        conversation_id: int,
        *,
        assignee_id: int | None = None,
        team_id: int | None = None,
    ) -> None:
        logger.info(
            "Auto-assigning conversation %s (org=%s) to assignee=%s team=%s",
            conversation_id,
            organization_id,
            assignee_id,
            team_id,
        )

    def notify_managers(
        self,
        organization_id: UUID,
        conversation_id: int,
        recipients: Sequence[StaffContact],
        *,
        reason: str,
    ) -> None:
        for recipient in recipients:
            logger.info(
                "Notifying %s about conversation %s (org=%s): %s",
                recipient.email,
                conversation_id,
                organization_id,
                reason,
            )

    def trigger_follow_up(
        self, organization_id: UUID, conversation_id: int, topic: str
    ) -> None:
        logger.info(
            "Follow-up workflow %r triggered for conversation %s (org=%s)",
            topic,
            conversation_id,
            organization_id,
        )

    def schedule_satisfaction_survey(
        self, organization_id: UUID, conversation_id: int
    ) -> None:
        logger.info(
            "Satisfaction survey scheduled for conversation %s (org=%s)",
            conversation_id,
            organization_id,
        )


def guarded(name: str, fn: Callable[..., Any]) -> Callable[..., None]:
    """Wrap a side effect so a failure is logged instead of propagating.

    Side effects run after the webhook has been acknowledged; there is no
    caller left to report to.
    """

    def runner(*args: Any, **kwargs: Any) -> None:
        try:
            fn(*args, **kwargs)
        except Exception:
            logger.exception("Helpdesk side effect %s failed", name)

    return runner


def run_immediately(fn: Callable[..., Any], *args: Any, **kwargs: Any) -> None:
    """Dispatcher that runs the side effect inline."""

    fn(*args, **kwargs)
