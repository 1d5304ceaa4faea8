"""
CaseDesk
Notification sink: the engine's only outlet toward users.

The workflow engine signals "notify user X of event Y" after a transition
has been committed.  Delivery (push, e-mail, in-app inbox) is somebody
else's job: plug in any object with a ``notify(user_id, event, payload)``
method.  ``LoggingNotificationSink`` is the default.
"""

import logging
from abc import ABC, abstractmethod

logger = logging.getLogger(__name__)

EVENT_TASK_ASSIGNED = "task_assigned"
EVENT_ADMIN_APPROVED = "admin_approved"
EVENT_MAIN_LAWYER_APPROVED = "main_lawyer_approved"
EVENT_TASK_APPROVED = "task_approved"
EVENT_STAGE_ENTERED = "stage_entered"
EVENT_MAIN_LAWYER_ASSIGNED = "main_lawyer_assigned"
EVENT_SLA_ESCALATED = "sla"

NOTIFICATION_EVENTS = {
    EVENT_TASK_ASSIGNED,
    EVENT_ADMIN_APPROVED,
    EVENT_MAIN_LAWYER_APPROVED,
    EVENT_TASK_APPROVED,
    EVENT_STAGE_ENTERED,
    EVENT_MAIN_LAWYER_ASSIGNED,
    EVENT_SLA_ESCALATED,
}


class NotificationSink(ABC):
    """Delivery-agnostic notification port."""

    @abstractmethod
    def notify(self, user_id: int, event: str, payload: dict | None = None) -> None:
        """Signal *event* to *user_id*.  May raise; the caller logs and moves on."""


class LoggingNotificationSink(NotificationSink):
    """Writes every notification to the application log."""

    def notify(self, user_id, event, payload=None):
        logger.info(
            "Notify user %s: %s",
            user_id,
            event,
            extra={"event_type": event, "user_id": user_id, "payload": payload or {}},
        )
