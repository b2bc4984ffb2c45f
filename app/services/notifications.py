"""
In-process domain events.

Task services publish events here instead of calling a socket server
directly; whatever pushes realtime updates to clients subscribes to the bus.
"""
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, DefaultDict, List, Type

from app.core.logging import get_logger
from app.models.base import utcnow

logger = get_logger(__name__)


@dataclass(frozen=True)
class TaskDeleted:
    task_id: int
    user_id: str
    occurred_at: datetime = field(default_factory=utcnow)


Handler = Callable[[object], None]


class NotificationBus:
    """Synchronous publish/subscribe keyed by event class."""

    def __init__(self) -> None:
        self._handlers: DefaultDict[Type, List[Handler]] = defaultdict(list)

    def subscribe(self, event_type: Type, handler: Handler) -> None:
        if handler not in self._handlers[event_type]:
            self._handlers[event_type].append(handler)

    def publish(self, event: object) -> None:
        for handler in list(self._handlers[type(event)]):
            try:
                handler(event)
            except Exception:
                # A broken subscriber must not undo a committed mutation
                logger.exception(
                    "notification.handler.failed",
                    extra={"event_type": type(event).__name__},
                )


def log_task_deleted(event: TaskDeleted) -> None:
    logger.info(
        "task.deleted",
        extra={"task_id": event.task_id, "user_id": event.user_id, "occurred_at": event.occurred_at.isoformat()},
    )


def register_default_subscribers(target: NotificationBus) -> None:
    """Audit-log subscribers every process gets; realtime pushers subscribe alongside them."""
    target.subscribe(TaskDeleted, log_task_deleted)


bus = NotificationBus()


def get_notification_bus() -> NotificationBus:
    return bus
