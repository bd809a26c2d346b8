"""
In-process event bus.

Delivery happens inside `publish`: every handler has run by the time the
publishing operation continues.
"""

import inspect
from typing import Callable, Dict, List

import structlog

from vaultkeeper.messaging.events import BaseEvent, EventType

logger = structlog.get_logger()


class EventBus:
    """
    Typed publish/subscribe channel for controller notifications.

    Usage:
        bus = EventBus()

        # Subscribe to events
        bus.subscribe(EventType.ACCOUNT_REMOVED, my_handler)

        # Publish events
        await bus.publish(AccountRemovedEvent(address))
    """

    def __init__(self):
        # Event handlers
        self._handlers: Dict[EventType, List[Callable]] = {}

    def subscribe(
        self,
        event_type: EventType,
        handler: Callable,
    ) -> None:
        """
        Subscribe to an event type.

        Args:
            event_type: Type of event to subscribe to
            handler: Sync or async callback function(event)
        """
        if event_type not in self._handlers:
            self._handlers[event_type] = []

        self._handlers[event_type].append(handler)

        logger.debug(
            "event_subscribed",
            event_type=event_type.value,
            handler=getattr(handler, "__name__", repr(handler)),
        )

    def unsubscribe(
        self,
        event_type: EventType,
        handler: Callable,
    ) -> None:
        """Unsubscribe handler from event type."""
        if event_type in self._handlers:
            self._handlers[event_type].remove(handler)

            if not self._handlers[event_type]:
                del self._handlers[event_type]

            logger.debug(
                "event_unsubscribed",
                event_type=event_type.value,
                handler=getattr(handler, "__name__", repr(handler)),
            )

    async def publish(self, event: BaseEvent) -> None:
        """
        Publish an event to every subscribed handler.

        A failing handler is logged and does not stop delivery to the
        remaining handlers; the mutation it reports is already committed.

        Args:
            event: Event instance to publish
        """
        for handler in list(self._handlers.get(event.event_type, [])):
            try:
                if inspect.iscoroutinefunction(handler):
                    await handler(event)
                else:
                    handler(event)

            except Exception as e:
                logger.error(
                    "event_handler_error",
                    event_type=event.event_type.value,
                    handler=getattr(handler, "__name__", repr(handler)),
                    error=str(e),
                )

        logger.debug("event_published", event_type=event.event_type.value)


__all__ = ["EventBus"]
