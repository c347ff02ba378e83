"""
In-process notification bus

Explicit observer API for kernel notifications. Subscribers register per
topic and get a callable back that removes them again. Nothing here touches
global state, so two kernels in one process never see each other's traffic.

Fun fact: This is the "observer" pattern from the Gang of Four book (1994).
Browsers call it an event target; we just call it a bus.
"""

from collections import defaultdict
from collections.abc import Callable
from typing import Any

from warstack.kernel.logging import get_logger
from warstack.kernel.metrics import bus_handler_failures_total

logger = get_logger(__name__)

# Topics published by the kernel and the facade
LEDGER_APPENDED = "ledger.appended"
KERNEL_RESET = "kernel.reset"
REPORT_GENERATED = "report.generated"

Handler = Callable[[Any], None]
Unsubscribe = Callable[[], None]


class EventBus:
    """
    Simple synchronous topic bus

    Handlers are called in subscription order. A failing handler is logged
    and counted but never prevents the remaining handlers from running, and
    never propagates to the publisher.
    """

    def __init__(self) -> None:
        self._handlers: defaultdict[str, list[Handler]] = defaultdict(list)

    def subscribe(self, topic: str, handler: Handler) -> Unsubscribe:
        """
        Register a handler for a topic

        Args:
            topic: Topic name (e.g., "ledger.appended")
            handler: Called with the published payload

        Returns:
            Function that removes this subscription (safe to call twice)
        """
        self._handlers[topic].append(handler)
        logger.debug(
            "Handler subscribed",
            topic=topic,
            total_handlers=len(self._handlers[topic]),
        )

        def unsubscribe() -> None:
            handlers = self._handlers.get(topic)
            if handlers and handler in handlers:
                handlers.remove(handler)
                if not handlers:
                    del self._handlers[topic]

        return unsubscribe

    def publish(self, topic: str, payload: Any = None) -> None:
        """
        Deliver a payload to every handler of a topic

        Args:
            topic: Topic name
            payload: Anything; handlers agree on the shape per topic
        """
        # Copy so handlers may unsubscribe while being called
        handlers = list(self._handlers.get(topic, []))
        if not handlers:
            return

        for handler in handlers:
            try:
                handler(payload)
            except Exception as e:
                bus_handler_failures_total.labels(topic=topic).inc()
                logger.error(
                    "Bus handler failed",
                    topic=topic,
                    handler=getattr(handler, "__qualname__", repr(handler)),
                    error=str(e),
                    exc_info=True,
                )

    def topics(self) -> list[str]:
        """Topics with at least one subscriber"""
        return list(self._handlers.keys())

    def clear(self) -> None:
        """Remove every subscription (useful for testing)"""
        removed = sum(len(h) for h in self._handlers.values())
        self._handlers.clear()
        logger.debug("Bus cleared", handlers_removed=removed)
