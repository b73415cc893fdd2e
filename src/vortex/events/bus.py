"""Event bus publishers.

Stages never call the bus directly: the router publishes whatever a
stage returns. This module provides the publisher abstraction and its
implementations:

- EventBridgePublisher: PutEvents onto an EventBridge bus (production)
- InMemoryEventBus: queues events and drains them through a router
  in-process (local runs and end-to-end tests)
"""

import asyncio
from abc import ABC, abstractmethod
from collections import deque
from typing import TYPE_CHECKING, Any, Deque, List, Optional

import boto3
import structlog
from botocore.exceptions import BotoCoreError, ClientError

from src.vortex.errors import UpstreamError
from src.vortex.events.models import DomainEvent

if TYPE_CHECKING:
    from src.vortex.events.router import DispatchReport, EventRouter


logger = structlog.get_logger(__name__)


class EventPublisher(ABC):
    """Abstract base class for domain event publishers.

    Implementations must raise UpstreamError when an event could not be
    handed to the transport, so the publishing stage is reported failed
    and its trigger can redeliver.
    """

    @abstractmethod
    async def publish(self, event: DomainEvent) -> None:
        """Publish one domain event.

        Args:
            event: The validated event to publish.
        """

    async def close(self) -> None:
        """Release publisher resources. The default does nothing."""


class EventBridgePublisher(EventPublisher):
    """Publisher that puts events onto an EventBridge event bus.

    Attributes:
        event_bus_name: Name of the target bus.
    """

    def __init__(self, event_bus_name: str, events_client: Any = None):
        """Initialize the publisher.

        Args:
            event_bus_name: Name of the EventBridge bus.
            events_client: boto3 ``events`` client. A default client is
                created when not given.
        """
        self.event_bus_name = event_bus_name
        self._client = events_client or boto3.client("events")

    async def publish(self, event: DomainEvent) -> None:
        await asyncio.to_thread(self._put_event, event)

    def _put_event(self, event: DomainEvent) -> None:
        entry = event.to_put_events_entry(self.event_bus_name)
        try:
            response = self._client.put_events(Entries=[entry])
        except (ClientError, BotoCoreError) as e:
            raise UpstreamError(
                f"Failed to publish {event.detail_type.value}: {e}",
                service="eventbridge",
                event_id=event.correlation_id,
            ) from e

        if response.get("FailedEntryCount", 0):
            failed = response.get("Entries", [{}])[0]
            raise UpstreamError(
                f"EventBridge rejected {event.detail_type.value}: "
                f"{failed.get('ErrorCode')} {failed.get('ErrorMessage')}",
                service="eventbridge",
                event_id=event.correlation_id,
            )

        logger.info(
            "Published event",
            detail_type=event.detail_type.value,
            event_id=event.correlation_id,
            bus=self.event_bus_name,
        )


class InMemoryEventBus(EventPublisher):
    """In-process bus that feeds published events back into a router.

    Published events are queued, not dispatched inline, so a stage's
    publish never recurses into downstream stages. ``drain`` then routes
    queued events one at a time until the queue is empty.

    Attributes:
        published: Every event ever published, in order.
    """

    def __init__(self, max_events: int = 1000):
        self.published: List[DomainEvent] = []
        self._pending: Deque[DomainEvent] = deque()
        self._max_events = max_events

    async def publish(self, event: DomainEvent) -> None:
        self.published.append(event)
        self._pending.append(event)

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def drain(
        self,
        router: "EventRouter",
        max_events: Optional[int] = None,
    ) -> List["DispatchReport"]:
        """Dispatch queued events until none remain.

        Args:
            router: Router that delivers each event to its subscribers.
            max_events: Upper bound on dispatches, guarding against a
                cycle in the event graph.

        Returns:
            One dispatch report per routed event, in routing order.

        Raises:
            RuntimeError: If more than ``max_events`` events were routed.
        """
        limit = max_events if max_events is not None else self._max_events
        reports: List["DispatchReport"] = []
        while self._pending:
            if len(reports) >= limit:
                raise RuntimeError(
                    f"In-memory bus exceeded {limit} dispatches; "
                    "the event graph may contain a cycle"
                )
            reports.append(await router.dispatch(self._pending.popleft()))
        return reports
