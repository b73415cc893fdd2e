"""Declarative event routing with independent fan-out.

The router holds a table of subscriptions, each matching a set of
``(source, detail_type)`` pairs. For every event it invokes all matching
handlers concurrently; one handler's failure never affects its siblings.
Handlers return the events they emit and the router publishes them, so
chaining always goes back through the bus rather than happening inline.

Failure semantics:
- DataNotFoundError: outcome ``skipped``; logged at info, not a failure.
- Any other exception: outcome ``failed``; logged with traceback and
  counted. The router never retries; redelivery belongs to the transport.
"""

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import (
    Awaitable,
    Callable,
    FrozenSet,
    Iterable,
    List,
    Optional,
    Sequence,
)

import structlog

from src.vortex.errors import DataNotFoundError, VortexError
from src.vortex.events.bus import EventPublisher
from src.vortex.events.metrics import PipelineMetrics
from src.vortex.events.models import DetailType, DomainEvent


logger = structlog.get_logger(__name__)


StageHandler = Callable[[DomainEvent], Awaitable[Optional[Sequence[DomainEvent]]]]


class RoutingError(VortexError):
    """Raised when a subscription table or an emitted event breaks the graph."""


class HandlerStatus(str, Enum):
    """Outcome of a single handler invocation."""

    SUCCEEDED = "succeeded"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True)
class Subscription:
    """One edge set of the event graph.

    Attributes:
        name: Unique handler name, used in logs and metrics.
        handler: Coroutine function consuming one event and returning the
            events it emits (or None).
        detail_types: Event types this handler consumes.
        produces: Event types this handler is allowed to emit.
        source: Event source this handler listens to.
    """

    name: str
    handler: StageHandler
    detail_types: FrozenSet[DetailType]
    produces: FrozenSet[DetailType] = frozenset()
    source: str = "vortex.github"

    def matches(self, event: DomainEvent) -> bool:
        return event.source == self.source and event.detail_type in self.detail_types


@dataclass
class HandlerOutcome:
    """Result of invoking one subscription for one event."""

    subscription: str
    status: HandlerStatus
    emitted: List[DomainEvent] = field(default_factory=list)
    error: Optional[BaseException] = None
    duration_seconds: float = 0.0


@dataclass
class DispatchReport:
    """Per-handler outcomes for one routed event."""

    event: DomainEvent
    outcomes: List[HandlerOutcome] = field(default_factory=list)

    @property
    def failed(self) -> List[HandlerOutcome]:
        return [o for o in self.outcomes if o.status == HandlerStatus.FAILED]

    @property
    def has_failures(self) -> bool:
        return bool(self.failed)

    @property
    def emitted(self) -> List[DomainEvent]:
        return [e for o in self.outcomes for e in o.emitted]

    def outcome_for(self, subscription: str) -> Optional[HandlerOutcome]:
        for outcome in self.outcomes:
            if outcome.subscription == subscription:
                return outcome
        return None


class EventRouter:
    """Routes domain events to every matching subscription.

    Attributes:
        subscriptions: The routing table, in declaration order.

    Example:
        >>> router = EventRouter(subscriptions, publisher=bus)
        >>> report = await router.dispatch(event)
        >>> [o.subscription for o in report.failed]
        []
    """

    def __init__(
        self,
        subscriptions: Iterable[Subscription],
        publisher: EventPublisher,
        metrics: Optional[PipelineMetrics] = None,
    ):
        """Initialize the router.

        Args:
            subscriptions: The routing table.
            publisher: Where emitted events are published.
            metrics: Optional metrics sink for invocation outcomes.

        Raises:
            RoutingError: If two subscriptions share a name.
        """
        self.subscriptions: List[Subscription] = list(subscriptions)
        names = [s.name for s in self.subscriptions]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise RoutingError(
                f"Duplicate subscription names: {', '.join(duplicates)}"
            )
        self._publisher = publisher
        self._metrics = metrics

    def subscribers_for(self, event: DomainEvent) -> List[Subscription]:
        """Return every subscription whose pattern matches the event."""
        return [s for s in self.subscriptions if s.matches(event)]

    def subscription(self, name: str) -> Subscription:
        """Return the subscription registered under ``name``.

        Raises:
            RoutingError: If no subscription has that name.
        """
        for subscription in self.subscriptions:
            if subscription.name == name:
                return subscription
        raise RoutingError(f"Unknown subscription: {name}", subscription=name)

    async def dispatch(
        self,
        event: DomainEvent,
        only: Optional[str] = None,
    ) -> DispatchReport:
        """Deliver an event to all matching handlers concurrently.

        Args:
            event: The validated domain event.
            only: Restrict delivery to the subscription with this name.

        Returns:
            DispatchReport with one outcome per matching subscription.

        Raises:
            RoutingError: If ``only`` names no subscription.
        """
        if only is None:
            matched = self.subscribers_for(event)
        else:
            selected = self.subscription(only)
            matched = [selected] if selected.matches(event) else []
        if not matched:
            logger.info(
                "No subscribers for event",
                source=event.source,
                detail_type=event.detail_type.value,
                event_id=event.correlation_id,
            )
            return DispatchReport(event=event)

        outcomes = await asyncio.gather(
            *(self._invoke(subscription, event) for subscription in matched)
        )
        return DispatchReport(event=event, outcomes=list(outcomes))

    async def _invoke(
        self,
        subscription: Subscription,
        event: DomainEvent,
    ) -> HandlerOutcome:
        log = logger.bind(
            handler=subscription.name,
            detail_type=event.detail_type.value,
            event_id=event.correlation_id,
            envelope_id=event.id,
        )
        started = time.monotonic()
        emitted: List[DomainEvent] = []

        try:
            emitted = list(await subscription.handler(event) or ())
            for new_event in emitted:
                if new_event.detail_type not in subscription.produces:
                    raise RoutingError(
                        f"{subscription.name} emitted undeclared "
                        f"{new_event.detail_type.value}"
                    )
            for new_event in emitted:
                await self._publisher.publish(new_event)
            status = HandlerStatus.SUCCEEDED
            error: Optional[BaseException] = None
            log.info("Handler succeeded", emitted=len(emitted))
        except DataNotFoundError as e:
            status = HandlerStatus.SKIPPED
            error = e
            emitted = []
            log.info("Handler skipped event", reason=e.message, **e.context)
        except Exception as e:
            status = HandlerStatus.FAILED
            error = e
            emitted = []
            log.exception(
                "Handler failed",
                error=str(e),
                error_type=type(e).__name__,
                **getattr(e, "context", {}),
            )

        duration = time.monotonic() - started
        if self._metrics is not None:
            self._metrics.record_handler(subscription.name, status.value, duration)

        return HandlerOutcome(
            subscription=subscription.name,
            status=status,
            emitted=emitted,
            error=error,
            duration_seconds=duration,
        )
