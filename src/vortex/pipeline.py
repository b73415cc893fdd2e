"""The review pipeline's event graph, declared in one place.

    pr.created | pr.updated | commit.pushed ──> record         (terminal)
                                           └──> diff_fetch ──> diff.ready
    diff.ready        ──> analyze ──> analysis.complete
    analysis.complete ──> report  ──> report.ready
    report.ready      ──> deliver                              (terminal)

Each edge names the event types a stage consumes and the types it may
emit; the router rejects any emission outside that set.
"""

from dataclasses import dataclass
from typing import Dict, FrozenSet, List, Optional

from src.vortex.events.bus import EventPublisher
from src.vortex.events.metrics import PipelineMetrics
from src.vortex.events.models import DetailType
from src.vortex.events.router import EventRouter, StageHandler, Subscription


INGEST_TYPES = frozenset(
    {DetailType.PR_CREATED, DetailType.PR_UPDATED, DetailType.COMMIT_PUSHED}
)


@dataclass(frozen=True)
class StageEdge:
    """Consumed and produced event types of one stage."""

    name: str
    consumes: FrozenSet[DetailType]
    produces: FrozenSet[DetailType] = frozenset()


PIPELINE_EDGES = (
    StageEdge("record", INGEST_TYPES),
    StageEdge("diff_fetch", INGEST_TYPES, frozenset({DetailType.DIFF_READY})),
    StageEdge(
        "analyze",
        frozenset({DetailType.DIFF_READY}),
        frozenset({DetailType.ANALYSIS_COMPLETE}),
    ),
    StageEdge(
        "report",
        frozenset({DetailType.ANALYSIS_COMPLETE}),
        frozenset({DetailType.REPORT_READY}),
    ),
    StageEdge("deliver", frozenset({DetailType.REPORT_READY})),
)


def build_subscriptions(
    handlers: Dict[str, StageHandler],
    source: str = "vortex.github",
) -> List[Subscription]:
    """Bind stage handlers to the declared edges.

    Args:
        handlers: Handler per stage name; every declared stage is required.
        source: Event source the subscriptions match.

    Returns:
        Subscriptions in declaration order.

    Raises:
        KeyError: If a declared stage has no handler, or a handler has no
            declared stage.
    """
    names = {edge.name for edge in PIPELINE_EDGES}
    unknown = sorted(set(handlers) - names)
    if unknown:
        raise KeyError(f"Handlers for undeclared stages: {', '.join(unknown)}")

    return [
        Subscription(
            name=edge.name,
            handler=handlers[edge.name],
            detail_types=edge.consumes,
            produces=edge.produces,
            source=source,
        )
        for edge in PIPELINE_EDGES
    ]


def build_router(
    handlers: Dict[str, StageHandler],
    publisher: EventPublisher,
    source: str = "vortex.github",
    metrics: Optional[PipelineMetrics] = None,
) -> EventRouter:
    return EventRouter(
        build_subscriptions(handlers, source),
        publisher=publisher,
        metrics=metrics,
    )
