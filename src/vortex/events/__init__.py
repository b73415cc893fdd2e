"""Domain events, routing and publication.

- DomainEvent / DetailType and the per-type payload models
- EventRouter: declarative fan-out to pipeline stages
- EventPublisher implementations: EventBridge and in-memory
- PipelineMetrics: Prometheus counters for stage outcomes
"""

from src.vortex.events.bus import (
    EventBridgePublisher,
    EventPublisher,
    InMemoryEventBus,
)
from src.vortex.events.metrics import (
    PipelineMetrics,
    generate_metrics_output,
    get_metrics,
)
from src.vortex.events.models import (
    AnalysisCompleteDetail,
    ChangeType,
    CommitPushedDetail,
    CommitSummary,
    DetailType,
    DiffFile,
    DiffReadyDetail,
    DomainEvent,
    PullRequestDetail,
    ReportReadyDetail,
)
from src.vortex.events.router import (
    DispatchReport,
    EventRouter,
    HandlerOutcome,
    HandlerStatus,
    RoutingError,
    Subscription,
)

__all__ = [
    # Event models
    "AnalysisCompleteDetail",
    "ChangeType",
    "CommitPushedDetail",
    "CommitSummary",
    "DetailType",
    "DiffFile",
    "DiffReadyDetail",
    "DomainEvent",
    "PullRequestDetail",
    "ReportReadyDetail",
    # Routing
    "DispatchReport",
    "EventRouter",
    "HandlerOutcome",
    "HandlerStatus",
    "RoutingError",
    "Subscription",
    # Publishers
    "EventBridgePublisher",
    "EventPublisher",
    "InMemoryEventBus",
    # Metrics
    "PipelineMetrics",
    "generate_metrics_output",
    "get_metrics",
]
