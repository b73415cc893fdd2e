"""Bus worker entry points.

The bus (EventBridge) invokes one function per pipeline stage, each with
one event envelope per invocation. The envelope is validated into a
DomainEvent and delivered to that stage's subscription only; an event
the stage does not consume is acknowledged without work.

Deploy ``record_handler``, ``diff_fetch_handler``, ``analyze_handler``,
``report_handler`` and ``deliver_handler`` as separate functions, or
point ``handler`` at the stage named by VORTEX_STAGE.

Retry contract with the bus:
- A malformed envelope is logged and dropped; redelivery cannot fix it.
- If the stage failed, the invocation raises UpstreamError so the bus
  redelivers to that stage alone. Other stages consuming the same event
  run in their own invocations and are never repeated by it.
- A skipped stage (no data to act on) counts as success.
"""

import asyncio
from typing import Any, Callable, Dict, Optional

import structlog

from src.vortex.config import load_settings
from src.vortex.container import Container, log_configuration
from src.vortex.errors import ConfigError, InvalidEventError, UpstreamError
from src.vortex.events.models import DomainEvent
from src.vortex.events.router import DispatchReport
from src.vortex.logging_config import configure_logging


logger = structlog.get_logger(__name__)

# Built on the first invocation and reused while the process lives
_container: Optional[Container] = None

LambdaHandler = Callable[[Dict[str, Any], Any], Dict[str, Any]]


def get_container() -> Container:
    global _container

    if _container is None:
        settings = load_settings()
        configure_logging(settings.log_level, settings.log_json)
        log_configuration(settings)
        _container = Container.build(settings)
    return _container


async def process_envelope(
    envelope: Dict[str, Any],
    container: Container,
    stage: str,
) -> Optional[DispatchReport]:
    """Validate one envelope and deliver it to a single stage.

    Returns:
        The dispatch report, or None if the envelope was dropped.

    Raises:
        UpstreamError: If the stage failed.
        RoutingError: If ``stage`` is not a registered subscription.
    """
    try:
        event = DomainEvent.from_envelope(envelope)
    except InvalidEventError as e:
        logger.error("Dropping invalid event", error=e.message, stage=stage, **e.context)
        return None

    try:
        report = await container.router.dispatch(event, only=stage)
    finally:
        # The HTTP client is bound to this invocation's event loop
        await container.github.close()

    if report.has_failures:
        failed = [o.subscription for o in report.failed]
        raise UpstreamError(
            f"{stage} failed for {event.detail_type.value}",
            failed_handlers=failed,
            event_id=event.correlation_id,
        )
    return report


def _result(report: Optional[DispatchReport], stage: str) -> Dict[str, Any]:
    if report is None:
        return {"status": "dropped", "stage": stage}
    return {
        "status": "processed",
        "stage": stage,
        "eventId": report.event.correlation_id,
        "detailType": report.event.detail_type.value,
        "outcomes": {o.subscription: o.status.value for o in report.outcomes},
    }


def make_handler(stage: str) -> LambdaHandler:
    """Build a Lambda handler that serves one pipeline stage."""

    def stage_handler(event: Dict[str, Any], context: Any = None) -> Dict[str, Any]:
        report = asyncio.run(process_envelope(event, get_container(), stage))
        return _result(report, stage)

    stage_handler.__name__ = f"{stage}_handler"
    return stage_handler


def handler(event: Dict[str, Any], context: Any = None) -> Dict[str, Any]:
    """Lambda handler for the stage configured by VORTEX_STAGE."""
    container = get_container()
    stage = container.settings.stage
    if stage is None:
        raise ConfigError(
            "VORTEX_STAGE must name the stage this worker serves",
            fields=["stage"],
        )
    report = asyncio.run(process_envelope(event, container, stage))
    return _result(report, stage)


record_handler = make_handler("record")
diff_fetch_handler = make_handler("diff_fetch")
analyze_handler = make_handler("analyze")
report_handler = make_handler("report")
deliver_handler = make_handler("deliver")
