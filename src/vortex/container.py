"""Dependency wiring for one worker process.

Everything with a worker lifetime is built here exactly once: the AWS
clients, the GitHub client, the process-local token cache and the
broker that owns it, the stages and the router. Entry points hold a
single Container and pass its parts by reference.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx
import structlog

from src.vortex.analysis.bedrock import BedrockAnalyzer
from src.vortex.aws import create_client
from src.vortex.config import VortexSettings
from src.vortex.credentials.broker import CredentialBroker
from src.vortex.credentials.cache import TokenCache
from src.vortex.credentials.secrets import SecretStore
from src.vortex.events.bus import EventBridgePublisher, EventPublisher
from src.vortex.events.metrics import PipelineMetrics, get_metrics
from src.vortex.events.router import EventRouter
from src.vortex.github.client import GitHubClient
from src.vortex.pipeline import build_router
from src.vortex.reporting.mail import SesMailer
from src.vortex.stages import (
    AnalyzeStage,
    DeliverStage,
    DiffFetchStage,
    RecordStage,
    ReportStage,
)
from src.vortex.storage import (
    DynamoTable,
    EventLogRepository,
    ProfileRepository,
    ReportStore,
    TokenStore,
)
from src.vortex.webhook.handler import WebhookIngestor


logger = structlog.get_logger(__name__)


@dataclass
class Container:
    """The wired components of one worker."""

    settings: VortexSettings
    metrics: PipelineMetrics
    publisher: EventPublisher
    github: GitHubClient
    token_cache: TokenCache
    broker: CredentialBroker
    ingestor: WebhookIngestor
    profiles: ProfileRepository
    router: EventRouter

    @classmethod
    def build(
        cls,
        settings: VortexSettings,
        clients: Optional[Dict[str, Any]] = None,
        publisher: Optional[EventPublisher] = None,
        metrics: Optional[PipelineMetrics] = None,
        github_transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "Container":
        """Wire every component from settings.

        Args:
            settings: Validated settings.
            clients: boto3 clients by service name; missing ones are
                created from settings.
            publisher: Event publisher; defaults to EventBridge.
            metrics: Metrics sink; defaults to the global instance.
            github_transport: Optional httpx transport (for testing).

        Returns:
            The wired container.
        """
        clients = dict(clients or {})

        def client(service_name: str) -> Any:
            if service_name not in clients:
                clients[service_name] = create_client(service_name, settings)
            return clients[service_name]

        metrics = metrics or get_metrics()
        publisher = publisher or EventBridgePublisher(
            settings.event_bus_name, events_client=client("events")
        )

        table = DynamoTable(settings.table_name, dynamodb_client=client("dynamodb"))
        reports = ReportStore(settings.report_bucket, s3_client=client("s3"))
        profiles = ProfileRepository(table)

        secrets = SecretStore(
            webhook_secret_name=settings.webhook_secret_name,
            app_credentials_secret_name=settings.app_credentials_secret_name,
            webhook_secret_key=settings.webhook_secret_key,
            secrets_client=client("secretsmanager"),
        )
        github = GitHubClient(
            base_url=settings.github_base_url,
            max_retries=settings.github_max_retries,
            timeout=settings.http_timeout_seconds,
            transport=github_transport,
        )
        token_cache = TokenCache()
        broker = CredentialBroker(
            secrets=secrets,
            token_store=TokenStore(table),
            github=github,
            cache=token_cache,
            freshness_margin_seconds=settings.token_freshness_seconds,
            metrics=metrics,
        )

        source = settings.event_source
        analyzer = BedrockAnalyzer(
            model_id=settings.model_id,
            max_tokens=settings.max_tokens,
            temperature=settings.temperature,
            top_p=settings.top_p,
            bedrock_client=client("bedrock-runtime"),
        )
        handlers = {
            "record": RecordStage(EventLogRepository(table)).handle,
            "diff_fetch": DiffFetchStage(
                broker,
                github,
                source=source,
                max_patch_chars=settings.max_patch_chars,
                max_detail_bytes=settings.max_event_detail_bytes,
            ).handle,
            "analyze": AnalyzeStage(
                analyzer, max_patch_chars=settings.max_patch_chars, source=source
            ).handle,
            "report": ReportStage(profiles, reports, source=source).handle,
            "deliver": DeliverStage(
                reports,
                SesMailer(ses_client=client("ses")),
                sender=settings.mail_sender,
                subject=settings.mail_subject,
            ).handle,
        }

        return cls(
            settings=settings,
            metrics=metrics,
            publisher=publisher,
            github=github,
            token_cache=token_cache,
            broker=broker,
            ingestor=WebhookIngestor(secrets, publisher, source=source, metrics=metrics),
            profiles=profiles,
            router=build_router(handlers, publisher, source=source, metrics=metrics),
        )

    async def close(self) -> None:
        await self.github.close()
        await self.publisher.close()


def log_configuration(settings: VortexSettings) -> None:
    """Log the effective configuration. Secrets are referenced by name only."""
    logger.info(
        "Pipeline configuration",
        event_bus_name=settings.event_bus_name,
        table_name=settings.table_name,
        report_bucket=settings.report_bucket,
        aws_region=settings.aws_region,
        event_source=settings.event_source,
        stage=settings.stage,
        webhook_secret_name=settings.webhook_secret_name,
        app_credentials_secret_name=settings.app_credentials_secret_name,
        github_base_url=settings.github_base_url,
        http_timeout_seconds=settings.http_timeout_seconds,
        token_freshness_seconds=settings.token_freshness_seconds,
        model_id=settings.model_id,
    )
