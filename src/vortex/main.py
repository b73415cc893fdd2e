"""FastAPI application entry point for the review pipeline.

Endpoints:
- POST /webhooks/github: GitHub App webhook ingest
- POST /register, OPTIONS /register: report recipient registration (CORS)
- GET /health: liveness probe
- GET /metrics: Prometheus metrics

Configuration is loaded and validated once at startup; a ConfigError
aborts the process before it accepts traffic.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import Dict

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST
from pydantic import ValidationError

from src.vortex.config import load_settings
from src.vortex.container import Container, log_configuration
from src.vortex.errors import UpstreamError
from src.vortex.events.metrics import generate_metrics_output
from src.vortex.logging_config import configure_logging
from src.vortex.storage.profiles import UserProfile


logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the container on startup and release it on shutdown.

    A container already set on ``app.state`` (tests) is used as is.
    """
    container = getattr(app.state, "container", None)
    if container is None:
        settings = load_settings()
        configure_logging(settings.log_level, settings.log_json)
        log_configuration(settings)
        container = Container.build(settings)
        app.state.container = container

    logger.info("Review pipeline started")

    yield

    logger.info("Review pipeline shutting down")
    await container.close()


app = FastAPI(
    title="Vortex Review Pipeline",
    description="Automated code review reports for GitHub pull requests and pushes",
    version="1.0.0",
    lifespan=lifespan,
)


def _container(request: Request) -> Container:
    return request.app.state.container


def _cors_headers(request: Request) -> Dict[str, str]:
    return {
        "Access-Control-Allow-Origin": request.headers.get("origin") or "*",
        "Access-Control-Allow-Headers": "Content-Type",
        "Access-Control-Allow-Methods": "POST, OPTIONS",
    }


@app.get("/health")
async def health():
    """Liveness probe endpoint."""
    return {"status": "healthy"}


@app.get("/metrics")
async def metrics(request: Request):
    """Prometheus metrics in text exposition format."""
    registry = _container(request).metrics.registry
    return Response(
        content=generate_metrics_output(registry),
        media_type=CONTENT_TYPE_LATEST,
    )


@app.post("/webhooks/github")
async def github_webhook(request: Request):
    """GitHub App webhook receiver.

    The raw body is read before any parsing so the signature is checked
    against the exact bytes GitHub signed.

    Returns:
        200 accepted/ignored, 400 malformed, 401 bad signature, 500 when
        the event could not be published.
    """
    body = await request.body()
    result = await _container(request).ingestor.handle(body, request.headers)
    return JSONResponse(result.to_response_body(), status_code=result.status_code)


@app.options("/register")
async def register_preflight(request: Request):
    return PlainTextResponse("", headers=_cors_headers(request))


@app.post("/register")
async def register(request: Request):
    """Register the email address reports for a GitHub login are sent to.

    Body: ``{"email": "...", "githubUsername": "..."}``.
    """
    headers = _cors_headers(request)

    try:
        payload = await request.json()
    except ValueError:
        payload = None

    try:
        profile = UserProfile.model_validate(payload)
    except ValidationError:
        return PlainTextResponse(
            "Email and githubUsername are required",
            status_code=400,
            headers=headers,
        )

    try:
        await asyncio.to_thread(_container(request).profiles.register, profile)
    except UpstreamError as e:
        logger.error(
            "Failed to register profile",
            github_username=profile.github_username,
            error=str(e),
        )
        return PlainTextResponse("Error registering email", status_code=500, headers=headers)

    return PlainTextResponse("Email registered", headers=headers)


if __name__ == "__main__":
    import uvicorn

    dev_settings = load_settings()
    uvicorn.run(
        "src.vortex.main:app",
        host=dev_settings.host,
        port=dev_settings.port,
    )
