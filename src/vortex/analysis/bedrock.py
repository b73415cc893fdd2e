"""Code review inference through Amazon Bedrock.

Uses the bedrock-runtime Converse API, so any chat model enabled in the
account can be configured by id without changing the request shape.
"""

import asyncio
from typing import Any, Optional

import boto3
import structlog
from botocore.exceptions import BotoCoreError, ClientError

from src.vortex.errors import UpstreamError


logger = structlog.get_logger(__name__)


class BedrockAnalyzer:
    """Sends a single-turn prompt to a Bedrock model and returns its text.

    Attributes:
        model_id: Bedrock model identifier.
        max_tokens: Upper bound on generated tokens.
        temperature: Sampling temperature.
        top_p: Nucleus sampling cutoff.
    """

    def __init__(
        self,
        model_id: str,
        max_tokens: int = 1024,
        temperature: float = 0.3,
        top_p: float = 0.95,
        bedrock_client: Any = None,
    ):
        """Initialize the analyzer.

        Args:
            model_id: Bedrock model identifier.
            max_tokens: Upper bound on generated tokens.
            temperature: Sampling temperature.
            top_p: Nucleus sampling cutoff.
            bedrock_client: Optional boto3 bedrock-runtime client (for testing).
        """
        self.model_id = model_id
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.top_p = top_p
        self._client = bedrock_client or boto3.client("bedrock-runtime")

    async def analyze(self, prompt: str) -> str:
        """Run the prompt through the model.

        Raises:
            UpstreamError: If the call fails or the model returns no text.
        """
        return await asyncio.to_thread(self._converse, prompt)

    def _converse(self, prompt: str) -> str:
        try:
            response = self._client.converse(
                modelId=self.model_id,
                messages=[{"role": "user", "content": [{"text": prompt}]}],
                inferenceConfig={
                    "maxTokens": self.max_tokens,
                    "temperature": self.temperature,
                    "topP": self.top_p,
                },
            )
        except (ClientError, BotoCoreError) as e:
            logger.error("Bedrock invocation failed", model_id=self.model_id, error=str(e))
            raise UpstreamError(
                f"Bedrock invocation failed: {e}",
                service="bedrock",
                model_id=self.model_id,
            ) from e

        text = self._extract_text(response)
        if not text:
            raise UpstreamError(
                "Bedrock returned no text",
                service="bedrock",
                model_id=self.model_id,
                stop_reason=response.get("stopReason"),
            )

        usage = response.get("usage") or {}
        logger.info(
            "Bedrock analysis complete",
            model_id=self.model_id,
            input_tokens=usage.get("inputTokens"),
            output_tokens=usage.get("outputTokens"),
            stop_reason=response.get("stopReason"),
        )
        return text

    @staticmethod
    def _extract_text(response: dict) -> Optional[str]:
        message = (response.get("output") or {}).get("message") or {}
        parts = [
            block["text"]
            for block in message.get("content") or []
            if isinstance(block, dict) and block.get("text")
        ]
        return "\n".join(parts).strip() or None
