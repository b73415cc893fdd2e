"""Model inference for code review."""

from .bedrock import BedrockAnalyzer

__all__ = ["BedrockAnalyzer"]
