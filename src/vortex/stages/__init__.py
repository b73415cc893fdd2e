"""Pipeline stages.

Each stage is an object with an async ``handle(event)`` that returns the
events it emits; the router publishes them.
"""

from .analyze import AnalyzeStage, build_prompt
from .deliver import DeliverStage
from .diff_fetch import DiffFetchStage, budget_patches, to_diff_files
from .record import RecordStage
from .report import ReportStage

__all__ = [
    "AnalyzeStage",
    "DeliverStage",
    "DiffFetchStage",
    "RecordStage",
    "ReportStage",
    "budget_patches",
    "build_prompt",
    "to_diff_files",
]
