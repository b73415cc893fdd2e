"""Analyze stage: ask the model to review a diff."""

from typing import List, Sequence

import structlog

from src.vortex.analysis.bedrock import BedrockAnalyzer
from src.vortex.errors import DataNotFoundError
from src.vortex.events.models import (
    AnalysisCompleteDetail,
    DetailType,
    DiffFile,
    DiffReadyDetail,
    DomainEvent,
    PATCH_TRUNCATION_MARKER,
)


logger = structlog.get_logger(__name__)

PROMPT_HEADER = (
    "You are a senior software engineer. A code update has been submitted. "
    "Please review the following changes:"
)
PROMPT_FOOTER = (
    "Give detailed feedback on potential improvements, bugs, security issues, "
    "or code smells."
)


def build_prompt(files: Sequence[DiffFile], max_patch_chars: int = 60000) -> str:
    """Build the review prompt for a list of changed files.

    The file list (with line counts) always comes first. Patch text
    follows for files that have one, until ``max_patch_chars`` is spent;
    the patch that crosses the limit is cut and marked as truncated.
    """
    lines = [PROMPT_HEADER, ""]
    for f in files:
        lines.append(f"- {f.filename} (+{f.additions} -{f.deletions})")

    budget = max_patch_chars
    patches = []
    for f in files:
        if not f.patch or budget <= 0:
            continue
        patch = f.patch
        if len(patch) > budget:
            patch = patch[:budget] + PATCH_TRUNCATION_MARKER
        budget -= len(f.patch)
        patches.append(f"### {f.filename}\n```diff\n{patch}\n```")

    if patches:
        lines.extend(["", "Diffs:", ""])
        lines.extend(patches)

    lines.extend(["", PROMPT_FOOTER])
    return "\n".join(lines)


class AnalyzeStage:
    """Turns ``diff.ready`` into ``analysis.complete``."""

    def __init__(
        self,
        analyzer: BedrockAnalyzer,
        max_patch_chars: int = 60000,
        source: str = "vortex.github",
    ):
        self._analyzer = analyzer
        self.max_patch_chars = max_patch_chars
        self.source = source

    async def handle(self, event: DomainEvent) -> List[DomainEvent]:
        detail: DiffReadyDetail = event.detail
        if not detail.files:
            raise DataNotFoundError("No files to analyze", **detail.log_fields())

        log = logger.bind(file_count=detail.file_count, **detail.log_fields())
        log.info("Invoking model", model_id=self._analyzer.model_id)

        result = await self._analyzer.analyze(build_prompt(detail.files, self.max_patch_chars))

        analysis = AnalysisCompleteDetail(
            **detail.change_fields(),
            analysis_result=result,
            file_count=detail.file_count,
            model_id=self._analyzer.model_id,
        )
        log.info("Analysis complete", result_chars=len(result))
        return [DomainEvent.create(self.source, DetailType.ANALYSIS_COMPLETE, analysis)]
