"""Diff-fetch stage: pull file-level diffs from GitHub.

A pull request event yields one ``diff.ready`` for the whole PR; a push
yields one per commit, fetched in push order. A push without commits
(for example a branch deletion) yields nothing.

Every file keeps its name and line counts, but patch text is cut to the
same character budget the analyze stage uses, and dropped from the last
files first if the serialized detail would still exceed the bus limit.
"""

from typing import Any, Dict, Iterable, List, Sequence

import structlog

from src.vortex.credentials.broker import CredentialBroker
from src.vortex.events.models import (
    ChangeType,
    CommitPushedDetail,
    DetailType,
    DiffFile,
    DiffReadyDetail,
    DomainEvent,
    PATCH_TRUNCATION_MARKER,
    PullRequestDetail,
)
from src.vortex.github.client import GitHubClient


logger = structlog.get_logger(__name__)


def to_diff_files(raw_files: Iterable[Dict[str, Any]]) -> List[DiffFile]:
    """Map GitHub file entries to DiffFile, skipping entries without a name."""
    files = []
    for raw in raw_files:
        if not isinstance(raw, dict) or not raw.get("filename"):
            continue
        files.append(
            DiffFile(
                filename=raw["filename"],
                additions=raw.get("additions") or 0,
                deletions=raw.get("deletions") or 0,
                changes=raw.get("changes") or 0,
                status=raw.get("status"),
                patch=raw.get("patch"),
            )
        )
    return files


def budget_patches(files: Sequence[DiffFile], max_patch_chars: int) -> List[DiffFile]:
    """Keep patch text, in file order, until ``max_patch_chars`` is spent.

    The patch that crosses the budget is cut and marked; later patches
    are dropped.
    """
    budget = max_patch_chars
    kept = []
    for f in files:
        if not f.patch:
            kept.append(f)
        elif budget <= 0:
            kept.append(f.model_copy(update={"patch": None}))
        elif len(f.patch) > budget:
            kept.append(f.model_copy(update={"patch": f.patch[:budget] + PATCH_TRUNCATION_MARKER}))
        else:
            kept.append(f)
        if f.patch:
            budget -= len(f.patch)
    return kept


def detail_size(detail: DiffReadyDetail) -> int:
    """Size in bytes of the detail as published on the bus."""
    return len(detail.model_dump_json(by_alias=True).encode("utf-8"))


def fit_detail(detail: DiffReadyDetail, max_bytes: int) -> DiffReadyDetail:
    """Drop patches from the last files first until the detail fits."""
    files = list(detail.files)
    patched = [i for i, f in enumerate(files) if f.patch]
    while patched and detail_size(detail) > max_bytes:
        index = patched.pop()
        files[index] = files[index].model_copy(update={"patch": None})
        detail = detail.model_copy(update={"files": tuple(files)})

    if detail_size(detail) > max_bytes:
        logger.warning(
            "Diff exceeds the event size limit without patches",
            size=detail_size(detail),
            max_bytes=max_bytes,
            file_count=detail.file_count,
            **detail.log_fields(),
        )
    return detail


class DiffFetchStage:
    """Resolves an installation token and fetches the changed files."""

    def __init__(
        self,
        broker: CredentialBroker,
        github: GitHubClient,
        source: str = "vortex.github",
        max_patch_chars: int = 60000,
        max_detail_bytes: int = 240 * 1024,
    ):
        self._broker = broker
        self._github = github
        self.source = source
        self.max_patch_chars = max_patch_chars
        self.max_detail_bytes = max_detail_bytes

    async def handle(self, event: DomainEvent) -> List[DomainEvent]:
        detail = event.detail
        if isinstance(detail, CommitPushedDetail) and not detail.commits:
            logger.info("Push has no commits", event_id=detail.event_id, repo=detail.repo)
            return []

        token = await self._broker.get_installation_token(detail.installation)

        if isinstance(detail, PullRequestDetail):
            return [await self._pull_request_diff(detail, token.token)]
        return await self._commit_diffs(detail, token.token)

    async def _pull_request_diff(self, detail: PullRequestDetail, token: str) -> DomainEvent:
        raw_files = await self._github.list_pull_request_files(
            detail.repo, detail.number, token
        )
        diff = DiffReadyDetail(
            type=ChangeType.PULL_REQUEST,
            repo=detail.repo,
            pr_id=detail.pr_id,
            github_username=detail.github_username,
            event_id=detail.event_id,
            files=self._budgeted(raw_files),
        )
        diff = fit_detail(diff, self.max_detail_bytes)
        logger.info("Pull request diff ready", file_count=diff.file_count, **diff.log_fields())
        return DomainEvent.create(self.source, DetailType.DIFF_READY, diff)

    async def _commit_diffs(self, detail: CommitPushedDetail, token: str) -> List[DomainEvent]:
        events = []
        for commit in detail.commits:
            data = await self._github.get_commit(detail.repo, commit.id, token)
            diff = DiffReadyDetail(
                type=ChangeType.COMMIT,
                repo=detail.repo,
                commit_id=commit.id,
                github_username=detail.github_username,
                event_id=detail.event_id,
                files=self._budgeted(data.get("files") or []),
            )
            diff = fit_detail(diff, self.max_detail_bytes)
            logger.info("Commit diff ready", file_count=diff.file_count, **diff.log_fields())
            events.append(DomainEvent.create(self.source, DetailType.DIFF_READY, diff))
        return events

    def _budgeted(self, raw_files: Iterable[Dict[str, Any]]) -> tuple:
        return tuple(budget_patches(to_diff_files(raw_files), self.max_patch_chars))
