"""Turn one repository's matched files into a branch, commits, and a labelled pull request."""

from __future__ import annotations

import datetime as dt
import logging
from enum import Enum
from typing import List, Optional, Sequence

import requests

from src.pipeline.config import RunConfig
from src.pipeline.errors import ConflictError, LabelError, PublishError
from src.pipeline.models import FileMatch, PRResult
from src.retrieval.client import GitHubAPIError, GitHubClient, GitHubConflictError
from src.retrieval.search import replace_occurrences

logger = logging.getLogger(__name__)

API_ERRORS = (GitHubAPIError, requests.RequestException, KeyError, ValueError)


class PublishState(str, Enum):
    START = "start"
    BRANCH_CREATED = "branch_created"
    FILES_COMMITTED = "files_committed"
    PR_OPENED = "pr_opened"
    LABELS_APPLIED = "labels_applied"


def make_branch_name(prefix: str, now: Optional[dt.datetime] = None) -> str:
    """``{prefix}-YYYYMMDDTHHMMSS`` in UTC."""
    now = now or dt.datetime.now(dt.timezone.utc)
    return f"{prefix}-{now.strftime('%Y%m%dT%H%M%S')}"


def apply_labels(client: GitHubClient, owner: str, repo: str, pr_number: int, labels: Sequence[str]) -> None:
    try:
        client.add_labels(owner, repo, pr_number, labels)
    except API_ERRORS as exc:
        raise LabelError(f"{owner}/{repo}", pr_number, exc) from exc


class ChangePublisher:
    """Publishes one repository at a time; safe to share between worker threads."""

    def __init__(self, client: GitHubClient, config: RunConfig) -> None:
        self.client = client
        self.config = config

    def publish(
        self,
        repository: str,
        matches: Sequence[FileMatch],
        now: Optional[dt.datetime] = None,
        warnings: Optional[List[str]] = None,
    ) -> PRResult:
        """Create a branch, commit every match, open the PR, then label it.

        Any failure before the PR exists raises ``PublishError`` (``ConflictError``
        when a file changed since search). Label failures are logged, appended
        to ``warnings`` and do not affect the returned ``PRResult``.
        """
        owner, repo = repository.split("/", 1)
        config = self.config
        state = PublishState.START
        branch_name = make_branch_name(config.branch_prefix, now)
        logger.info("Creating PR for %s with %d file changes", repository, len(matches))

        try:
            repo_info = self.client.get_repository(owner, repo)
            base_branch = repo_info["default_branch"]
            base_sha = self.client.get_branch_sha(owner, repo, base_branch)
        except API_ERRORS as exc:
            raise PublishError(repository, "resolve_base", exc) from exc

        try:
            self.client.create_branch(owner, repo, branch_name, base_sha)
        except API_ERRORS as exc:
            raise PublishError(repository, "create_branch", exc) from exc
        state = PublishState.BRANCH_CREATED
        logger.debug("%s: %s -> created %s from %s@%s", repository, state.value, branch_name, base_branch, base_sha)

        for match in matches:
            new_content = replace_occurrences(match.content, config.search_string, config.replacement_string)
            try:
                self.client.update_file(
                    owner,
                    repo,
                    match.path,
                    message=config.commit_message,
                    content=new_content,
                    sha=match.sha,
                    branch=branch_name,
                )
            except GitHubConflictError as exc:
                raise ConflictError(repository, match.path, exc, branch=branch_name) from exc
            except API_ERRORS as exc:
                raise PublishError(repository, "commit", f"{match.path}: {exc}", branch=branch_name) from exc
            logger.debug("%s: committed %s (%d replacements)", repository, match.path, match.match_count)
        state = PublishState.FILES_COMMITTED

        try:
            pr = self.client.create_pull_request(
                owner,
                repo,
                title=config.pr_title,
                head=branch_name,
                base=base_branch,
                body=config.pr_body,
            )
        except API_ERRORS as exc:
            raise PublishError(repository, "open_pr", exc, branch=branch_name) from exc
        state = PublishState.PR_OPENED

        if config.pr_labels:
            try:
                apply_labels(self.client, owner, repo, pr["number"], config.pr_labels)
                state = PublishState.LABELS_APPLIED
            except LabelError as exc:
                logger.warning(str(exc))
                if warnings is not None:
                    warnings.append(str(exc))

        logger.info("Created PR #%s: %s", pr["number"], pr["html_url"])
        logger.debug("%s: finished in state %s", repository, state.value)
        return PRResult(
            repository=repository,
            pr_number=pr["number"],
            pr_url=pr["html_url"],
            files_changed=len(matches),
            branch_name=branch_name,
        )


__all__ = ["PublishState", "make_branch_name", "apply_labels", "ChangePublisher"]
