"""Entry points for running a GitHub-wide search and replace."""

from __future__ import annotations

import json
import logging
import signal
import sys
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Any, Callable, Dict, List, Optional, Sequence

from src.publishing.publisher import ChangePublisher
from src.retrieval.client import GitHubClient
from src.retrieval.http_client import GitHubSession
from src.retrieval.search import search_repositories

from .config import RunConfig, ensure_valid_config, parse_args, resolve_config, resolve_log_level
from .errors import ConfigError, PublishError, SearchError
from .models import ExecutionSummary, FileMatch, RepositoryMatchSet, RepositoryOutcome

logger = logging.getLogger(__name__)


def build_client(config: RunConfig) -> GitHubClient:
    return GitHubClient(GitHubSession(config.tokens))


def publish_repository(
    publisher: ChangePublisher,
    repository: str,
    matches: Sequence[FileMatch],
    cancel_event: Optional[threading.Event] = None,
) -> RepositoryOutcome:
    """Publish one repository and fold every failure into the returned outcome."""
    if cancel_event is not None and cancel_event.is_set():
        return RepositoryOutcome(repository=repository, skipped=True)

    warnings: List[str] = []
    try:
        pr = publisher.publish(repository, matches, warnings=warnings)
    except PublishError as exc:
        logger.error(str(exc))
        return RepositoryOutcome(repository=repository, error=str(exc), phase=exc.phase, warnings=tuple(warnings))
    except Exception as exc:  # one broken repository must not end the run
        message = f"Error processing repository {repository}: {exc}"
        logger.exception(message)
        return RepositoryOutcome(repository=repository, error=message, phase="unexpected", warnings=tuple(warnings))
    logger.info("Created PR for %s: %s", repository, pr.pr_url)
    return RepositoryOutcome(repository=repository, pr=pr, warnings=tuple(warnings))


def _log_repository(repository: str, matches: Sequence[FileMatch]) -> None:
    occurrences = sum(match.match_count for match in matches)
    logger.info("Processing %s: %d files, %d total occurrences", repository, len(matches), occurrences)
    for match in matches:
        logger.info("  - %s: %d occurrences", match.path, match.match_count)


def run(
    config: RunConfig,
    client: Optional[GitHubClient] = None,
    cancel_event: Optional[threading.Event] = None,
) -> ExecutionSummary:
    """Validate, search, publish, and summarise.

    Raises ``ConfigError`` before any network work when ``config`` is invalid.
    Every later failure is recorded in the summary instead of raised.
    """
    ensure_valid_config(config)
    cancel_event = cancel_event or threading.Event()

    logger.info("Starting GitHub search and replace operation")
    logger.info("Organizations: %s", ", ".join(config.organizations))
    logger.info('Search: "%s"', config.search_string)
    logger.info('Replace: "%s"', config.replacement_string)
    logger.info("Dry run: %s", "YES" if config.dry_run else "NO")

    summary = ExecutionSummary(organizations=config.organizations, dry_run=config.dry_run)
    client = client or build_client(config)

    try:
        match_set = search_repositories(client, config)
    except SearchError as exc:
        message = f"Error during search operation: {exc}"
        logger.error(message)
        summary.errors.append(message)
        return summary

    summary.repositories_scanned = match_set.repositories_scanned
    summary.repositories_with_matches = len(match_set)
    summary.warnings.extend(match_set.warnings)
    for repository, matches in match_set.items():
        summary.would_change[repository] = {match.path: match.match_count for match in matches}
        _log_repository(repository, matches)

    if config.dry_run:
        summary.total_files_changed = match_set.file_count()
        for repository in match_set:
            logger.info("[DRY RUN] Would create PR for %s", repository)
        return summary

    publish_all(client, config, match_set, summary, cancel_event)
    if summary.skipped_repositories:
        summary.errors.append(
            f"Run cancelled; {len(summary.skipped_repositories)} repositories not processed: "
            + ", ".join(summary.skipped_repositories)
        )
    return summary


def publish_all(
    client: GitHubClient,
    config: RunConfig,
    match_set: RepositoryMatchSet,
    summary: ExecutionSummary,
    cancel_event: threading.Event,
) -> None:
    """Publish repositories on a bounded pool; only this thread writes ``summary``."""
    publisher = ChangePublisher(client, config)
    with ThreadPoolExecutor(max_workers=config.max_workers, thread_name_prefix="publish") as pool:
        futures = [
            pool.submit(publish_repository, publisher, repository, matches, cancel_event)
            for repository, matches in match_set.items()
        ]
        for future in as_completed(futures):
            summary.record(future.result())


def print_summary(summary: ExecutionSummary, out: Callable[[str], None] = print) -> None:
    """Print an itemized execution summary to stdout."""
    rule = "=" * 60
    out(rule)
    out("EXECUTION SUMMARY")
    out(rule)
    out(f"Organizations processed: {', '.join(summary.organizations)}")
    out(f"Total repositories scanned: {summary.repositories_scanned}")
    out(f"Repositories with matches: {summary.repositories_with_matches}")
    out(f"Total files that would be/were changed: {summary.total_files_changed}")

    if summary.dry_run:
        out(f"[DRY RUN] PRs that would be created: {summary.repositories_with_matches}")
        for repository, files in summary.would_change.items():
            out(f"  • {repository}: {len(files)} files, {sum(files.values())} occurrences")
    else:
        out(f"Successful PRs created: {len(summary.successful_prs)}")
        out(f"Failed PR attempts: {summary.failed_prs}")

    if summary.warnings:
        out(f"\nWarnings: {len(summary.warnings)}")
        for i, warning in enumerate(summary.warnings, 1):
            out(f"  {i}. {warning}")

    if summary.errors:
        out(f"\nErrors encountered: {len(summary.errors)}")
        for i, err in enumerate(summary.errors, 1):
            out(f"  {i}. {err}")

    if summary.successful_prs:
        out("\nCreated Pull Requests:")
        for pr in summary.successful_prs:
            out(f"  • {pr.repository}: PR #{pr.pr_number} ({pr.files_changed} files)")
            out(f"    {pr.pr_url}")
    out(rule)


def install_signal_handlers(cancel_event: threading.Event) -> Dict[int, Any]:
    """Stop starting new repositories on SIGINT/SIGTERM; in-flight ones finish.

    Returns the previous handlers so callers can restore them.
    """

    def _handle(signum, _frame) -> None:
        logger.warning("Received signal %s; finishing in-flight repositories", signum)
        cancel_event.set()

    previous = {}
    for signum in (signal.SIGINT, signal.SIGTERM):
        previous[signum] = signal.signal(signum, _handle)
    return previous


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point; returns the process exit code."""
    args = parse_args(argv)
    logging.basicConfig(level=resolve_log_level(args), format="[%(levelname)s] %(message)s")

    try:
        config = resolve_config(args)
        cancel_event = threading.Event()
        previous_handlers = install_signal_handlers(cancel_event)
        try:
            summary = run(config, cancel_event=cancel_event)
        finally:
            for signum, handler in previous_handlers.items():
                if handler is not None:
                    signal.signal(signum, handler)
    except ConfigError as exc:
        logger.error(str(exc))
        return 1

    if args.json:
        print(json.dumps(summary.to_dict(), indent=2, ensure_ascii=False))
    else:
        print_summary(summary)
    return summary.exit_code


if __name__ == "__main__":
    sys.exit(main())
