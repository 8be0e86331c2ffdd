"""Code search across organizations, filtering, and local confirmation of matches."""

from __future__ import annotations

import logging
import math
import re
import time
from typing import Any, Dict, Iterable, List, Optional, Pattern, Set

import requests

from src.pipeline.config import RunConfig
from src.pipeline.errors import FileFetchError, SearchError
from src.pipeline.models import FileMatch, RepositoryMatchSet

from .client import GitHubAPIError, GitHubClient
from .config import MAX_SEARCH_PAGES, PER_PAGE, SEARCH_PAGE_DELAY_SEC

logger = logging.getLogger(__name__)


def build_search_query(search_string: str, organizations: Iterable[str]) -> str:
    """One query covering every organization: ``"term" org:a org:b``."""
    escaped = search_string.replace("\\", "\\\\").replace('"', '\\"')
    scopes = " ".join(f"org:{org}" for org in organizations)
    return f'"{escaped}" {scopes}'.strip()


def count_occurrences(content: str, search_string: str) -> int:
    """Count non-overlapping literal occurrences; regex metacharacters have no meaning here."""
    if not search_string:
        return 0
    return content.count(search_string)


def replace_occurrences(content: str, search_string: str, replacement_string: str) -> str:
    return content.replace(search_string, replacement_string)


def glob_to_regex(pattern: str) -> Pattern[str]:
    """Translate a glob into an anchored regex: ``*`` is any run, ``?`` one non-slash char."""
    parts: List[str] = []
    for ch in pattern:
        if ch == "*":
            parts.append(".*")
        elif ch == "?":
            parts.append("[^/]")
        else:
            parts.append(re.escape(ch))
    return re.compile("".join(parts))


def path_matches_pattern(path: str, pattern: str) -> bool:
    """Plain patterns match as substrings; globs must match the whole path or a trailing run of segments."""
    if "*" not in pattern and "?" not in pattern:
        return pattern in path
    regex = glob_to_regex(pattern)
    candidates = [path] + [path[i + 1:] for i, ch in enumerate(path) if ch == "/"]
    return any(regex.fullmatch(candidate) for candidate in candidates)


def should_exclude_path(path: str, patterns: Optional[Iterable[str]]) -> bool:
    if not patterns:
        return False
    return any(path_matches_pattern(path, pattern) for pattern in patterns)


def has_included_extension(path: str, extensions: Optional[Iterable[str]]) -> bool:
    """True when no extension filter is set or the file name ends with one of them."""
    if not extensions:
        return True
    name = path.rsplit("/", 1)[-1].lower()
    for ext in extensions:
        ext = ext.lower()
        if name.endswith(ext) or name == ext.lstrip("."):
            return True
    return False


def repository_allowed(repo_info: Dict[str, Any], config: RunConfig) -> bool:
    """Apply the archived and visibility filters."""
    if not config.include_archived and repo_info.get("archived"):
        return False
    if config.repository_types and repo_info.get("visibility") not in config.repository_types:
        return False
    return True


def _repo_info_from_hit(repo: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Use the search hit's embedded repository when it carries everything the filters need."""
    if "archived" not in repo or "default_branch" not in repo:
        return None
    if "visibility" not in repo and "private" not in repo:
        return None
    return {
        "full_name": repo.get("full_name"),
        "default_branch": repo.get("default_branch") or "main",
        "archived": bool(repo.get("archived")),
        "visibility": repo.get("visibility") or ("private" if repo.get("private") else "public"),
    }


class _SearchRun:
    """Mutable state of one search; owned by ``search_repositories`` only."""

    def __init__(self, client: GitHubClient, config: RunConfig) -> None:
        self.client = client
        self.config = config
        self.result = RepositoryMatchSet()
        self.seen_repos: Set[str] = set()
        self.seen_files: Set[str] = set()
        self.repo_info: Dict[str, Optional[Dict[str, Any]]] = {}
        self.repos_by_org: Dict[str, Set[str]] = {}
        self.capped_repos: Set[str] = set()
        self.extension_skipped = 0

    def warn(self, message: str) -> None:
        logger.warning(message)
        self.result.warnings.append(message)

    def resolve_repository(self, repo: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        full_name = repo["full_name"]
        if full_name in self.repo_info:
            return self.repo_info[full_name]
        info = _repo_info_from_hit(repo)
        if info is None:
            owner, name = full_name.split("/", 1)
            try:
                info = self.client.get_repository(owner, name)
            except (GitHubAPIError, requests.RequestException) as exc:
                self.warn(f"Could not load repository {full_name}; skipping its files: {exc}")
                info = None
        self.repo_info[full_name] = info
        return info

    def within_org_cap(self, full_name: str) -> bool:
        cap = self.config.max_repos_per_org
        org = full_name.split("/", 1)[0].lower()
        accepted = self.repos_by_org.setdefault(org, set())
        if full_name in accepted:
            return True
        if cap and len(accepted) >= cap:
            if full_name not in self.capped_repos:
                self.capped_repos.add(full_name)
                self.warn(f"Skipping {full_name}: organization {org} already has {cap} repositories")
            return False
        accepted.add(full_name)
        return True

    def process_item(self, item: Dict[str, Any]) -> None:
        repo = item.get("repository") or {}
        full_name = repo.get("full_name")
        path = item.get("path")
        if not full_name or not path:
            return
        self.seen_repos.add(full_name)
        self.result.repositories_scanned = len(self.seen_repos)

        file_key = f"{full_name}/{path}"
        if file_key in self.seen_files:
            return
        self.seen_files.add(file_key)

        if should_exclude_path(path, self.config.exclude_patterns):
            logger.debug("Skipping file due to path exclusion: %s", file_key)
            return
        if not has_included_extension(path, self.config.include_extensions):
            logger.debug("Skipping file due to extension filter: %s", file_key)
            self.extension_skipped += 1
            return

        info = self.resolve_repository(repo)
        if info is None:
            return
        if not repository_allowed(info, self.config):
            logger.debug("Skipping repository due to filters: %s", full_name)
            return
        if not self.within_org_cap(full_name):
            return

        match = self.fetch_match(full_name, path, info["default_branch"], item.get("html_url") or "")
        if match is not None:
            self.result.add(match)

    def fetch_match(self, full_name: str, path: str, ref: str, url: str) -> Optional[FileMatch]:
        owner, name = full_name.split("/", 1)
        try:
            fetched = self.client.get_file_content(owner, name, path, ref)
        except (GitHubAPIError, requests.RequestException, ValueError, KeyError) as exc:
            self.warn(str(FileFetchError(full_name, path, exc)))
            return None
        if fetched is None:
            logger.debug("Skipping non-file entry %s/%s", full_name, path)
            return None

        content, sha = fetched
        match_count = count_occurrences(content, self.config.search_string)
        if match_count == 0:
            logger.debug("Search index is stale for %s/%s; string no longer present", full_name, path)
            return None
        logger.debug("Found %d matches in %s/%s", match_count, full_name, path)
        return FileMatch(
            repository=full_name,
            path=path,
            content=content,
            sha=sha,
            match_count=match_count,
            url=url,
        )


def search_repositories(client: GitHubClient, config: RunConfig) -> RepositoryMatchSet:
    """Run one paginated code search across every organization and confirm each hit.

    Raises ``SearchError`` when a search page cannot be fetched. Problems with
    single files or repositories become warnings on the returned match set.
    """
    query = build_search_query(config.search_string, config.organizations)
    logger.info("GitHub search query: %s", query)
    run = _SearchRun(client, config)

    page = 1
    while page <= MAX_SEARCH_PAGES:
        logger.debug("Fetching search results page %d", page)
        try:
            data = client.search_code(query, page=page, per_page=PER_PAGE)
        except (GitHubAPIError, requests.RequestException) as exc:
            raise SearchError(f"Search failed on page {page}: {exc}") from exc

        items = data["items"]
        total_count = data["total_count"]
        if page == 1:
            run.result.total_count = total_count
        if data.get("incomplete_results"):
            run.warn(f"GitHub reported incomplete search results on page {page}")
        if not items:
            break

        logger.info("Found %d code matches on page %d (total: %d)", len(items), page, total_count)
        for item in items:
            run.process_item(item)

        has_more = len(items) == PER_PAGE and page < math.ceil(total_count / PER_PAGE)
        if not has_more:
            break
        if page == MAX_SEARCH_PAGES:
            run.result.truncated = True
            run.warn(
                f"Search truncated at {MAX_SEARCH_PAGES * PER_PAGE} of {total_count} results; "
                "narrow the organizations or search string to cover the rest"
            )
            break
        page += 1
        time.sleep(SEARCH_PAGE_DELAY_SEC)

    if run.extension_skipped:
        run.warn(
            f"Skipped {run.extension_skipped} search hits whose file extension is not in the include list; "
            "set INCLUDE_EXTENSIONS to cover them"
        )

    result = run.result
    logger.info("Search completed. Found matches in %d repositories", len(result))
    for repository, matches in result.items():
        occurrences = sum(match.match_count for match in matches)
        logger.info("  %s: %d files, %d total occurrences", repository, len(matches), occurrences)
    return result


__all__ = [
    "build_search_query",
    "count_occurrences",
    "replace_occurrences",
    "glob_to_regex",
    "path_matches_pattern",
    "should_exclude_path",
    "has_included_extension",
    "repository_allowed",
    "search_repositories",
]
