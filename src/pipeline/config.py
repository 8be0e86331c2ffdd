"""Run configuration for the search-and-replace pipeline: defaults, env/CLI resolution, validation."""

from __future__ import annotations

import argparse
import os
from dataclasses import dataclass, replace
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional, Tuple

from src.retrieval.config import DEFAULT_MAX_WORKERS
from src.secrets import github_tokens_from_secrets

from .errors import ConfigError

REPOSITORY_TYPES = ("public", "private", "internal")
LOG_LEVELS = ("DEBUG", "INFO", "WARN", "WARNING", "ERROR")

DEFAULT_INCLUDE_EXTENSIONS = (
    ".js", ".ts", ".jsx", ".tsx", ".json", ".yml", ".yaml", ".md", ".txt",
    ".html", ".css", ".py", ".java", ".go", ".rs", ".dockerfile", ".sh",
    ".env.example",
)
DEFAULT_EXCLUDE_PATTERNS = (
    ".git/", "node_modules/", "dist/", "build/", ".next/", "coverage/",
    "*.log", "*.lock", "package-lock.json", "yarn.lock",
)
DEFAULT_BRANCH_PREFIX = "automated-string-replacement"
DEFAULT_PR_TITLE = "Replace {searchString} with {replacementString}"
DEFAULT_PR_BODY = """This PR replaces all occurrences of `{searchString}` with `{replacementString}`.

## Changes Made
- Updated string references across the codebase
- No functional changes expected

## Review Notes
Please verify that the replacements are correct and don't break any functionality.

_This PR was created automatically by a search and replace script._"""
DEFAULT_PR_LABELS = ("automated", "maintenance")
DEFAULT_MAX_REPOS_PER_ORG = 50  # 0 = no cap


def _ordered_unique(values: Iterable[str]) -> Tuple[str, ...]:
    seen: Dict[str, None] = {}
    for value in values:
        value = (value or "").strip()
        if value:
            seen.setdefault(value, None)
    return tuple(seen)


def split_list(raw: Optional[str]) -> Tuple[str, ...]:
    """Split a comma-separated env value into trimmed, de-duplicated entries."""
    if not raw:
        return ()
    return _ordered_unique(raw.split(","))


def parse_bool(raw: Optional[str], default: bool = False) -> bool:
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class RunConfig:
    """Immutable settings for one search-and-replace run."""

    github_token: str
    organizations: Tuple[str, ...]
    search_string: str
    replacement_string: str
    include_extensions: Optional[FrozenSet[str]] = frozenset(DEFAULT_INCLUDE_EXTENSIONS)
    exclude_patterns: Optional[FrozenSet[str]] = frozenset(DEFAULT_EXCLUDE_PATTERNS)
    include_archived: bool = False
    repository_types: FrozenSet[str] = frozenset(REPOSITORY_TYPES)
    branch_prefix: str = DEFAULT_BRANCH_PREFIX
    pr_title_template: str = DEFAULT_PR_TITLE
    pr_body_template: str = DEFAULT_PR_BODY
    pr_labels: Tuple[str, ...] = DEFAULT_PR_LABELS
    dry_run: bool = False
    max_repos_per_org: int = DEFAULT_MAX_REPOS_PER_ORG
    max_workers: int = DEFAULT_MAX_WORKERS
    extra_tokens: Tuple[str, ...] = ()

    @property
    def tokens(self) -> Tuple[str, ...]:
        """Primary token first, then any rotation tokens."""
        return _ordered_unique((self.github_token,) + tuple(self.extra_tokens))

    def render(self, template: str) -> str:
        return template.replace("{searchString}", self.search_string).replace(
            "{replacementString}", self.replacement_string
        )

    @property
    def pr_title(self) -> str:
        return self.render(self.pr_title_template)

    @property
    def pr_body(self) -> str:
        return self.render(self.pr_body_template)

    @property
    def commit_message(self) -> str:
        return f"Replace {self.search_string} with {self.replacement_string}"


def validate_config(config: RunConfig) -> List[str]:
    """Return every problem with ``config``; an empty list means it is usable."""
    errors: List[str] = []

    if not config.github_token:
        errors.append("GitHub token is required")
    if not config.organizations:
        errors.append("At least one organization must be specified")
    if not config.search_string:
        errors.append("Search string is required")
    if not config.replacement_string:
        errors.append("Replacement string is required")
    if config.search_string == config.replacement_string:
        errors.append("Search and replacement strings cannot be the same")

    unknown = sorted(set(config.repository_types) - set(REPOSITORY_TYPES))
    if unknown:
        errors.append(f"Unknown repository types: {', '.join(unknown)}")
    if config.max_repos_per_org < 0:
        errors.append("Max repos per org cannot be negative")
    if config.max_workers < 1:
        errors.append("Max workers must be at least 1")
    if not config.branch_prefix.strip():
        errors.append("Branch prefix is required")

    return errors


def ensure_valid_config(config: RunConfig) -> RunConfig:
    errors = validate_config(config)
    if errors:
        raise ConfigError(errors)
    return config


def _int_env(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigError([f"{name} must be an integer, got {raw!r}"]) from exc


def load_config_from_env(
    env: Optional[Mapping[str, str]] = None,
    secrets_tokens: Optional[List[str]] = None,
) -> RunConfig:
    """Build a ``RunConfig`` from environment variables layered over the defaults."""
    env = os.environ if env is None else env
    if secrets_tokens is None:
        secrets_tokens = github_tokens_from_secrets()

    token = (env.get("GITHUB_TOKEN") or "").strip()
    if not token and secrets_tokens:
        token = secrets_tokens[0]

    include_extensions = split_list(env.get("INCLUDE_EXTENSIONS"))
    exclude_patterns = split_list(env.get("EXCLUDE_PATTERNS"))
    repository_types = split_list(env.get("REPOSITORY_TYPES"))
    labels = split_list(env.get("PR_LABELS"))

    return RunConfig(
        github_token=token,
        organizations=split_list(env.get("GITHUB_ORGANIZATIONS")),
        search_string=env.get("SEARCH_STRING", ""),
        replacement_string=env.get("REPLACEMENT_STRING", ""),
        include_extensions=frozenset(include_extensions or DEFAULT_INCLUDE_EXTENSIONS),
        exclude_patterns=frozenset(exclude_patterns or DEFAULT_EXCLUDE_PATTERNS),
        include_archived=parse_bool(env.get("INCLUDE_ARCHIVED")),
        repository_types=frozenset(t.lower() for t in repository_types) or frozenset(REPOSITORY_TYPES),
        branch_prefix=env.get("BRANCH_PREFIX") or DEFAULT_BRANCH_PREFIX,
        pr_labels=labels or DEFAULT_PR_LABELS,
        dry_run=parse_bool(env.get("DRY_RUN")),
        max_repos_per_org=_int_env(env, "MAX_REPOS_PER_ORG", DEFAULT_MAX_REPOS_PER_ORG),
        max_workers=_int_env(env, "MAX_WORKERS", DEFAULT_MAX_WORKERS),
        extra_tokens=tuple(t for t in secrets_tokens if t != token),
    )


def build_arg_parser() -> argparse.ArgumentParser:
    """Return the CLI parser; every flag overrides its environment variable."""

    parser = argparse.ArgumentParser(
        description="Replace a literal string across GitHub organizations by opening one PR per repository.",
    )
    parser.add_argument("--org", dest="organizations", action="append", help="organization to search (repeatable)")
    parser.add_argument("--search", dest="search_string")
    parser.add_argument("--replace", dest="replacement_string")
    parser.add_argument("--dry-run", action="store_true", default=None)
    parser.add_argument("--log-level", type=str.upper, choices=LOG_LEVELS)
    parser.add_argument("--max-repos-per-org", type=int)
    parser.add_argument("--max-workers", type=int)
    parser.add_argument("--label", dest="labels", action="append", help="PR label (repeatable)")
    parser.add_argument("--branch-prefix")
    parser.add_argument("--include-archived", action="store_true", default=None)
    parser.add_argument("--json", action="store_true", help="print the summary as JSON")
    return parser


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments; accepts argv overrides for testing."""

    parser = build_arg_parser()
    return parser.parse_args(argv)


def resolve_config(
    args: Optional[argparse.Namespace] = None,
    env: Optional[Mapping[str, str]] = None,
    secrets_tokens: Optional[List[str]] = None,
) -> RunConfig:
    """Merge defaults, environment and CLI flags into one ``RunConfig``."""
    config = load_config_from_env(env, secrets_tokens)
    if args is None:
        return config

    overrides = {}
    if args.organizations:
        overrides["organizations"] = _ordered_unique(args.organizations)
    if args.search_string is not None:
        overrides["search_string"] = args.search_string
    if args.replacement_string is not None:
        overrides["replacement_string"] = args.replacement_string
    if args.dry_run:
        overrides["dry_run"] = True
    if args.max_repos_per_org is not None:
        overrides["max_repos_per_org"] = args.max_repos_per_org
    if args.max_workers is not None:
        overrides["max_workers"] = args.max_workers
    if args.labels:
        overrides["pr_labels"] = _ordered_unique(args.labels)
    if args.branch_prefix:
        overrides["branch_prefix"] = args.branch_prefix
    if args.include_archived:
        overrides["include_archived"] = True
    return replace(config, **overrides)


def resolve_log_level(args: Optional[argparse.Namespace] = None, env: Optional[Mapping[str, str]] = None) -> str:
    """Return a ``logging`` level name from ``--log-level`` or ``LOG_LEVEL`` (default INFO)."""
    env = os.environ if env is None else env
    level = (getattr(args, "log_level", None) or env.get("LOG_LEVEL") or "INFO").upper()
    if level == "WARN":
        level = "WARNING"
    return level if level in LOG_LEVELS else "INFO"


__all__ = [
    "REPOSITORY_TYPES",
    "DEFAULT_INCLUDE_EXTENSIONS",
    "DEFAULT_EXCLUDE_PATTERNS",
    "DEFAULT_BRANCH_PREFIX",
    "DEFAULT_PR_TITLE",
    "DEFAULT_PR_BODY",
    "DEFAULT_PR_LABELS",
    "DEFAULT_MAX_REPOS_PER_ORG",
    "RunConfig",
    "split_list",
    "parse_bool",
    "validate_config",
    "ensure_valid_config",
    "load_config_from_env",
    "build_arg_parser",
    "parse_args",
    "resolve_config",
    "resolve_log_level",
]
