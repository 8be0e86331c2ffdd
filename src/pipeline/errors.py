"""Error taxonomy for a search-and-replace run."""

from __future__ import annotations

from typing import List, Optional, Sequence


class SearchReplaceError(Exception):
    """Base class for every error this package raises on purpose."""


class ConfigError(SearchReplaceError):
    """The run configuration is invalid; raised before any network call."""

    def __init__(self, errors: Sequence[str]) -> None:
        self.errors: List[str] = list(errors)
        super().__init__("Configuration errors: " + ", ".join(self.errors))


class SearchError(SearchReplaceError):
    """The code search call itself failed, so no repository can be evaluated."""


class FileFetchError(SearchReplaceError):
    """One candidate file could not be fetched; the file is skipped."""

    def __init__(self, repository: str, path: str, cause: object) -> None:
        self.repository = repository
        self.path = path
        self.cause = cause
        super().__init__(f"Could not fetch content for {repository}/{path}: {cause}")


class PublishError(SearchReplaceError):
    """Publishing one repository failed; other repositories are unaffected."""

    def __init__(self, repository: str, phase: str, cause: object, branch: Optional[str] = None) -> None:
        self.repository = repository
        self.phase = phase
        self.cause = cause
        self.branch = branch
        detail = f" (branch {branch} left in place)" if branch else ""
        super().__init__(f"Failed to create PR for {repository} during {phase}: {cause}{detail}")


class ConflictError(PublishError):
    """A matched file changed between search and commit."""

    def __init__(self, repository: str, path: str, cause: object, branch: Optional[str] = None) -> None:
        self.path = path
        super().__init__(repository, "commit", f"{path} changed since search ({cause})", branch)


class LabelError(SearchReplaceError):
    """Labels could not be applied to an already opened pull request."""

    def __init__(self, repository: str, pr_number: int, cause: object) -> None:
        self.repository = repository
        self.pr_number = pr_number
        self.cause = cause
        super().__init__(f"Could not add labels to PR #{pr_number} in {repository}: {cause}")


__all__ = [
    "SearchReplaceError",
    "ConfigError",
    "SearchError",
    "FileFetchError",
    "PublishError",
    "ConflictError",
    "LabelError",
]
