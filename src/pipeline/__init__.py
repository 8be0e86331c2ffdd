"""GitHub search-and-replace pipeline: configuration, records and errors."""

from .config import RunConfig, ensure_valid_config, validate_config
from .errors import (
    ConfigError,
    ConflictError,
    FileFetchError,
    LabelError,
    PublishError,
    SearchError,
    SearchReplaceError,
)
from .models import ExecutionSummary, FileMatch, PRResult, RepositoryMatchSet, RepositoryOutcome

__all__ = [
    "RunConfig",
    "ensure_valid_config",
    "validate_config",
    "ConfigError",
    "ConflictError",
    "FileFetchError",
    "LabelError",
    "PublishError",
    "SearchError",
    "SearchReplaceError",
    "ExecutionSummary",
    "FileMatch",
    "PRResult",
    "RepositoryMatchSet",
    "RepositoryOutcome",
]
