"""Records passed between the search, publish and summary stages."""

from __future__ import annotations

from collections import OrderedDict
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Tuple


@dataclass(frozen=True)
class FileMatch:
    """A file confirmed by direct fetch to contain the search string."""

    repository: str
    path: str
    content: str
    sha: str
    match_count: int
    url: str


class RepositoryMatchSet:
    """Matched files grouped by repository full name, in discovery order.

    Also carries what the search learned along the way: how many distinct
    repositories appeared in search hits, warnings worth surfacing, and whether
    the result cap cut the search short.
    """

    def __init__(self) -> None:
        self._matches: "OrderedDict[str, List[FileMatch]]" = OrderedDict()
        self.repositories_scanned = 0
        self.total_count = 0
        self.truncated = False
        self.warnings: List[str] = []

    def add(self, match: FileMatch) -> None:
        self._matches.setdefault(match.repository, []).append(match)

    def __len__(self) -> int:
        return len(self._matches)

    def __iter__(self) -> Iterator[str]:
        return iter(self._matches)

    def __contains__(self, repository: object) -> bool:
        return repository in self._matches

    def __getitem__(self, repository: str) -> Tuple[FileMatch, ...]:
        return tuple(self._matches[repository])

    def items(self) -> Iterator[Tuple[str, Tuple[FileMatch, ...]]]:
        for repository, matches in self._matches.items():
            yield repository, tuple(matches)

    def file_count(self) -> int:
        return sum(len(matches) for matches in self._matches.values())


@dataclass(frozen=True)
class PRResult:
    repository: str
    pr_number: int
    pr_url: str
    files_changed: int
    branch_name: str


@dataclass(frozen=True)
class RepositoryOutcome:
    """What happened to one repository: a PR, a failure, or a skip."""

    repository: str
    pr: Optional[PRResult] = None
    error: Optional[str] = None
    phase: Optional[str] = None
    warnings: Tuple[str, ...] = ()
    skipped: bool = False

    @property
    def ok(self) -> bool:
        return self.pr is not None


@dataclass
class ExecutionSummary:
    """Run-level totals. Only the orchestrating thread writes to it."""

    organizations: Tuple[str, ...] = ()
    dry_run: bool = False
    repositories_scanned: int = 0
    repositories_with_matches: int = 0
    total_files_changed: int = 0
    successful_prs: List[PRResult] = field(default_factory=list)
    failed_prs: int = 0
    skipped_repositories: List[str] = field(default_factory=list)
    would_change: Dict[str, Dict[str, int]] = field(default_factory=dict)
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def record(self, outcome: RepositoryOutcome) -> None:
        self.warnings.extend(outcome.warnings)
        if outcome.pr is not None:
            self.successful_prs.append(outcome.pr)
            self.total_files_changed += outcome.pr.files_changed
        elif outcome.skipped:
            self.skipped_repositories.append(outcome.repository)
        else:
            self.failed_prs += 1
            self.errors.append(outcome.error or f"Failed to create PR for {outcome.repository}")

    @property
    def has_errors(self) -> bool:
        return bool(self.errors) or self.failed_prs > 0

    @property
    def exit_code(self) -> int:
        return 1 if self.has_errors else 0

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["organizations"] = list(self.organizations)
        data["exit_code"] = self.exit_code
        return data


__all__ = [
    "FileMatch",
    "RepositoryMatchSet",
    "PRResult",
    "RepositoryOutcome",
    "ExecutionSummary",
]
