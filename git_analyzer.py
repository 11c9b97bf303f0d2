#!/usr/bin/env python3
"""
Git Repository Analyzer (v0.1.0)

Reads commit history from a git repository and produces aggregate analytics:
- Author rankings with first/last commit timestamps
- Temporal activity (per day, per hour, per weekday)
- File-level hotspots, largest changes and churn
- Collaboration hotspots (files touched by several authors)

The two aggregators (CommitAggregator, FileAggregator) are pure functions of
the commit list they are given. Everything else in this module (the git data
source, the console reporter, config handling and the CLI) is a thin layer
around them.

Version: 0.1.0
"""

import json
import logging
import math
import os
import subprocess
import sys
import tempfile
import traceback
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Tuple, Union

import click
import psutil
import yaml
from colorama import Fore, Style, just_fix_windows_console
from tqdm import tqdm

just_fix_windows_console()

logger = logging.getLogger(__name__)

# Version information
VERSION = "0.1.0"
SCHEMA_VERSION = "1.0.0"

DEFAULT_TOP_N = 10
SECONDS_PER_DAY = 86400
HOUR_CLOCKS = ("commit", "utc")
WEEKDAY_NAMES = (
    "Monday",
    "Tuesday",
    "Wednesday",
    "Thursday",
    "Friday",
    "Saturday",
    "Sunday",
)


# ============================================================================
# ERROR TAXONOMY
# ============================================================================


class AnalysisErrorKind(Enum):
    """Closed set of failure kinds callers can branch on"""

    EMPTY_INPUT = "EMPTY_INPUT"
    AGGREGATION_FAILED = "AGGREGATION_FAILED"
    INVALID_REPOSITORY = "INVALID_REPOSITORY"
    GIT_OPERATION_FAILED = "GIT_OPERATION_FAILED"
    INVALID_OPTIONS = "INVALID_OPTIONS"


class AnalysisError(Exception):
    """
    Base class for every failure raised by the analyzer.

    Attributes:
        kind: AnalysisErrorKind classifying the failure
        cause: Underlying exception, if the failure wraps one
    """

    def __init__(
        self,
        kind: AnalysisErrorKind,
        message: str,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message)
        self.kind = kind
        self.cause = cause


class EmptyInputError(AnalysisError):
    """No records to aggregate. A caller precondition, not retryable."""

    def __init__(self, message: str = "No commits to analyze"):
        super().__init__(AnalysisErrorKind.EMPTY_INPUT, message)


class AggregationFailedError(AnalysisError):
    """Unexpected failure while computing an aggregate"""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(
            AnalysisErrorKind.AGGREGATION_FAILED, f"Analysis failed: {message}", cause
        )


class InvalidRepositoryError(AnalysisError):
    """The given path is not a git repository"""

    def __init__(self, path: str, cause: Optional[BaseException] = None):
        super().__init__(
            AnalysisErrorKind.INVALID_REPOSITORY,
            f"Invalid git repository: {path}",
            cause,
        )
        self.path = path


class GitOperationError(AnalysisError):
    """A git command exited with an error or could not be started"""

    def __init__(
        self, operation: str, message: str, cause: Optional[BaseException] = None
    ):
        super().__init__(
            AnalysisErrorKind.GIT_OPERATION_FAILED,
            f"Git operation '{operation}' failed: {message}",
            cause,
        )
        self.operation = operation


class InvalidOptionsError(AnalysisError):
    """Analysis or configuration options are out of range"""

    def __init__(self, message: str):
        super().__init__(AnalysisErrorKind.INVALID_OPTIONS, f"Invalid options: {message}")


# ============================================================================
# DATA STRUCTURES & MODELS
# ============================================================================


def _iso(dt: datetime) -> str:
    return dt.isoformat()


def author_identity(name: str, email: str) -> str:
    """
    Identity key for an author.

    The case-folded email is the deduplication key. Commits without an email
    fall back to the display name.
    """
    normalized = (email or "").strip().lower()
    if normalized:
        return normalized
    return (name or "").strip() or "unknown"


@dataclass(frozen=True)
class FileChangeEntry:
    """Line-level delta for one file in one commit"""

    path: str
    changes: int = 0
    insertions: int = 0
    deletions: int = 0
    binary: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "path": self.path,
            "changes": self.changes,
            "insertions": self.insertions,
            "deletions": self.deletions,
            "binary": self.binary,
        }


@dataclass(frozen=True)
class CommitRecord:
    """
    One commit as handed over by the data source.

    ``date`` must be timezone-aware; the hour histogram depends on the offset
    it carries. ``files`` is empty unless file statistics were requested.
    """

    hash: str
    author: str
    email: str
    date: datetime
    message: str
    body: str = ""
    refs: str = ""
    files: Tuple[FileChangeEntry, ...] = ()

    def __post_init__(self):
        if self.date.tzinfo is None or self.date.utcoffset() is None:
            raise ValueError(
                f"Commit {self.hash} has a naive timestamp: {self.date!r}"
            )
        if not isinstance(self.files, tuple):
            object.__setattr__(self, "files", tuple(self.files))

    @property
    def changed_files(self) -> int:
        return len(self.files)

    @property
    def insertions(self) -> int:
        return sum(entry.insertions for entry in self.files)

    @property
    def deletions(self) -> int:
        return sum(entry.deletions for entry in self.files)


@dataclass(frozen=True)
class AuthorStat:
    name: str
    email: str
    commit_count: int
    first_commit: datetime
    last_commit: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "email": self.email,
            "commit_count": self.commit_count,
            "first_commit": _iso(self.first_commit),
            "last_commit": _iso(self.last_commit),
        }


@dataclass(frozen=True)
class FileStat:
    path: str
    change_count: int
    total_changes: int
    total_insertions: int
    total_deletions: int
    authors: FrozenSet[str]
    first_seen: datetime
    last_modified: datetime

    @property
    def author_count(self) -> int:
        return len(self.authors)

    @property
    def churn(self) -> int:
        return self.total_insertions + self.total_deletions

    def to_dict(self) -> Dict[str, Any]:
        return {
            "path": self.path,
            "change_count": self.change_count,
            "total_changes": self.total_changes,
            "total_insertions": self.total_insertions,
            "total_deletions": self.total_deletions,
            "author_count": self.author_count,
            "authors": sorted(self.authors),
            "first_seen": _iso(self.first_seen),
            "last_modified": _iso(self.last_modified),
        }


@dataclass(frozen=True)
class DateRange:
    earliest: datetime
    latest: datetime
    span_days: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "earliest": _iso(self.earliest),
            "latest": _iso(self.latest),
            "span_days": self.span_days,
        }


@dataclass(frozen=True)
class CommitAnalysisResult:
    total_commits: int
    date_range: DateRange
    authors: Tuple[AuthorStat, ...]
    top_authors: Tuple[AuthorStat, ...]
    commits_by_day: Dict[str, int]
    commits_by_hour: Dict[int, int]
    average_commits_per_day: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_commits": self.total_commits,
            "date_range": self.date_range.to_dict(),
            "average_commits_per_day": self.average_commits_per_day,
            "authors": [author.to_dict() for author in self.authors],
            "top_authors": [author.to_dict() for author in self.top_authors],
            "commits_by_day": dict(sorted(self.commits_by_day.items())),
            "commits_by_hour": dict(sorted(self.commits_by_hour.items())),
        }


@dataclass(frozen=True)
class FileAnalysisResult:
    total_files: int
    total_changes: int
    total_insertions: int
    total_deletions: int
    net_change: int
    hotspots: Tuple[FileStat, ...]
    largest_changes: Tuple[FileStat, ...]
    files: Tuple[FileStat, ...]

    def to_dict(self, include_files: bool = True) -> Dict[str, Any]:
        data = {
            "total_files": self.total_files,
            "total_changes": self.total_changes,
            "total_insertions": self.total_insertions,
            "total_deletions": self.total_deletions,
            "net_change": self.net_change,
            "hotspots": [f.to_dict() for f in self.hotspots],
            "largest_changes": [f.to_dict() for f in self.largest_changes],
        }
        if include_files:
            data["files"] = [f.to_dict() for f in self.files]
        return data


@dataclass(frozen=True)
class ChurnRate:
    """One row of the churn-rate ranking"""

    file: FileStat
    days_active: int
    churn_rate: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "path": self.file.path,
            "change_count": self.file.change_count,
            "days_active": self.days_active,
            "churn_rate": round(self.churn_rate, 4),
        }


@dataclass(frozen=True)
class RepositoryInfo:
    path: str
    current_branch: str
    remotes: Tuple[str, ...]
    total_commits: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "path": self.path,
            "branch": self.current_branch,
            "remotes": list(self.remotes),
            "total_commits": self.total_commits,
        }


@dataclass(frozen=True)
class AnalysisOptions:
    """Filters applied by the data source before aggregation"""

    branch: Optional[str] = None
    since: Optional[Union[str, datetime]] = None
    until: Optional[Union[str, datetime]] = None
    author: Optional[str] = None
    max_count: Optional[int] = None

    def __post_init__(self):
        if self.max_count is not None and self.max_count < 1:
            raise InvalidOptionsError(
                f"max_count must be a positive integer, got {self.max_count}"
            )
        if self.branch is not None and self.branch.startswith("-"):
            raise InvalidOptionsError(f"branch name cannot start with '-': {self.branch}")


# Builders live only for the duration of one analyze() call and are frozen
# into the value types above before anything is returned.


@dataclass
class _AuthorBuilder:
    name: str
    email: str
    first_commit: datetime
    last_commit: datetime
    commit_count: int = 0

    def add(self, date: datetime):
        self.commit_count += 1
        if date < self.first_commit:
            self.first_commit = date
        if date > self.last_commit:
            self.last_commit = date

    def freeze(self) -> AuthorStat:
        return AuthorStat(
            name=self.name,
            email=self.email,
            commit_count=self.commit_count,
            first_commit=self.first_commit,
            last_commit=self.last_commit,
        )


@dataclass
class _FileBuilder:
    path: str
    first_seen: datetime
    last_modified: datetime
    change_count: int = 0
    total_changes: int = 0
    total_insertions: int = 0
    total_deletions: int = 0
    authors: set = field(default_factory=set)

    def add(self, entry: FileChangeEntry, commit: CommitRecord):
        self.change_count += 1
        self.total_changes += entry.changes
        self.total_insertions += entry.insertions
        self.total_deletions += entry.deletions
        self.authors.add(author_identity(commit.author, commit.email))
        if commit.date < self.first_seen:
            self.first_seen = commit.date
        if commit.date > self.last_modified:
            self.last_modified = commit.date

    def freeze(self) -> FileStat:
        return FileStat(
            path=self.path,
            change_count=self.change_count,
            total_changes=self.total_changes,
            total_insertions=self.total_insertions,
            total_deletions=self.total_deletions,
            authors=frozenset(self.authors),
            first_seen=self.first_seen,
            last_modified=self.last_modified,
        )


# ============================================================================
# BASE AGGREGATOR
# ============================================================================


def _require_aware(name: str, value: datetime):
    if value.tzinfo is None or value.utcoffset() is None:
        raise InvalidOptionsError(f"{name} must be timezone-aware")


def top_ranked(items: Iterable, key, limit: int) -> Tuple:
    """
    Sort descending by ``key`` and keep the first ``limit`` items.

    sorted() is stable with reverse=True, so equal keys keep their input
    (first-seen) order.
    """
    return tuple(sorted(items, key=key, reverse=True)[:limit])


class Aggregator:
    """
    Base class for the commit and file aggregators.

    Subclasses implement ``_aggregate``. ``analyze`` owns the empty-input
    check and turns any unexpected exception into AggregationFailedError, so
    callers only ever see AnalysisError subclasses. No state survives a call.
    """

    failure_message = "Failed to aggregate commits"

    def __init__(self, top_n: int = DEFAULT_TOP_N):
        if not isinstance(top_n, int) or top_n < 1:
            raise InvalidOptionsError(f"top_n must be a positive integer, got {top_n!r}")
        self.top_n = top_n

    def analyze(self, commits: Optional[Iterable[CommitRecord]]):
        if commits is None:
            raise EmptyInputError()
        try:
            records = list(commits)
        except Exception as e:
            raise AggregationFailedError(
                "could not read the commit collection", cause=e
            ) from e
        if not records:
            raise EmptyInputError()

        logger.debug("%s: aggregating %d commits", type(self).__name__, len(records))
        try:
            return self._aggregate(records)
        except AnalysisError:
            raise
        except Exception as e:
            raise AggregationFailedError(self.failure_message, cause=e) from e

    def _aggregate(self, commits: List[CommitRecord]):
        raise NotImplementedError


# ============================================================================
# COMMIT AGGREGATOR
# ============================================================================


class CommitAggregator(Aggregator):
    """
    Author rankings, date range and temporal histograms for a commit list.

    Args:
        top_n: Length of the top-author ranking
        hour_clock: "commit" buckets hours (and weekdays) by the offset each
            timestamp carries, "utc" converts to UTC first
    """

    failure_message = "Failed to analyze commits"

    def __init__(self, top_n: int = DEFAULT_TOP_N, hour_clock: str = "commit"):
        super().__init__(top_n=top_n)
        if hour_clock not in HOUR_CLOCKS:
            raise InvalidOptionsError(
                f"hour_clock must be one of {', '.join(HOUR_CLOCKS)}, got {hour_clock!r}"
            )
        self.hour_clock = hour_clock

    def _aggregate(self, commits: List[CommitRecord]) -> CommitAnalysisResult:
        authors = tuple(b.freeze() for b in self._extract_authors(commits).values())
        date_range = self._calculate_date_range(commits)

        return CommitAnalysisResult(
            total_commits=len(commits),
            date_range=date_range,
            authors=authors,
            top_authors=top_ranked(
                authors, key=lambda a: a.commit_count, limit=self.top_n
            ),
            commits_by_day=self._group_by_day(commits),
            commits_by_hour=self._group_by_hour(commits),
            average_commits_per_day=round(len(commits) / date_range.span_days, 2),
        )

    def _clock(self, dt: datetime) -> datetime:
        if self.hour_clock == "utc":
            return dt.astimezone(timezone.utc)
        return dt

    def _extract_authors(self, commits: List[CommitRecord]) -> Dict[str, _AuthorBuilder]:
        """Group by identity; the first-seen name/email pair is kept"""
        builders: Dict[str, _AuthorBuilder] = {}
        for commit in commits:
            key = author_identity(commit.author, commit.email)
            builder = builders.get(key)
            if builder is None:
                builder = builders[key] = _AuthorBuilder(
                    name=commit.author,
                    email=commit.email,
                    first_commit=commit.date,
                    last_commit=commit.date,
                )
            builder.add(commit.date)
        return builders

    @staticmethod
    def _calculate_date_range(commits: List[CommitRecord]) -> DateRange:
        earliest = min(c.date for c in commits)
        latest = max(c.date for c in commits)

        # Inclusive count of UTC calendar days, so a single day gives 1
        start_day = earliest.astimezone(timezone.utc).date()
        end_day = latest.astimezone(timezone.utc).date()
        span_days = (end_day - start_day).days + 1

        return DateRange(earliest=earliest, latest=latest, span_days=span_days)

    @staticmethod
    def _group_by_day(commits: List[CommitRecord]) -> Dict[str, int]:
        by_day: Dict[str, int] = {}
        for commit in commits:
            day = commit.date.astimezone(timezone.utc).date().isoformat()
            by_day[day] = by_day.get(day, 0) + 1
        return by_day

    def _group_by_hour(self, commits: List[CommitRecord]) -> Dict[int, int]:
        by_hour = {hour: 0 for hour in range(24)}
        for commit in commits:
            by_hour[self._clock(commit.date).hour] += 1
        return by_hour

    def commits_by_day_of_week(self, commits: Iterable[CommitRecord]) -> Dict[int, int]:
        """Commit counts per weekday, 0=Monday .. 6=Sunday, all 7 keys present"""
        by_weekday = {day: 0 for day in range(7)}
        for commit in commits:
            by_weekday[self._clock(commit.date).weekday()] += 1
        return by_weekday

    @staticmethod
    def commits_by_author(
        commits: Iterable[CommitRecord], email: str
    ) -> List[CommitRecord]:
        wanted = email.strip().lower()
        return [c for c in commits if c.email.strip().lower() == wanted]

    @staticmethod
    def commits_in_range(
        commits: Iterable[CommitRecord], start: datetime, end: datetime
    ) -> List[CommitRecord]:
        """Commits with ``start <= date <= end``"""
        _require_aware("start", start)
        _require_aware("end", end)
        return [c for c in commits if start <= c.date <= end]


# ============================================================================
# FILE AGGREGATOR
# ============================================================================


class FileAggregator(Aggregator):
    """
    Per-file statistics, hotspot and largest-change rankings.

    Files are keyed by path only, so a renamed file shows up as two
    independent paths.
    """

    failure_message = "Failed to analyze file changes"

    def _aggregate(self, commits: List[CommitRecord]) -> FileAnalysisResult:
        builders: Dict[str, _FileBuilder] = {}
        for commit in commits:
            for entry in commit.files:
                builder = builders.get(entry.path)
                if builder is None:
                    builder = builders[entry.path] = _FileBuilder(
                        path=entry.path,
                        first_seen=commit.date,
                        last_modified=commit.date,
                    )
                builder.add(entry, commit)

        files = tuple(b.freeze() for b in builders.values())
        total_insertions = sum(f.total_insertions for f in files)
        total_deletions = sum(f.total_deletions for f in files)

        return FileAnalysisResult(
            total_files=len(files),
            total_changes=sum(f.total_changes for f in files),
            total_insertions=total_insertions,
            total_deletions=total_deletions,
            net_change=total_insertions - total_deletions,
            # Frequency and volume are ranked independently
            hotspots=top_ranked(files, key=lambda f: f.change_count, limit=self.top_n),
            largest_changes=top_ranked(
                files, key=lambda f: f.total_changes, limit=self.top_n
            ),
            files=files,
        )

    @staticmethod
    def files_by_author(
        files: Iterable[FileStat], email: str, name: str = ""
    ) -> List[FileStat]:
        """
        Files touched by an author, matched on the same identity key the
        aggregation uses: the email, or ``name`` for commits without one.
        """
        key = author_identity(name, email)
        return [f for f in files if key in f.authors]

    @staticmethod
    def files_in_range(
        files: Iterable[FileStat], start: datetime, end: datetime
    ) -> List[FileStat]:
        """Files whose touch interval overlaps [start, end]"""
        _require_aware("start", start)
        _require_aware("end", end)
        return [f for f in files if f.last_modified >= start and f.first_seen <= end]

    @staticmethod
    def files_by_churn_rate(
        files: Iterable[FileStat],
        count: int = DEFAULT_TOP_N,
        reference_time: Optional[datetime] = None,
    ) -> List[ChurnRate]:
        """
        Rank files by changes per day since they were first seen.

        Args:
            files: File statistics from a FileAnalysisResult
            count: Number of rows to return
            reference_time: Instant to measure "days since first seen" from.
                When omitted the current UTC time is read, so the result
                depends on when the call is made.

        Returns:
            ChurnRate rows, highest rate first
        """
        if reference_time is None:
            reference_time = datetime.now(timezone.utc)
        else:
            _require_aware("reference_time", reference_time)

        rows = []
        for stat in files:
            elapsed_days = (reference_time - stat.first_seen).total_seconds() / SECONDS_PER_DAY
            days_active = max(1, math.ceil(elapsed_days))
            rows.append(
                ChurnRate(
                    file=stat,
                    days_active=days_active,
                    churn_rate=stat.change_count / days_active,
                )
            )
        return list(top_ranked(rows, key=lambda r: r.churn_rate, limit=count))

    @staticmethod
    def collaboration_hotspots(
        files: Iterable[FileStat], min_authors: int = 2
    ) -> List[FileStat]:
        """Files touched by at least ``min_authors`` distinct authors"""
        if min_authors < 1:
            raise InvalidOptionsError(f"min_authors must be at least 1, got {min_authors}")
        shared = [f for f in files if f.author_count >= min_authors]
        return sorted(shared, key=lambda f: f.author_count, reverse=True)

    @staticmethod
    def churn_metrics(files: Iterable[FileStat]) -> Dict[str, int]:
        """Lines inserted plus deleted, per file path"""
        return {f.path: f.churn for f in files}


# ============================================================================
# PROGRESS REPORTING
# ============================================================================


class ProgressReporter:
    """
    Console output for the CLI.
    - Color-coded output (colorama)
    - Progress bars with percentage (tqdm)

    Everything except errors is suppressed when quiet.
    """

    def __init__(
        self, quiet: bool = False, verbose: bool = False, use_colors: bool = True
    ):
        self.quiet = quiet
        self.verbose = verbose
        self.use_colors = use_colors
        self.stage_times = {}

    def _colorize(self, text: str, color: str) -> str:
        if self.use_colors:
            return f"{color}{text}{Style.RESET_ALL}"
        return text

    def stage_start(self, stage_name: str, message: str = ""):
        if self.quiet:
            return
        self.stage_times[stage_name] = datetime.now()

        separator = self._colorize("=" * 70, Fore.CYAN)
        click.echo(f"\n{separator}")
        click.echo(self._colorize(f"🔄 {stage_name}", Fore.BLUE + Style.BRIGHT))
        if message:
            click.echo(f"   {message}")
        click.echo(separator)

    def stage_complete(self, stage_name: str, stats: Optional[Dict] = None):
        if self.quiet:
            return
        started = self.stage_times.get(stage_name, datetime.now())
        elapsed = (datetime.now() - started).total_seconds()

        click.echo(
            self._colorize(
                f"✅ {stage_name} complete ({elapsed:.2f}s)", Fore.GREEN + Style.BRIGHT
            )
        )
        if stats and self.verbose:
            for key, value in stats.items():
                click.echo(f"   {key}: {value}")

    def create_progress_bar(
        self, total: Optional[int], desc: str = "Processing"
    ) -> Optional[tqdm]:
        if self.quiet:
            return None
        return tqdm(
            total=total,
            desc=desc,
            unit=" commits",
            ncols=100,
            bar_format="{l_bar}{bar}| {n_fmt}/{total_fmt} [{elapsed}<{remaining}, {rate_fmt}]",
        )

    def info(self, message: str):
        if not self.quiet:
            click.echo(f"{self._colorize('ℹ️  ', Fore.BLUE)}{message}")

    def warning(self, message: str):
        if not self.quiet:
            click.echo(f"{self._colorize('⚠️  ', Fore.YELLOW + Style.BRIGHT)}{message}")

    def error(self, message: str):
        """Always shown, on stderr"""
        click.echo(
            self._colorize(f"❌ ERROR: {message}", Fore.RED + Style.BRIGHT), err=True
        )

    def success(self, message: str):
        if not self.quiet:
            click.echo(self._colorize(f"✨ {message}", Fore.GREEN + Style.BRIGHT))


class MemoryMonitor:
    """Monitor memory usage and enforce limits"""

    def __init__(self, limit_mb: Optional[float] = None):
        self.limit_mb = limit_mb
        self.peak_mb = 0.0

    def check_memory(self) -> float:
        """Current resident memory in MB; raises MemoryError over the limit"""
        process = psutil.Process(os.getpid())
        memory_mb = process.memory_info().rss / 1024 / 1024
        self.peak_mb = max(self.peak_mb, memory_mb)

        if self.limit_mb and memory_mb > self.limit_mb:
            raise MemoryError(
                f"Memory limit exceeded: {memory_mb:.1f}MB > {self.limit_mb}MB"
            )
        return memory_mb


# ============================================================================
# GIT DATA SOURCE
# ============================================================================

# One record per commit: a record-separator byte, then seven NUL-terminated
# header fields. The body may span lines; numstat rows follow the header.
RECORD_MARKER = "\x1e"
HEADER_FIELDS = 7
LOG_FORMAT = "%x1e" + "".join(
    f"{placeholder}%x00" for placeholder in ("%H", "%aI", "%an", "%ae", "%s", "%D", "%b")
)
MEMORY_CHECK_INTERVAL = 5000


def resolve_rename_path(path: str) -> str:
    """
    Destination path of a numstat rename entry.

    ``src/{old.py => new.py}`` and ``old.py => new.py`` both resolve to the
    new name; plain paths are returned unchanged.
    """
    if " => " not in path:
        return path
    if "{" in path and "}" in path:
        prefix, rest = path.split("{", 1)
        inner, suffix = rest.split("}", 1)
        new_part = inner.split(" => ", 1)[1]
        return (prefix + new_part + suffix).replace("//", "/")
    return path.split(" => ", 1)[1]


def _format_date_option(value: Union[str, datetime]) -> str:
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


class GitRepository:
    """
    Reads commit history from a local repository with the git executable.

    Unparseable log lines are skipped and collected in ``errors``.
    """

    def __init__(
        self,
        repo_path: str,
        reporter: Optional[ProgressReporter] = None,
        memory_limit_mb: Optional[float] = None,
    ):
        self.repo_path = os.path.abspath(repo_path)
        self.reporter = reporter or ProgressReporter(quiet=True)
        self.memory_monitor = MemoryMonitor(limit_mb=memory_limit_mb)
        self.errors: List[str] = []

    def _run_git(self, operation: str, *args: str) -> str:
        cmd = ["git", "-C", self.repo_path, *args]
        logger.debug("Running %s", " ".join(cmd))
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
                check=True,
            )
        except subprocess.CalledProcessError as e:
            raise GitOperationError(operation, (e.stderr or "").strip(), cause=e) from e
        except OSError as e:
            raise GitOperationError(operation, str(e), cause=e) from e
        return result.stdout

    def is_valid(self) -> bool:
        try:
            self._run_git("isValid", "rev-parse", "--git-dir")
        except GitOperationError:
            return False
        return True

    def ensure_valid(self):
        if not self.is_valid():
            raise InvalidRepositoryError(self.repo_path)

    def get_info(self) -> RepositoryInfo:
        self.ensure_valid()
        remotes = self._run_git("getRemotes", "remote").split()
        return RepositoryInfo(
            path=self.repo_path,
            current_branch=self._get_current_branch(),
            remotes=tuple(remotes),
            total_commits=self._count_commits(),
        )

    def _get_current_branch(self) -> str:
        # symbolic-ref also works on an unborn branch; it fails when detached
        try:
            branch = self._run_git(
                "getCurrentBranch", "symbolic-ref", "--short", "-q", "HEAD"
            ).strip()
        except GitOperationError:
            return "HEAD"
        return branch or "HEAD"

    def _count_commits(self, rev_args: Optional[List[str]] = None) -> int:
        """Commit count for HEAD (or the given rev-list args); 0 when unborn"""
        try:
            output = self._run_git(
                "countCommits", "rev-list", "--count", *(rev_args or ["HEAD"])
            )
            return int(output.strip())
        except (GitOperationError, ValueError):
            return 0

    @staticmethod
    def _filter_args(options: AnalysisOptions) -> List[str]:
        args = []
        if options.max_count:
            args.append(f"--max-count={options.max_count}")
        if options.since:
            args.append(f"--since={_format_date_option(options.since)}")
        if options.until:
            args.append(f"--until={_format_date_option(options.until)}")
        if options.author:
            args.append(f"--author={options.author}")
        args.extend([options.branch or "HEAD", "--"])
        return args

    def get_commits(self, options: Optional[AnalysisOptions] = None) -> List[CommitRecord]:
        """Commits matching ``options``, newest first, without file entries"""
        return self._read_log(options or AnalysisOptions(), with_files=False)

    def get_commits_with_files(
        self, options: Optional[AnalysisOptions] = None
    ) -> List[CommitRecord]:
        """Commits matching ``options`` with numstat file entries attached"""
        return self._read_log(options or AnalysisOptions(), with_files=True)

    def _read_log(self, options: AnalysisOptions, with_files: bool) -> List[CommitRecord]:
        self.ensure_valid()
        filter_args = self._filter_args(options)

        cmd = ["git", "-C", self.repo_path, "log", f"--format={LOG_FORMAT}"]
        if with_files:
            cmd.append("--numstat")
        cmd.extend(filter_args)
        logger.debug("Running %s", " ".join(cmd))

        # stderr is spooled to a file so a noisy git cannot block on a full pipe
        with tempfile.TemporaryFile(
            mode="w+", encoding="utf-8", errors="replace"
        ) as stderr_file:
            try:
                process = subprocess.Popen(
                    cmd,
                    stdout=subprocess.PIPE,
                    stderr=stderr_file,
                    text=True,
                    encoding="utf-8",
                    errors="replace",
                )
            except OSError as e:
                raise GitOperationError("log", str(e), cause=e) from e

            progress_bar = None
            if not self.reporter.quiet:
                progress_bar = self.reporter.create_progress_bar(
                    total=self._count_commits(filter_args), desc="Reading commits"
                )
            commits: List[CommitRecord] = []
            try:
                for commit in self._parse_log_stream(process.stdout, with_files):
                    commits.append(commit)
                    if progress_bar:
                        progress_bar.update(1)
                    if len(commits) % MEMORY_CHECK_INTERVAL == 0:
                        memory_mb = self.memory_monitor.check_memory()
                        if self.reporter.verbose:
                            self.reporter.info(f"Memory usage: {memory_mb:.1f} MB")
            finally:
                if progress_bar:
                    progress_bar.close()
                process.stdout.close()
                process.wait()

            if process.returncode != 0:
                stderr_file.seek(0)
                stderr = stderr_file.read().strip()
                raise GitOperationError(
                    "log", stderr or f"exit status {process.returncode}"
                )

        logger.debug("Read %d commits (%d parse errors)", len(commits), len(self.errors))
        return commits

    def _parse_log_stream(self, lines: Iterable[str], with_files: bool):
        """Yield CommitRecords from ``git log`` output produced with LOG_FORMAT"""
        header_buffer: Optional[str] = None
        current: Optional[Dict[str, Any]] = None
        changes: List[FileChangeEntry] = []

        for raw_line in lines:
            if raw_line.startswith(RECORD_MARKER):
                if current:
                    yield self._build_record(current, changes)
                current = None
                changes = []
                header_buffer = raw_line[len(RECORD_MARKER):]
            elif header_buffer is not None:
                header_buffer += raw_line
            else:
                line = raw_line.rstrip("\n")
                if with_files and current and line.strip():
                    change = self._parse_numstat_line(line)
                    if change:
                        changes.append(change)
                continue

            if header_buffer.count("\x00") >= HEADER_FIELDS:
                fields = header_buffer.split("\x00", HEADER_FIELDS)[:HEADER_FIELDS]
                current = self._parse_header(fields)
                header_buffer = None

        if header_buffer is not None:
            self.errors.append(f"Truncated commit header: {header_buffer[:50]!r}")
        if current:
            yield self._build_record(current, changes)

    def _parse_header(self, fields: List[str]) -> Optional[Dict[str, Any]]:
        commit_hash, date_str, name, email, subject, refs, body = fields
        date_str = date_str.strip()
        if date_str.endswith("Z"):
            date_str = date_str[:-1] + "+00:00"
        try:
            date = datetime.fromisoformat(date_str)
        except ValueError as e:
            self.errors.append(f"Failed to parse commit {commit_hash[:12]}: {e}")
            return None
        return {
            "hash": commit_hash.strip(),
            "author": name or "Unknown",
            "email": email,
            "date": date,
            "message": subject,
            "refs": refs.strip(),
            "body": body.strip(),
        }

    @staticmethod
    def _build_record(header: Dict[str, Any], changes: List[FileChangeEntry]) -> CommitRecord:
        return CommitRecord(files=tuple(changes), **header)

    def _parse_numstat_line(self, line: str) -> Optional[FileChangeEntry]:
        """
        Parse ``<added>\\t<deleted>\\t<path>``.

        Binary files report ``-`` for both counts and get zero line counts.
        """
        parts = line.split("\t")
        if len(parts) != 3:
            self.errors.append(f"Failed to parse change line: {line[:50]}")
            return None

        added_str, deleted_str, path = parts
        binary = added_str == "-" and deleted_str == "-"
        try:
            insertions = 0 if binary else int(added_str)
            deletions = 0 if binary else int(deleted_str)
        except ValueError:
            self.errors.append(f"Failed to parse change line: {line[:50]}")
            return None

        return FileChangeEntry(
            path=resolve_rename_path(path),
            changes=insertions + deletions,
            insertions=insertions,
            deletions=deletions,
            binary=binary,
        )


# ============================================================================
# CONFIGURATION FILE SUPPORT
# ============================================================================

CONFIG_FILE_NAMES = (".git-analyzer.yaml", ".git-analyzer.yml", ".git-analyzer.json")

PRESETS = {
    "standard": {},
    "quick": {"max_count": 500, "skip_files": True},
    "full": {"top": 25, "include_files": True},
}


def load_config_file(config_path: str) -> Dict[str, Any]:
    """Load configuration from a YAML or JSON file"""
    if not os.path.exists(config_path):
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    file_ext = os.path.splitext(config_path)[1].lower()
    with open(config_path, "r", encoding="utf-8") as f:
        if file_ext in (".yaml", ".yml"):
            data = yaml.safe_load(f)
        elif file_ext == ".json":
            data = json.load(f)
        else:
            raise InvalidOptionsError(f"Unsupported config file format: {file_ext}")

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise InvalidOptionsError(f"Config file must contain a mapping: {config_path}")
    return data


def find_config_file(repo_path: str) -> Optional[str]:
    """Look for a config file in the repository, then the working directory"""
    for search_dir in (repo_path, os.getcwd()):
        for config_name in CONFIG_FILE_NAMES:
            config_path = os.path.join(search_dir, config_name)
            if os.path.exists(config_path):
                return config_path
    return None


class ConfigResolver:
    """
    Resolve configuration with precedence: CLI > Config File > Preset > Defaults
    """

    def __init__(
        self,
        cli_args: Dict[str, Any],
        config_path: Optional[str],
        preset_name: Optional[str],
        repo_path: str,
    ):
        self.cli = {k: v for k, v in cli_args.items() if v is not None}
        self.config_path = config_path or find_config_file(repo_path)
        self.config = load_config_file(self.config_path) if self.config_path else {}

        # Config files may use kebab-case keys
        self.config = {k.replace("-", "_"): v for k, v in self.config.items()}

        final_preset_name = preset_name or self.config.get("preset")
        if final_preset_name and final_preset_name not in PRESETS:
            raise InvalidOptionsError(f"Unknown preset: {final_preset_name}")
        self.preset = PRESETS.get(final_preset_name, {}) if final_preset_name else {}

    def get(self, key: str, default: Any = None) -> Any:
        if key in self.cli:
            return self.cli[key]
        if key in self.config:
            return self.config[key]
        if key in self.preset:
            return self.preset[key]
        return default


# ============================================================================
# REPORT RENDERING
# ============================================================================


def build_report(
    repo_info: RepositoryInfo,
    analysis: CommitAnalysisResult,
    commits_by_weekday: Dict[int, int],
    file_analysis: Optional[FileAnalysisResult] = None,
    churn_leaders: Iterable[ChurnRate] = (),
    collaboration: Iterable[FileStat] = (),
    include_files: bool = False,
    generated_at: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Assemble the JSON-ready report shared by the text and JSON outputs"""
    generated_at = generated_at or datetime.now(timezone.utc)

    analysis_data = analysis.to_dict()
    analysis_data["commits_by_day_of_week"] = {
        WEEKDAY_NAMES[day]: count for day, count in sorted(commits_by_weekday.items())
    }

    report = {
        "generator_version": VERSION,
        "schema_version": SCHEMA_VERSION,
        "generated_at": generated_at.isoformat(),
        "repository": repo_info.to_dict(),
        "analysis": analysis_data,
        "file_analysis": None,
    }
    if file_analysis is not None:
        file_data = file_analysis.to_dict(include_files=include_files)
        file_data["churn_leaders"] = [row.to_dict() for row in churn_leaders]
        file_data["collaboration_hotspots"] = [
            {"path": f.path, "author_count": f.author_count, "authors": sorted(f.authors)}
            for f in collaboration
        ]
        report["file_analysis"] = file_data
    return report


def write_json_report(output_path: str, report: Dict[str, Any]):
    parent = os.path.dirname(output_path)
    if parent:
        os.makedirs(parent, exist_ok=True)
    with open(output_path, "w", encoding="utf-8") as f:
        json.dump(report, f, indent=2, ensure_ascii=False)


def render_text(report: Dict[str, Any], use_colors: bool = True) -> str:
    """Human-readable rendering of a report built by build_report"""

    def paint(text: str, color: str) -> str:
        return f"{color}{text}{Style.RESET_ALL}" if use_colors else text

    def label(text: str) -> str:
        return paint(f"  {text}:", Style.DIM)

    def heading(text: str) -> str:
        return paint(text, Style.BRIGHT)

    rule = paint("═" * 70, Fore.CYAN + Style.BRIGHT)
    repo = report["repository"]
    analysis = report["analysis"]
    date_range = analysis["date_range"]
    total_commits = analysis["total_commits"]

    lines = [
        "",
        rule,
        paint("GIT REPOSITORY ANALYSIS".center(70), Fore.CYAN + Style.BRIGHT),
        rule,
        "",
        heading("📁 Repository Information"),
        f"{label('Path')} {repo['path']}",
        f"{label('Branch')} {repo['branch']}",
        f"{label('Total Commits')} {repo['total_commits']:,}",
        "",
        heading("📊 Analysis Summary"),
        f"{label('Commits Analyzed')} {total_commits:,}",
        f"{label('Date Range')} {date_range['earliest'][:10]} to {date_range['latest'][:10]}",
        f"{label('Span')} {date_range['span_days']:,} days",
        f"{label('Avg Commits/Day')} {analysis['average_commits_per_day']:.2f}",
        f"{label('Total Authors')} {len(analysis['authors']):,}",
        "",
        heading("🏆 Top Contributors"),
    ]

    for index, author in enumerate(analysis["top_authors"], 1):
        count = author["commit_count"]
        percentage = count / total_commits * 100
        bar = "█" * math.ceil(percentage / 2)
        lines.append(
            f"  {index:>2}. {author['name'][:25]:<25} "
            f"{paint(f'{count:>6,}', Fore.CYAN)} commits "
            f"{paint(f'({percentage:.1f}%)', Fore.YELLOW)} {paint(bar, Fore.BLUE)}"
        )

    # max() keeps the first of equal counts: earliest hour, earliest day
    peak_hour, peak_hour_commits = max(
        analysis["commits_by_hour"].items(), key=lambda item: item[1]
    )
    busiest_day, busiest_day_commits = max(
        analysis["commits_by_day"].items(), key=lambda item: item[1]
    )
    busiest_weekday, busiest_weekday_commits = max(
        analysis["commits_by_day_of_week"].items(), key=lambda item: item[1]
    )
    lines.extend(
        [
            "",
            heading("⏰ Activity Patterns"),
            f"{label('Most Active Hour')} {peak_hour}:00 ({peak_hour_commits:,} commits)",
            f"{label('Most Active Day')} {busiest_day} ({busiest_day_commits:,} commits)",
            f"{label('Busiest Weekday')} {busiest_weekday} ({busiest_weekday_commits:,} commits)",
        ]
    )

    files = report.get("file_analysis")
    if files is not None:
        net = files["net_change"]
        net_text = paint(f"+{net:,}", Fore.GREEN) if net >= 0 else paint(f"{net:,}", Fore.RED)
        added_text = paint("+{:,}".format(files["total_insertions"]), Fore.GREEN)
        deleted_text = paint("-{:,}".format(files["total_deletions"]), Fore.RED)
        lines.extend(
            [
                "",
                heading("🔥 Code Hotspots & Metrics"),
                f"{label('Total Files Changed')} {files['total_files']:,}",
                f"{label('Total Line Changes')} {files['total_changes']:,}",
                f"{label('Lines Added')} {added_text}",
                f"{label('Lines Deleted')} {deleted_text}",
                f"{label('Net Change')} {net_text}",
            ]
        )

        if files["hotspots"]:
            lines.extend(["", heading("🔥 Most Frequently Changed Files")])
            for index, stat in enumerate(files["hotspots"], 1):
                changes = stat["change_count"]
                share = changes / total_commits * 100
                noun = "author" if stat["author_count"] == 1 else "authors"
                lines.append(
                    f"  {index:>2}. {stat['path'][:45]:<45} "
                    f"{paint(f'{changes:>4,}', Fore.CYAN)} changes "
                    f"{paint(f'({share:.1f}%)', Fore.YELLOW)} • {stat['author_count']} {noun}"
                )

        if files["collaboration_hotspots"]:
            lines.extend(["", heading("🤝 Collaboration Hotspots")])
            for index, stat in enumerate(files["collaboration_hotspots"], 1):
                lines.append(
                    f"  {index:>2}. {stat['path'][:45]:<45} "
                    f"{paint(str(stat['author_count']), Fore.CYAN)} authors"
                )

    lines.extend(["", rule, ""])
    return "\n".join(lines)


# ============================================================================
# CLI INTERFACE
# ============================================================================


def setup_logging(verbose: bool = False):
    """Library messages go to stderr so JSON on stdout stays clean"""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stderr)],
    )


@click.command(context_settings=dict(help_option_names=["-h", "--help"]))
@click.argument(
    "repo_path",
    type=click.Path(exists=True, file_okay=False, resolve_path=True),
    default=".",
    required=False,
)
@click.option(
    "--config",
    type=click.Path(exists=True, dir_okay=False),
    help="Configuration file path (.yaml or .json)",
)
@click.option(
    "--preset",
    type=click.Choice(sorted(PRESETS)),
    help="Use predefined analysis configuration",
)
# Filters
@click.option("-b", "--branch", help="Branch or revision to analyze (default: HEAD)")
@click.option("-s", "--since", help="Analyze commits since date")
@click.option("-u", "--until", help="Analyze commits until date")
@click.option("-a", "--author", help="Filter by author (email or name pattern)")
@click.option("-m", "--max-count", type=int, help="Maximum number of commits to analyze")
# Output
@click.option("--json", "json_output", is_flag=True, default=None, help="Output as JSON")
@click.option(
    "-o",
    "--output",
    type=click.Path(dir_okay=False),
    help="Also write the JSON report to this file",
)
@click.option("--top", type=int, help="Length of author and file rankings (default: 10)")
@click.option(
    "--hour-clock",
    type=click.Choice(HOUR_CLOCKS),
    help="Bucket hours by each commit's own offset or by UTC (default: commit)",
)
@click.option(
    "--min-authors",
    type=int,
    help="Minimum distinct authors for a collaboration hotspot (default: 2)",
)
@click.option("--skip-files", is_flag=True, default=None, help="Skip file-level analysis")
@click.option("--memory-limit", type=float, help="Memory limit in MB")
# Output Control
@click.option("-q", "--quiet", is_flag=True, default=None, help="Suppress progress output")
@click.option(
    "-v", "--verbose", is_flag=True, default=None, help="Show detailed progress information"
)
@click.option("--no-color", is_flag=True, default=None, help="Disable colored output")
@click.version_option(version=VERSION)
def main(repo_path, config, preset, **kwargs):
    """
    Analyze the commit history of the git repository at REPO_PATH
    (default: current directory).
    """
    kwargs["json"] = kwargs.pop("json_output")

    try:
        resolver = ConfigResolver(kwargs, config, preset, repo_path)
    except (AnalysisError, OSError, ValueError, yaml.YAMLError) as e:
        ProgressReporter(use_colors=not kwargs.get("no_color")).error(
            f"Failed to load configuration: {e}"
        )
        sys.exit(1)

    as_json = resolver.get("json", False)
    output = resolver.get("output")
    verbose = resolver.get("verbose", False)
    use_colors = not resolver.get("no_color", False)
    # JSON on stdout must not be interleaved with progress output
    quiet = resolver.get("quiet", False) or as_json

    setup_logging(verbose)
    reporter = ProgressReporter(quiet=quiet, verbose=verbose, use_colors=use_colors)
    if resolver.config_path:
        reporter.info(f"Using configuration: {resolver.config_path}")

    top = resolver.get("top", DEFAULT_TOP_N)
    skip_files = resolver.get("skip_files", False)
    min_authors = resolver.get("min_authors", 2)

    try:
        options = AnalysisOptions(
            branch=resolver.get("branch"),
            since=resolver.get("since"),
            until=resolver.get("until"),
            author=resolver.get("author"),
            max_count=resolver.get("max_count"),
        )
        commit_aggregator = CommitAggregator(
            top_n=top, hour_clock=resolver.get("hour_clock", "commit")
        )
        file_aggregator = None if skip_files else FileAggregator(top_n=top)

        reporter.stage_start("Repository", f"Validating repository: {repo_path}")
        repo = GitRepository(
            repo_path, reporter, memory_limit_mb=resolver.get("memory_limit")
        )
        repo_info = repo.get_info()
        reporter.stage_complete(
            "Repository",
            {"Branch": repo_info.current_branch, "Commits": f"{repo_info.total_commits:,}"},
        )

        if repo_info.total_commits == 0:
            reporter.warning("Repository has no commits yet")
            return

        reporter.stage_start("Git Log Processing", "Fetching commits and file changes...")
        if skip_files:
            commits = repo.get_commits(options)
        else:
            commits = repo.get_commits_with_files(options)
        reporter.stage_complete("Git Log Processing", {"Commits read": f"{len(commits):,}"})

        if repo.errors:
            reporter.warning(f"{len(repo.errors)} log lines could not be parsed")
            for message in repo.errors:
                logger.debug(message)

        if not commits:
            reporter.warning("No commits found matching the criteria")
            return

        reporter.stage_start("Aggregation", "Analyzing commits...")
        analysis = commit_aggregator.analyze(commits)
        weekday_counts = commit_aggregator.commits_by_day_of_week(commits)

        file_analysis = None
        churn_leaders: List[ChurnRate] = []
        collaboration: List[FileStat] = []
        if file_aggregator is not None:
            file_analysis = file_aggregator.analyze(commits)
            churn_leaders = file_aggregator.files_by_churn_rate(
                file_analysis.files, count=top, reference_time=datetime.now(timezone.utc)
            )
            collaboration = file_aggregator.collaboration_hotspots(
                file_analysis.files, min_authors=min_authors
            )[:top]
        reporter.stage_complete(
            "Aggregation",
            {
                "Authors": len(analysis.authors),
                "Files": file_analysis.total_files if file_analysis else "skipped",
            },
        )

        report = build_report(
            repo_info,
            analysis,
            weekday_counts,
            file_analysis=file_analysis,
            churn_leaders=churn_leaders,
            collaboration=collaboration,
            include_files=resolver.get("include_files", False),
        )

        if output:
            write_json_report(output, report)
            reporter.success(f"Report written to: {output}")

        if as_json:
            click.echo(json.dumps(report, indent=2, ensure_ascii=False))
        else:
            click.echo(render_text(report, use_colors=use_colors))

    except AnalysisError as e:
        reporter.error(str(e))
        if verbose:
            traceback.print_exc()
        sys.exit(1)
    except Exception as e:
        reporter.error(f"Analysis failed: {str(e)}")
        if verbose:
            traceback.print_exc()
        sys.exit(1)


if __name__ == "__main__":
    main()
