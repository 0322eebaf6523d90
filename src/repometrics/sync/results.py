"""Outcome types shared by the synchronizers, the fan-out and the controller."""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from repometrics.sync.gateway import FetchError

# GitHub says "API rate limit exceeded for installation ID ..."
RATE_LIMIT_PATTERN = re.compile(r"API (RATE )?LIMIT")


class ResultKind(Enum):
    """Closed set of outcomes a dataset synchronizer can report."""

    OK = "ok"
    RATE_LIMITED = "rate_limited"
    TRANSIENT_ERROR = "transient_error"


class RunStatus(Enum):
    """Outcome of one organization run."""

    SUCCESS = "success"
    ERROR = "error"
    ALREADY_RUNNING = "already_running"


def is_rate_limit_message(message: Optional[str]) -> bool:
    """Check a message for the API limit marker, ignoring case."""
    if not message:
        return False
    return RATE_LIMIT_PATTERN.search(message.upper()) is not None


def classify_error(exc: BaseException) -> ResultKind:
    """Decide whether an exception is a quota breach or a transient failure."""
    if isinstance(exc, FetchError):
        if is_rate_limit_message(exc.message):
            return ResultKind.RATE_LIMITED
        if exc.status_code in (403, 429) and exc.rate_limit_remaining == 0:
            return ResultKind.RATE_LIMITED
        return ResultKind.TRANSIENT_ERROR
    if is_rate_limit_message(str(exc)):
        return ResultKind.RATE_LIMITED
    return ResultKind.TRANSIENT_ERROR


@dataclass(frozen=True)
class SyncResult:
    """Result of a single dataset synchronizer.

    ``value`` is set for OK results (``True``/``"success"`` on a write,
    ``False`` for a no-op); ``detail`` holds the uppercased error message
    for failures.
    """

    kind: ResultKind
    value: Any = None
    detail: Optional[str] = None

    @classmethod
    def ok(cls, value: Any = "success") -> "SyncResult":
        return cls(ResultKind.OK, value=value)

    @classmethod
    def rate_limited(cls, detail: str) -> "SyncResult":
        return cls(ResultKind.RATE_LIMITED, detail=detail.upper())

    @classmethod
    def transient(cls, detail: str) -> "SyncResult":
        return cls(ResultKind.TRANSIENT_ERROR, detail=detail.upper())

    @classmethod
    def from_exception(cls, exc: BaseException) -> "SyncResult":
        detail = exc.message if isinstance(exc, FetchError) else (str(exc) or type(exc).__name__)
        if classify_error(exc) is ResultKind.RATE_LIMITED:
            return cls.rate_limited(detail)
        return cls.transient(detail)

    @property
    def is_ok(self) -> bool:
        return self.kind is ResultKind.OK


@dataclass
class RepoSyncReport:
    """Aggregated outcomes of one repository's fan-out, keyed by dataset."""

    repo_id: int
    repo_name: str
    results: Dict[str, SyncResult] = field(default_factory=dict)

    @property
    def rate_limited(self) -> bool:
        return any(r.kind is ResultKind.RATE_LIMITED for r in self.results.values())

    @property
    def failed_datasets(self) -> List[str]:
        return [name for name, r in self.results.items() if not r.is_ok]

    def summary(self) -> Dict[str, str]:
        return {name: r.kind.value for name, r in self.results.items()}
