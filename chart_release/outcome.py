"""Typed results for per-item pipeline work.

Every phase of the pipeline works over independent items (charts, packages,
releases). A failed item is recorded as a `Failure` tagged with how far the
failure reaches:

- `FailureKind.ISOLATED` only the item is lost, the batch continues.
- `FailureKind.GATING` the whole phase is skipped, later phases still run.
- `FailureKind.FATAL` the run fails and the error is raised to the caller.
"""

from collections.abc import Awaitable
from dataclasses import dataclass, field
from enum import Enum
import logging
from pathlib import Path
from typing import Generic, TypeVar

from .exceptions import ReleaseException

__all__ = [
    "FailureKind",
    "Failure",
    "FatalFailure",
    "Outcome",
    "PublishSummary",
    "IndexResult",
    "DeleteSummary",
    "RegistrySummary",
]

_LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


class FailureKind(Enum):
    """How far a failure propagates."""

    ISOLATED = "isolated"
    GATING = "gating"
    FATAL = "fatal"


@dataclass(frozen=True)
class Failure:
    """A failed operation on a named item."""

    kind: FailureKind
    item: str
    operation: str
    error: str

    def __str__(self) -> str:
        return f"{self.item}: {self.operation} failed: {self.error}"


class FatalFailure(ReleaseException):
    """Raised when an outcome carrying a fatal failure is resolved."""

    def __init__(self, failure: Failure) -> None:
        super().__init__(str(failure))
        self.failure = failure


@dataclass
class Outcome(Generic[T]):
    """Aggregated result of a phase over many items."""

    succeeded: list[T] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    failures: list[Failure] = field(default_factory=list)

    @property
    def failed(self) -> int:
        return len(self.failures)

    @property
    def gated(self) -> bool:
        return any(f.kind == FailureKind.GATING for f in self.failures)

    def add_failure(
        self, kind: FailureKind, item: str, operation: str, error: Exception | str
    ) -> Failure:
        failure = Failure(kind=kind, item=item, operation=operation, error=str(error))
        self.failures.append(failure)
        match kind:
            case FailureKind.ISOLATED:
                _LOGGER.error("Failed to %s for '%s': %s", operation, item, error)
            case FailureKind.GATING:
                _LOGGER.warning("Skipping %s: %s", operation, error)
            case FailureKind.FATAL:
                _LOGGER.error("Fatal error during %s: %s", operation, error)
        return failure

    def raise_for_fatal(self) -> None:
        """Raise the first fatal failure, if any."""
        for failure in self.failures:
            match failure.kind:
                case FailureKind.FATAL:
                    raise FatalFailure(failure)
                case FailureKind.ISOLATED | FailureKind.GATING:
                    continue


async def isolate(
    outcome: Outcome[T], item: str, operation: str, work: Awaitable[T]
) -> T | None:
    """Await `work`, recording a library error as an isolated failure of `item`."""
    try:
        return await work
    except (ReleaseException, OSError) as err:
        outcome.add_failure(FailureKind.ISOLATED, item, operation, err)
        return None


@dataclass(frozen=True)
class PublishSummary:
    """Counts reported by `package_and_publish`."""

    published: int
    failed: int
    skipped: int = 0
    failures: list[Failure] = field(default_factory=list)


@dataclass(frozen=True)
class IndexResult:
    """Charts whose repository index was regenerated."""

    indexed: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    """Charts without any released archive."""

    files: list[Path] = field(default_factory=list)
    """Generated files, relative to the repository root."""

    failures: list[Failure] = field(default_factory=list)

    @property
    def failed(self) -> int:
        return len(self.failures)


@dataclass(frozen=True)
class DeleteSummary:
    """Counts reported by `delete_charts`."""

    deleted: int
    failed: int
    failures: list[Failure] = field(default_factory=list)


@dataclass(frozen=True)
class RegistrySummary:
    """Counts reported by `publish_to_registry`."""

    pushed: int
    failed: int
    skipped: bool = False
    """The phase was disabled or its authentication gate failed."""

    failures: list[Failure] = field(default_factory=list)
