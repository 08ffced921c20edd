"""Per-run export state: cancellation, progress and contained failures."""

from __future__ import annotations

import enum
import threading
from collections.abc import Callable
from dataclasses import dataclass, field

from cds_extractor.export.paths import ArchivePathAllocator

# ContainedFailure scopes
SCOPE_CONTAINER = "container"
SCOPE_ENTRY = "entry"


class CancellationToken:
    """Cooperative cancellation flag shared by one export run."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


@dataclass(frozen=True)
class Progress:
    """Containers visited so far against containers discovered so far."""

    visited: int
    discovered: int

    def __str__(self) -> str:
        return f"{self.visited}/{self.discovered}"


@dataclass(frozen=True)
class ContainedFailure:
    """A failure that was contained instead of aborting the export.

    Attributes:
        scope: ``"container"`` for a Browse failure, ``"entry"`` for an
            archive write failure.
        target: Container ObjectID or archive entry path.
        reason: Error message.
    """

    scope: str
    target: str
    reason: str


class ExportOutcome(enum.Enum):
    COMPLETED = "completed"
    CANCELLED = "cancelled"


@dataclass
class ExportResult:
    """Terminal report of one export run."""

    outcome: ExportOutcome
    archive_path: str
    entries_written: int = 0
    containers_visited: int = 0
    containers_discovered: int = 0
    failures: list[ContainedFailure] = field(default_factory=list)

    @property
    def completed(self) -> bool:
        return self.outcome is ExportOutcome.COMPLETED


ProgressCallback = Callable[[Progress], None]


class ExportSession:
    """State owned by one export run and handed to its components."""

    def __init__(
        self,
        cancel_token: CancellationToken | None = None,
        on_progress: ProgressCallback | None = None,
        allocator: ArchivePathAllocator | None = None,
    ) -> None:
        self.cancel_token = cancel_token or CancellationToken()
        self.allocator = allocator or ArchivePathAllocator()
        self.failures: list[ContainedFailure] = []
        self.progress = Progress(visited=0, discovered=0)
        self._on_progress = on_progress

    @property
    def cancelled(self) -> bool:
        return self.cancel_token.cancelled

    def record_failure(self, scope: str, target: str, reason: str) -> None:
        self.failures.append(ContainedFailure(scope=scope, target=target, reason=reason))

    def report_progress(self, visited: int, discovered: int) -> None:
        self.progress = Progress(visited=visited, discovered=discovered)
        if self._on_progress is not None:
            self._on_progress(self.progress)
