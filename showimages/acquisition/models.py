"""Records, states and the error taxonomy shared by the acquisition engine."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Hashable, List, Optional, Tuple

from ..utils import get_timestamp


class ResourceState(str, Enum):
    """Lifecycle state of a resource instance."""
    IDLE = "idle"
    ATTEMPTING = "attempting"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    FILTERED = "filtered"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset({ResourceState.SUCCEEDED, ResourceState.FAILED, ResourceState.FILTERED})


class FailureReason(str, Enum):
    """Why an attempt or a whole chain failed."""
    TIMEOUT = "timeout"
    LOAD_ERROR = "load_error"
    EXHAUSTED = "exhausted"
    FILTERED = "filtered"
    NO_CANDIDATES = "no_candidates"
    ABORTED = "aborted"


class AcquisitionError(Exception):
    """Base class for acquisition engine errors."""


class RaceFailure(AcquisitionError):
    """An attempt produced no winner."""

    def __init__(self, reason: FailureReason, errors: Optional[Dict[str, str]] = None):
        self.reason = reason
        self.errors = errors or {}
        detail = '; '.join(f"{url}: {err}" for url, err in self.errors.items())
        super().__init__(f"{reason.value}: {detail}" if detail else reason.value)


class ReentrantCallError(AcquisitionError):
    """acquire() was called for an id that is already in progress or finished."""

    def __init__(self, instance: 'ResourceInstance'):
        self.instance = instance
        super().__init__(f"Resource {instance.id!r} is already {instance.state.value}")


class TerminalStateError(AcquisitionError):
    """A transition was requested on an instance that already reached a terminal state."""


class DuplicateStrategyError(AcquisitionError):
    """A strategy with the same name is already registered."""


class StrategyNotFoundError(AcquisitionError, KeyError):
    """No strategy is registered under the requested name."""

    def __str__(self) -> str:
        return Exception.__str__(self)


@dataclass
class AttemptRecord:
    """One race in a chain, as seen by reporting."""
    strategy: Optional[str]
    candidates: Tuple[str, ...]
    winner: Optional[str] = None
    reason: Optional[FailureReason] = None
    skipped: bool = False
    duration: float = 0.0

    @property
    def ok(self) -> bool:
        return self.winner is not None


@dataclass
class ResourceInstance:
    """One logical acquisition request.

    Mutated only by the fallback sequencer; everything else reads it.
    """
    id: Hashable
    original_source: str
    anchor_hint: Optional[str] = None
    current_source: str = ''
    current_strategy_index: int = -1
    state: ResourceState = ResourceState.IDLE
    failure_reason: Optional[FailureReason] = None
    last_error: Optional[FailureReason] = None
    used_strategy_name: Optional[str] = None
    tag: Any = None
    attempts: List[AttemptRecord] = field(default_factory=list)
    started_at: Optional[str] = None
    finished_at: Optional[str] = None

    def __post_init__(self):
        if not self.current_source:
            self.current_source = self.original_source

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal

    @property
    def ok(self) -> bool:
        return self.state is ResourceState.SUCCEEDED

    def _check_live(self) -> None:
        if self.is_terminal:
            raise TerminalStateError(
                f"Resource {self.id!r} is already {self.state.value}; no further transitions allowed"
            )

    def begin(self) -> None:
        self._check_live()
        self.state = ResourceState.ATTEMPTING
        self.current_strategy_index = -1
        self.started_at = get_timestamp()

    def advance(self) -> int:
        self._check_live()
        self.current_strategy_index += 1
        return self.current_strategy_index

    def succeed(self, url: str, strategy_name: Optional[str] = None, tag: Any = None) -> None:
        self._check_live()
        self.state = ResourceState.SUCCEEDED
        self.current_source = url
        self.used_strategy_name = strategy_name
        self.tag = tag
        self.finished_at = get_timestamp()

    def fail(self, reason: FailureReason) -> None:
        self._check_live()
        self.state = ResourceState.FAILED
        self.failure_reason = reason
        self.current_source = self.original_source
        self.finished_at = get_timestamp()

    def filter_out(self) -> None:
        if self.state is not ResourceState.IDLE:
            raise TerminalStateError(f"Resource {self.id!r} can only be filtered before any attempt")
        self.state = ResourceState.FILTERED
        self.finished_at = get_timestamp()

    def to_dict(self) -> Dict[str, Any]:
        """Flat representation used for reports."""
        return {
            'id': str(self.id),
            'state': self.state.value,
            'original_source': self.original_source,
            'current_source': self.current_source,
            'anchor_hint': self.anchor_hint,
            'strategy': self.used_strategy_name,
            'tag': self.tag,
            'failure_reason': self.failure_reason.value if self.failure_reason else None,
            'last_error': self.last_error.value if self.last_error else None,
            'attempts': len(self.attempts),
            'started_at': self.started_at,
            'finished_at': self.finished_at,
        }
