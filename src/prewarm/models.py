"""
Warmup Data Models

Options, run context, canonical tasks and results for a warmup run.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, List, Optional, Tuple

from .exceptions import TaskTimeoutError

if TYPE_CHECKING:
    from .config import WarmupSettings


class TaskKind(str, Enum):
    """Shape of a warmup task after normalization"""

    URL = "url"
    FUNCTION = "function"


class ErrorOrder(str, Enum):
    """Which failure is reported when several tasks fail"""

    INDEX = "index"  # lowest task index wins
    ARRIVAL = "arrival"  # first failure to be recorded wins


class WarmupState(str, Enum):
    """Orchestrator lifecycle state"""

    IDLE = "idle"
    BINDING = "binding"
    RUNNING = "running"
    CLOSING = "closing"
    DONE = "done"


DEFAULT_PORT_RANGE: Tuple[int, int] = (10000, 50000)


@dataclass(frozen=True)
class WarmupOptions:
    """Options for a single warmup run"""

    timeout_ms: int = 10000
    port: Optional[int] = None
    max_bind_attempts: int = 20
    host: str = "127.0.0.1"
    port_range: Tuple[int, int] = DEFAULT_PORT_RANGE
    max_concurrency: Optional[int] = None
    error_order: ErrorOrder = ErrorOrder.INDEX
    enable_metrics: bool = True

    def __post_init__(self):
        """Validate options"""
        if self.timeout_ms < 0:
            raise ValueError("timeout_ms cannot be negative")
        if self.max_bind_attempts < 1:
            raise ValueError("max_bind_attempts must be at least 1")
        if self.port is not None and not 1 <= self.port <= 65535:
            raise ValueError("port must be between 1 and 65535")
        low, high = self.port_range
        if not 1 <= low <= high <= 65535:
            raise ValueError(f"invalid port range: {self.port_range}")
        if self.max_concurrency is not None and self.max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        if not isinstance(self.error_order, ErrorOrder):
            object.__setattr__(self, "error_order", ErrorOrder(self.error_order))

    @classmethod
    def from_settings(cls, settings: "WarmupSettings", **overrides: Any) -> "WarmupOptions":
        """
        Build options from settings.

        Args:
            settings: Settings instance
            **overrides: Fields that take precedence over settings

        Returns:
            WarmupOptions
        """
        values: Dict[str, Any] = {
            "timeout_ms": settings.timeout_ms,
            "port": settings.port,
            "max_bind_attempts": settings.max_bind_attempts,
            "host": settings.host,
            "port_range": (settings.port_range_start, settings.port_range_end),
            "max_concurrency": settings.max_concurrency,
            "error_order": ErrorOrder(settings.error_order),
            "enable_metrics": settings.enable_metrics,
        }
        values.update(overrides)
        return cls(**values)


@dataclass(frozen=True)
class RunContext:
    """Read-only context passed to every task"""

    bound_port: int
    host: str = "127.0.0.1"

    @property
    def base_url(self) -> str:
        """Root URL of the warmup listener"""
        return f"http://{self.host}:{self.bound_port}"

    def url_for(self, path: str) -> str:
        """Absolute URL for a path on the warmup listener"""
        return self.base_url + path


@dataclass(frozen=True)
class CanonicalTask:
    """A warmup task in its normalized form"""

    index: int
    name: str
    kind: TaskKind
    timeout_ms: int
    execute: Callable[[RunContext], Awaitable[None]] = field(repr=False)
    path: Optional[str] = None


@dataclass(frozen=True)
class TaskOutcome:
    """Final outcome of one task"""

    index: int
    name: str
    error: Optional[Exception] = None
    duration_ms: float = 0.0

    @property
    def success(self) -> bool:
        return self.error is None

    @property
    def timed_out(self) -> bool:
        return isinstance(self.error, TaskTimeoutError)


@dataclass
class RunResult:
    """Aggregate of all task outcomes"""

    outcomes: List[TaskOutcome]
    arrival_order: List[int] = field(default_factory=list)
    error_order: ErrorOrder = ErrorOrder.INDEX
    duration_ms: float = 0.0

    @property
    def failures(self) -> List[TaskOutcome]:
        """Failed outcomes in the configured error order"""
        if self.error_order == ErrorOrder.ARRIVAL:
            by_index = {o.index: o for o in self.outcomes}
            ordered = [by_index[i] for i in self.arrival_order if i in by_index]
        else:
            ordered = sorted(self.outcomes, key=lambda o: o.index)
        return [o for o in ordered if not o.success]

    @property
    def error(self) -> Optional[Exception]:
        """The error reported for the run, if any task failed"""
        failures = self.failures
        return failures[0].error if failures else None

    @property
    def success(self) -> bool:
        return all(o.success for o in self.outcomes)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging"""
        return {
            "success": self.success,
            "duration_ms": round(self.duration_ms, 1),
            "tasks": [
                {
                    "index": o.index,
                    "name": o.name,
                    "success": o.success,
                    "timed_out": o.timed_out,
                    "duration_ms": round(o.duration_ms, 1),
                    "error": str(o.error) if o.error else None,
                }
                for o in self.outcomes
            ],
        }


@dataclass
class WarmupResult:
    """Result reported to the caller once the warmup run is done"""

    error: Optional[Exception] = None
    port: Optional[int] = None
    state: WarmupState = WarmupState.DONE
    run: Optional[RunResult] = None
    bind_attempts: int = 0
    duration_ms: float = 0.0

    @property
    def success(self) -> bool:
        return self.error is None

    def raise_for_error(self) -> None:
        """Raise the reported error, if any"""
        if self.error is not None:
            raise self.error

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging"""
        return {
            "success": self.success,
            "error": str(self.error) if self.error else None,
            "error_type": type(self.error).__name__ if self.error else None,
            "port": self.port,
            "state": self.state.value,
            "bind_attempts": self.bind_attempts,
            "duration_ms": round(self.duration_ms, 1),
            "run": self.run.to_dict() if self.run else None,
        }
