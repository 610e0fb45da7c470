"""
prewarm

Pre-traffic warmup for server applications: bind an ephemeral listener,
run warmup requests and functions against it concurrently, close it,
report the outcome.
"""

import logging

from .config import WarmupSettings, get_settings
from .exceptions import (
    BindError,
    CloseError,
    HttpStatusError,
    InvalidTaskSpecError,
    PortExhaustedError,
    TaskFailureError,
    TaskTimeoutError,
    WarmupError,
)
from .models import (
    ErrorOrder,
    RunContext,
    RunResult,
    TaskOutcome,
    WarmupOptions,
    WarmupResult,
    WarmupState,
)
from .runner import FunctionTask, UrlTask, warmup_task
from .orchestrator import WarmupOrchestrator, run_warmup
from .app import warmup_app, warmup_lifespan

logging.getLogger(__name__).addHandler(logging.NullHandler())

__version__ = "0.1.0"

__all__ = [
    # Entry points
    "run_warmup",
    "warmup_app",
    "warmup_lifespan",
    "WarmupOrchestrator",
    # Task specs
    "UrlTask",
    "FunctionTask",
    "warmup_task",
    # Models
    "WarmupOptions",
    "RunContext",
    "TaskOutcome",
    "RunResult",
    "WarmupResult",
    "WarmupState",
    "ErrorOrder",
    # Config
    "WarmupSettings",
    "get_settings",
    # Exceptions
    "WarmupError",
    "BindError",
    "PortExhaustedError",
    "InvalidTaskSpecError",
    "TaskFailureError",
    "HttpStatusError",
    "TaskTimeoutError",
    "CloseError",
]
