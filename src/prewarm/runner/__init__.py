"""
Warmup Task Runner

Task spec normalization and concurrent execution with per-task timeouts.
"""

from .latch import CompletionLatch
from .tasks import FunctionTask, UrlTask, normalize_tasks, warmup_task
from .transport import HttpTransport, HttpxTransport
from .parallel import ParallelRunner

__all__ = [
    "CompletionLatch",
    "FunctionTask",
    "UrlTask",
    "normalize_tasks",
    "warmup_task",
    "HttpTransport",
    "HttpxTransport",
    "ParallelRunner",
]
