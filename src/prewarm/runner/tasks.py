"""
Warmup task specs and normalization

Accepted task shapes:
    "/health"                                  URL task (string shorthand)
    {"path": "/items", "method": "POST", ...}  URL task with request overrides
    UrlTask("/items", {"headers": {...}})
    {"name": "cache", "func": fill_cache, "timeout_ms": 500}
    FunctionTask(fill_cache, timeout_ms=500)
    fill_cache                                 bare callable

Every spec is converted once, before any task runs, into a CanonicalTask.
"""

import asyncio
import functools
import inspect
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Union

from ..exceptions import HttpStatusError, InvalidTaskSpecError, TaskFailureError
from ..models import CanonicalTask, RunContext, TaskKind
from .transport import HttpTransport

ANONYMOUS_TASK_NAME = "(anonymous)"

# Request overrides a URL task may carry
REQUEST_OVERRIDE_KEYS = frozenset(
    {"method", "headers", "params", "json", "data", "content", "body", "files", "cookies"}
)


@dataclass(frozen=True)
class UrlTask:
    """HTTP request against the warmup listener"""

    path: str
    overrides: Dict[str, Any] = field(default_factory=dict)
    name: Optional[str] = None
    timeout_ms: Optional[int] = None


@dataclass(frozen=True)
class FunctionTask:
    """User function called with the RunContext"""

    func: Callable[[RunContext], Any]
    name: Optional[str] = None
    timeout_ms: Optional[int] = None


WarmupTaskSpec = Union[str, UrlTask, FunctionTask, Mapping[str, Any], Callable[..., Any]]


def warmup_task(name: Optional[str] = None, timeout_ms: Optional[int] = None):
    """
    Declare a name and/or timeout on a warmup function.

    Example:
        @warmup_task(name="Long task", timeout_ms=500)
        async def prime_cache(context):
            ...
    """

    def decorator(func):
        if name is not None:
            func.warmup_name = name
        if timeout_ms is not None:
            func.timeout_ms = timeout_ms
        return func

    return decorator


def normalize_tasks(
    specs: Sequence[WarmupTaskSpec],
    default_timeout_ms: int,
    transport: HttpTransport,
) -> List[CanonicalTask]:
    """
    Convert task specs into canonical tasks.

    Args:
        specs: Task specs in input order
        default_timeout_ms: Timeout for tasks that do not declare one
        transport: Transport used by URL tasks

    Returns:
        Canonical tasks, index matching input order

    Raises:
        InvalidTaskSpecError: On the first spec with an unsupported shape
    """
    if isinstance(specs, (str, bytes)) or not isinstance(specs, Sequence):
        raise InvalidTaskSpecError(-1, "tasks must be a sequence")

    return [
        normalize_task(spec, index, default_timeout_ms, transport)
        for index, spec in enumerate(specs)
    ]


def normalize_task(
    spec: WarmupTaskSpec,
    index: int,
    default_timeout_ms: int,
    transport: HttpTransport,
) -> CanonicalTask:
    """Convert a single task spec into a canonical task"""
    if isinstance(spec, str):
        spec = UrlTask(path=spec)
    elif isinstance(spec, Mapping):
        spec = _from_mapping(spec, index)
    elif not isinstance(spec, (UrlTask, FunctionTask)) and callable(spec):
        spec = FunctionTask(func=spec)

    if isinstance(spec, UrlTask):
        return _url_task(spec, index, default_timeout_ms, transport)
    if isinstance(spec, FunctionTask):
        return _function_task(spec, index, default_timeout_ms)

    raise InvalidTaskSpecError(
        index,
        f"expected a path string, a request object with a path, or a callable; "
        f"got {type(spec).__name__}",
    )


def _from_mapping(data: Mapping[str, Any], index: int) -> Union[UrlTask, FunctionTask]:
    options = dict(data)
    bad_keys = [key for key in options if not isinstance(key, str)]
    if bad_keys:
        raise InvalidTaskSpecError(
            index, f"keys must be strings, got: {', '.join(map(repr, bad_keys))}"
        )

    name = options.pop("name", None)
    timeout_ms = options.pop("timeout_ms", None)

    if "func" in options:
        func = options.pop("func")
        if options:
            raise InvalidTaskSpecError(
                index, f"unexpected keys for a function task: {', '.join(sorted(map(str, options)))}"
            )
        return FunctionTask(func=func, name=name, timeout_ms=timeout_ms)

    if "path" not in options:
        raise InvalidTaskSpecError(index, 'request object does not have a "path" property')

    path = options.pop("path")
    # The target is always the warmup listener
    options.pop("url", None)
    return UrlTask(path=path, overrides=options, name=name, timeout_ms=timeout_ms)


def _resolve_timeout(timeout_ms: Any, default_timeout_ms: int, index: int) -> int:
    if timeout_ms is None:
        return default_timeout_ms
    if isinstance(timeout_ms, bool) or not isinstance(timeout_ms, int) or timeout_ms < 0:
        raise InvalidTaskSpecError(index, f"timeout_ms must be a non-negative integer, got {timeout_ms!r}")
    return timeout_ms


def _url_task(
    spec: UrlTask,
    index: int,
    default_timeout_ms: int,
    transport: HttpTransport,
) -> CanonicalTask:
    path = spec.path
    if not isinstance(path, str) or not path:
        raise InvalidTaskSpecError(index, 'request object does not have a valid "path" property')
    if not path.startswith("/"):
        path = "/" + path

    if not isinstance(spec.overrides, Mapping):
        raise InvalidTaskSpecError(
            index, f"request options must be a mapping, got {type(spec.overrides).__name__}"
        )
    overrides = dict(spec.overrides)
    unknown = set(overrides) - REQUEST_OVERRIDE_KEYS
    if unknown:
        raise InvalidTaskSpecError(
            index, f"unsupported request options: {', '.join(sorted(map(str, unknown)))}"
        )

    method = str(overrides.pop("method", "GET")).upper()
    name = spec.name or path

    async def execute(context: RunContext) -> None:
        url = context.url_for(path)
        try:
            status_code = await transport.request(method, url, **overrides)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise TaskFailureError(name, index, f"Request to {url} failed: {e}") from e

        if not 200 <= status_code < 300:
            raise HttpStatusError(name, index, url, status_code)

    return CanonicalTask(
        index=index,
        name=name,
        kind=TaskKind.URL,
        timeout_ms=_resolve_timeout(spec.timeout_ms, default_timeout_ms, index),
        execute=execute,
        path=path,
    )


def _function_task(spec: FunctionTask, index: int, default_timeout_ms: int) -> CanonicalTask:
    func = spec.func
    if not callable(func):
        raise InvalidTaskSpecError(index, f'"func" must be callable, got {type(func).__name__}')

    timeout_ms = spec.timeout_ms
    if timeout_ms is None:
        timeout_ms = getattr(func, "timeout_ms", None)

    return CanonicalTask(
        index=index,
        name=spec.name or _callable_name(func),
        kind=TaskKind.FUNCTION,
        timeout_ms=_resolve_timeout(timeout_ms, default_timeout_ms, index),
        execute=functools.partial(_call, func),
    )


def _callable_name(func: Callable[..., Any]) -> str:
    declared = getattr(func, "warmup_name", None)
    if declared:
        return declared

    name = getattr(func, "__name__", None)
    if not name or name == "<lambda>":
        return ANONYMOUS_TASK_NAME
    return name


def _is_async(func: Callable[..., Any]) -> bool:
    if inspect.iscoroutinefunction(func):
        return True
    return inspect.iscoroutinefunction(getattr(func, "__call__", None))


async def _call(func: Callable[[RunContext], Any], context: RunContext) -> None:
    if _is_async(func):
        await func(context)
        return

    # Blocking functions run in a worker thread so siblings keep running
    result = await asyncio.to_thread(func, context)
    if inspect.isawaitable(result):
        await result
