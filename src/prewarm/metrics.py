"""
Warmup metrics

Prometheus collectors for warmup runs. Collectors live in the default
registry, so an app that mounts ``prometheus_client.make_asgi_app()``
exposes them alongside its own metrics.
"""

from prometheus_client import Counter, Histogram

from .models import RunResult, TaskKind, TaskOutcome, WarmupResult

WARMUP_RUNS = Counter(
    "prewarm_runs_total",
    "Completed warmup runs",
    ["status"],
)
WARMUP_RUN_DURATION = Histogram(
    "prewarm_run_duration_seconds",
    "Wall-clock duration of warmup runs, listener bind to close",
)
WARMUP_TASKS = Counter(
    "prewarm_tasks_total",
    "Warmup task outcomes",
    ["kind", "outcome"],
)
WARMUP_TASK_DURATION = Histogram(
    "prewarm_task_duration_seconds",
    "Warmup task duration until its outcome was recorded",
    ["kind"],
)
WARMUP_BIND_ATTEMPTS = Counter(
    "prewarm_bind_attempts_total",
    "Warmup listener bind attempts",
    ["result"],
)


def record_bind_attempt(result: str) -> None:
    """Count a bind attempt (bound, in_use or error)"""
    WARMUP_BIND_ATTEMPTS.labels(result=result).inc()


def record_task(kind: TaskKind, outcome: TaskOutcome) -> None:
    """Count a task outcome and observe its duration"""
    if outcome.success:
        label = "success"
    elif outcome.timed_out:
        label = "timeout"
    else:
        label = "failure"

    WARMUP_TASKS.labels(kind=kind.value, outcome=label).inc()
    WARMUP_TASK_DURATION.labels(kind=kind.value).observe(outcome.duration_ms / 1000)


def record_run(result: WarmupResult) -> None:
    """Count a finished run and observe its duration"""
    WARMUP_RUNS.labels(status="success" if result.success else "failure").inc()
    WARMUP_RUN_DURATION.observe(result.duration_ms / 1000)


def summarize(run: RunResult) -> dict:
    """Outcome counts for a run, keyed like the task counter labels"""
    counts = {"success": 0, "failure": 0, "timeout": 0}
    for outcome in run.outcomes:
        if outcome.success:
            counts["success"] += 1
        elif outcome.timed_out:
            counts["timeout"] += 1
        else:
            counts["failure"] += 1
    return counts
