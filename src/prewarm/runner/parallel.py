"""
Parallel Task Runner

Runs canonical warmup tasks concurrently, each racing its own timeout.
"""

import asyncio
import contextlib
import logging
import time
from typing import List, Optional, Sequence, Union

from .. import metrics
from ..exceptions import TaskFailureError, TaskTimeoutError, WarmupError
from ..log import WarmupLogAdapter, get_warmup_logger
from ..models import CanonicalTask, ErrorOrder, RunContext, RunResult, TaskOutcome
from .latch import CompletionLatch


class ParallelRunner:
    """
    Executes warmup tasks concurrently and aggregates their outcomes.

    Features:
    - All tasks start together, optionally bounded by max_concurrency
    - Per-task timeout racing the task's own completion
    - Exactly one recorded outcome per task (CompletionLatch)
    - No short-circuit: the run waits for every task to settle

    Example:
        runner = ParallelRunner(max_concurrency=4)
        result = await runner.run(tasks, RunContext(bound_port=8123))

        if not result.success:
            raise result.error
    """

    def __init__(
        self,
        max_concurrency: Optional[int] = None,
        error_order: ErrorOrder = ErrorOrder.INDEX,
        log: Optional[Union[logging.Logger, WarmupLogAdapter]] = None,
        enable_metrics: bool = True,
    ):
        """
        Initialize runner.

        Args:
            max_concurrency: Max tasks executing at once (None for no bound)
            error_order: Which failure the run reports
            log: Log sink
            enable_metrics: Whether task outcomes are recorded in Prometheus
        """
        if max_concurrency is not None and max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")

        self.max_concurrency = max_concurrency
        self.error_order = ErrorOrder(error_order)
        self.log = get_warmup_logger(log)
        self.enable_metrics = enable_metrics

    async def run(self, tasks: Sequence[CanonicalTask], context: RunContext) -> RunResult:
        """
        Run all tasks and wait for every one of them to settle.

        Args:
            tasks: Canonical tasks
            context: Context passed to every task

        Returns:
            RunResult with one outcome per task
        """
        started = time.monotonic()
        total = len(tasks)
        outcomes: List[Optional[TaskOutcome]] = [None] * total
        arrival_order: List[int] = []

        if self.max_concurrency is not None:
            limiter = asyncio.Semaphore(self.max_concurrency)
        else:
            limiter = None

        async def run_slot(position: int, task: CanonicalTask) -> None:
            async with limiter if limiter is not None else contextlib.nullcontext():
                outcome = await self._run_task(task, total, context)
            outcomes[position] = outcome
            arrival_order.append(outcome.index)

        await asyncio.gather(*(run_slot(i, task) for i, task in enumerate(tasks)))

        result = RunResult(
            outcomes=[o for o in outcomes if o is not None],
            arrival_order=arrival_order,
            error_order=self.error_order,
            duration_ms=(time.monotonic() - started) * 1000,
        )

        if result.success:
            self.log.info(f"All {total} warmup tasks completed in {result.duration_ms:.0f}ms")
        else:
            self.log.error(
                f"{len(result.failures)} of {total} warmup tasks failed "
                f"in {result.duration_ms:.0f}ms: {result.error}"
            )
        return result

    async def _run_task(self, task: CanonicalTask, total: int, context: RunContext) -> TaskOutcome:
        """Run one task against its timer; the first to settle the latch wins"""
        label = f"task {task.index + 1} of {total} ({task.name})"
        self.log.info(f"Running {label}")

        loop = asyncio.get_running_loop()
        latch: CompletionLatch[TaskOutcome] = CompletionLatch(loop)
        started = time.monotonic()

        timer: Optional[asyncio.TimerHandle] = None
        if task.timeout_ms > 0:
            timer = loop.call_later(
                task.timeout_ms / 1000, self._expire, latch, task, started
            )

        execution = asyncio.create_task(self._execute(task, context, latch, started))
        try:
            outcome = await latch.wait()
        finally:
            if timer is not None:
                timer.cancel()
            if not execution.done():
                # Timed out: coroutine work is cancelled, thread work is abandoned
                execution.cancel()

        if outcome.success:
            self.log.info(f"Completed {label}")
        elif outcome.timed_out:
            self.log.error(str(outcome.error))
        else:
            self.log.error(f"Error in warming up {label}: {outcome.error}")

        if self.enable_metrics:
            metrics.record_task(task.kind, outcome)
        return outcome

    async def _execute(
        self,
        task: CanonicalTask,
        context: RunContext,
        latch: CompletionLatch,
        started: float,
    ) -> None:
        try:
            await task.execute(context)
        except asyncio.CancelledError:
            raise
        except WarmupError as e:
            error: Exception = e
        except Exception as e:
            error = TaskFailureError(task.name, task.index, f"Warmup task {task.name} failed: {e}")
            error.__cause__ = e
        else:
            error = None

        outcome = TaskOutcome(
            index=task.index,
            name=task.name,
            error=error,
            duration_ms=(time.monotonic() - started) * 1000,
        )
        if not latch.settle(outcome):
            self.log.debug(
                f"Discarding late outcome of task {task.index + 1} ({task.name}), already timed out"
            )

    def _expire(self, latch: CompletionLatch, task: CanonicalTask, started: float) -> None:
        latch.settle(
            TaskOutcome(
                index=task.index,
                name=task.name,
                error=TaskTimeoutError(task.name, task.timeout_ms, index=task.index),
                duration_ms=(time.monotonic() - started) * 1000,
            )
        )
