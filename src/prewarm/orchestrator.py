"""
Warmup Orchestrator

Sequences one warmup run: bind the listener, run the tasks, close the
listener, report once.
"""

import inspect
import logging
import time
from typing import Any, Callable, Optional, Sequence, Union

from . import metrics
from .exceptions import CloseError, InvalidTaskSpecError, WarmupError
from .listener.binder import PortBinder, StartServer
from .log import WarmupLogAdapter, get_warmup_logger
from .models import RunContext, RunResult, WarmupOptions, WarmupResult, WarmupState
from .posthog_client import PostHogClient
from .runner.parallel import ParallelRunner
from .runner.tasks import WarmupTaskSpec, normalize_tasks
from .runner.transport import HttpTransport, HttpxTransport

# stop_server(listener) may return an awaitable
StopServer = Callable[[Any], Any]
CompletionCallback = Callable[[WarmupResult], Any]


class WarmupOrchestrator:
    """
    Runs the warmup lifecycle: IDLE -> BINDING -> RUNNING -> CLOSING -> DONE.

    - A bind failure goes straight to DONE (nothing to close)
    - Invalid task specs abort before any task runs, the listener is still closed
    - The listener is closed exactly once, whatever the run result
    - A close failure is reported only when nothing failed before it
    - on_complete fires exactly once, with the same result run() returns

    Example:
        orchestrator = WarmupOrchestrator(
            start_server=listener.start,
            stop_server=listener.stop,
            tasks=["/health", {"path": "/search", "params": {"q": "warm"}}],
            options=WarmupOptions(timeout_ms=3000),
        )
        result = await orchestrator.run()
    """

    def __init__(
        self,
        start_server: StartServer,
        stop_server: StopServer,
        tasks: Sequence[WarmupTaskSpec],
        options: Optional[WarmupOptions] = None,
        transport: Optional[HttpTransport] = None,
        log: Optional[Union[logging.Logger, WarmupLogAdapter]] = None,
        on_complete: Optional[CompletionCallback] = None,
    ):
        """
        Initialize orchestrator.

        Args:
            start_server: Starts the app listening on a port, returns the listener
            stop_server: Stops a listener returned by start_server
            tasks: Warmup task specs
            options: Run options (defaults if None)
            transport: HTTP transport for URL tasks (an owned HttpxTransport if None)
            log: Log sink
            on_complete: Called once with the final result
        """
        self.start_server = start_server
        self.stop_server = stop_server
        self.tasks = tasks
        self.options = options or WarmupOptions()
        self.log = get_warmup_logger(log)
        self.on_complete = on_complete

        self._transport = transport
        self._owns_transport = transport is None

        # State
        self._state = WarmupState.IDLE
        self._listener: Any = None
        self._port: Optional[int] = None
        self._bound = False
        self._closed = False
        self._close_error: Optional[CloseError] = None
        self._completed = False

    @property
    def state(self) -> WarmupState:
        return self._state

    @property
    def port(self) -> Optional[int]:
        """Port the listener bound to (None before binding)"""
        return self._port

    @property
    def closed(self) -> bool:
        return self._closed

    async def run(self) -> WarmupResult:
        """
        Execute the warmup run.

        Returns:
            WarmupResult with no error, or the first error recorded

        Raises:
            RuntimeError: If the orchestrator already ran
        """
        if self._state != WarmupState.IDLE:
            raise RuntimeError(f"Warmup already started (state: {self._state.value})")

        started = time.monotonic()
        error: Optional[Exception] = None
        run_result: Optional[RunResult] = None

        self._transition(WarmupState.BINDING)
        binder = PortBinder(
            self.start_server,
            max_attempts=self.options.max_bind_attempts,
            port_range=self.options.port_range,
            log=self.log,
            enable_metrics=self.options.enable_metrics,
        )

        try:
            bound = await binder.bind(self.options.port)
        except WarmupError as e:
            error = e
        else:
            self._listener = bound.listener
            self._port = bound.port
            self._bound = True

            try:
                self._transition(WarmupState.RUNNING)
                run_result = await self._run_tasks(bound.port)
                error = run_result.error
            except InvalidTaskSpecError as e:
                self.log.error(str(e))
                error = e
            finally:
                self._transition(WarmupState.CLOSING)
                close_error = await self.close()
                if self._owns_transport and self._transport is not None:
                    await self._transport.aclose()

            if close_error is not None:
                if error is None:
                    error = close_error
                else:
                    self.log.error(f"Ignoring close failure after earlier error: {close_error}")

        self._transition(WarmupState.DONE)
        result = WarmupResult(
            error=error,
            port=self._port,
            state=self._state,
            run=run_result,
            bind_attempts=binder.attempts,
            duration_ms=(time.monotonic() - started) * 1000,
        )
        self._report(result)
        await self._complete(result)
        return result

    async def close(self) -> Optional[CloseError]:
        """
        Close the listener.

        Idempotent: only the first call stops the listener, later calls (and
        calls before anything was bound) return the first call's result.

        Returns:
            CloseError if stopping the listener failed, else None
        """
        if not self._bound or self._closed:
            return self._close_error

        self._closed = True
        self.log.info("Closing the server!")

        try:
            stopped = self.stop_server(self._listener)
            if inspect.isawaitable(stopped):
                await stopped
        except Exception as e:
            self._close_error = CloseError(e, port=self._port)
            self.log.error(str(self._close_error))

        return self._close_error

    async def _run_tasks(self, port: int) -> RunResult:
        if self._transport is None:
            self._transport = HttpxTransport()

        canonical = normalize_tasks(self.tasks, self.options.timeout_ms, self._transport)
        for task in canonical:
            if task.path is not None:
                self.log.info(f'Warming up "{task.path}" (http://{self.options.host}:{port}{task.path})...')

        runner = ParallelRunner(
            max_concurrency=self.options.max_concurrency,
            error_order=self.options.error_order,
            log=self.log,
            enable_metrics=self.options.enable_metrics,
        )
        return await runner.run(canonical, RunContext(bound_port=port, host=self.options.host))

    def _transition(self, state: WarmupState) -> None:
        self.log.debug(f"Warmup state: {self._state.value} -> {state.value}")
        self._state = state

    def _report(self, result: WarmupResult) -> None:
        if result.success:
            self.log.info(f"Warmup completed successfully in {result.duration_ms:.0f}ms")
        else:
            summary = ""
            if result.run is not None:
                counts = metrics.summarize(result.run)
                summary = (
                    f" ({counts['success']} succeeded, {counts['failure']} failed, "
                    f"{counts['timeout']} timed out)"
                )
            self.log.error(f"Warmup failed{summary}: {result.error}")

        if self.options.enable_metrics:
            metrics.record_run(result)
        PostHogClient.capture_warmup_failure(result)

    async def _complete(self, result: WarmupResult) -> None:
        if self._completed:
            return
        self._completed = True

        if self.on_complete is None:
            return

        try:
            returned = self.on_complete(result)
            if inspect.isawaitable(returned):
                await returned
        except Exception as e:
            self.log.error(f"Warmup completion callback failed: {e}")
            raise


async def run_warmup(
    start_server: StartServer,
    stop_server: StopServer,
    tasks: Sequence[WarmupTaskSpec],
    options: Optional[WarmupOptions] = None,
    *,
    transport: Optional[HttpTransport] = None,
    log: Optional[Union[logging.Logger, WarmupLogAdapter]] = None,
    on_complete: Optional[CompletionCallback] = None,
) -> WarmupResult:
    """
    Warm up a server before it takes traffic.

    Args:
        start_server: Starts the app listening on a port, returns the listener
        stop_server: Stops a listener returned by start_server
        tasks: Warmup task specs (paths, request objects, callables)
        options: Run options
        transport: HTTP transport for URL tasks
        log: Log sink (silent package logger if None)
        on_complete: Called once with the final result

    Returns:
        WarmupResult
    """
    orchestrator = WarmupOrchestrator(
        start_server,
        stop_server,
        tasks,
        options=options,
        transport=transport,
        log=log,
        on_complete=on_complete,
    )
    return await orchestrator.run()
