"""
Tests for WarmupOrchestrator and run_warmup.
"""

import asyncio
import errno
import logging

import pytest

from conftest import FakeServer, FakeTransport
from prewarm.exceptions import (
    BindError,
    CloseError,
    HttpStatusError,
    InvalidTaskSpecError,
    PortExhaustedError,
    TaskTimeoutError,
)
from prewarm.models import WarmupOptions, WarmupState
from prewarm.orchestrator import WarmupOrchestrator, run_warmup
from prewarm.runner.tasks import UrlTask


class TestRunWarmup:
    """Test complete warmup runs against a fake server."""

    @pytest.mark.asyncio
    async def test_successful_run(self, fake_server, fake_transport, options):
        """Test binding, running and closing in order."""
        result = await run_warmup(
            fake_server.start,
            fake_server.stop,
            ["/foo", {"path": "/baz"}],
            options,
            transport=fake_transport,
        )

        assert result.success is True
        assert result.error is None
        assert result.port == 20000
        assert result.state == WarmupState.DONE
        assert result.bind_attempts == 1
        assert fake_server.stop_calls == [{"port": 20000}]
        assert [url for _, url, _ in fake_transport.requests] == [
            "http://127.0.0.1:20000/foo",
            "http://127.0.0.1:20000/baz",
        ]

    @pytest.mark.asyncio
    async def test_failed_request_reported(self, fake_server):
        """Test a 500 response fails the run while other tasks still run."""
        transport = FakeTransport({"/foo": (200, 0.05), "/bar": (500, 0.05)})
        options = WarmupOptions(timeout_ms=300, port=20000, enable_metrics=False)

        result = await run_warmup(
            fake_server.start, fake_server.stop, ["/foo", "/bar"], options, transport=transport
        )

        assert isinstance(result.error, HttpStatusError)
        assert result.error.status_code == 500
        assert [o.success for o in result.run.outcomes] == [True, False]
        assert len(fake_server.stop_calls) == 1

    @pytest.mark.asyncio
    async def test_timeout_reported(self, fake_server, fake_transport):
        """Test a task timeout fails the run."""

        async def hang(context):
            await asyncio.sleep(5)

        options = WarmupOptions(timeout_ms=50, port=20000, enable_metrics=False)
        result = await run_warmup(
            fake_server.start, fake_server.stop, [hang], options, transport=fake_transport
        )

        assert isinstance(result.error, TaskTimeoutError)
        assert result.error.timeout_ms == 50
        assert len(fake_server.stop_calls) == 1

    @pytest.mark.asyncio
    async def test_tasks_receive_bound_port(self, fake_transport):
        """Test tasks see the port that was actually bound."""
        server = FakeServer(busy_ports={20000})
        seen = []

        options = WarmupOptions(timeout_ms=1000, port=20000, enable_metrics=False)
        result = await run_warmup(
            server.start,
            server.stop,
            [lambda context: seen.append(context.bound_port)],
            options,
            transport=fake_transport,
        )

        assert result.success is True
        assert result.port == 20001
        assert result.bind_attempts == 2
        assert seen == [20001]

    @pytest.mark.asyncio
    async def test_no_tasks(self, fake_server, fake_transport, options):
        """Test an empty task list still binds and closes."""
        result = await run_warmup(
            fake_server.start, fake_server.stop, [], options, transport=fake_transport
        )

        assert result.success is True
        assert len(fake_server.start_calls) == 1
        assert len(fake_server.stop_calls) == 1


class TestBindFailures:
    """Test runs where the listener never binds."""

    @pytest.mark.asyncio
    async def test_port_exhausted_skips_close(self, fake_transport):
        """Test stop_server is never called when nothing was bound."""
        server = FakeServer(always_busy=True)
        options = WarmupOptions(port=20000, max_bind_attempts=3, enable_metrics=False)
        calls = []

        result = await run_warmup(
            server.start,
            server.stop,
            [lambda context: calls.append(context)],
            options,
            transport=fake_transport,
        )

        assert isinstance(result.error, PortExhaustedError)
        assert result.port is None
        assert result.run is None
        assert result.bind_attempts == 3
        assert server.stop_calls == []
        assert calls == []

    @pytest.mark.asyncio
    async def test_bind_error(self, fake_transport, options):
        """Test a structural bind failure is reported as BindError."""
        server = FakeServer(start_error=PermissionError(errno.EACCES, "Permission denied"))

        result = await run_warmup(server.start, server.stop, ["/foo"], options, transport=fake_transport)

        assert isinstance(result.error, BindError)
        assert result.state == WarmupState.DONE
        assert server.stop_calls == []
        assert fake_transport.requests == []


class TestInvalidSpecs:
    """Test validation of task specs."""

    @pytest.mark.asyncio
    async def test_invalid_spec_closes_listener(self, fake_server, fake_transport, options):
        """Test no task runs and the listener is still closed."""
        calls = []

        result = await run_warmup(
            fake_server.start,
            fake_server.stop,
            [lambda context: calls.append(1), {"method": "GET"}],
            options,
            transport=fake_transport,
        )

        assert isinstance(result.error, InvalidTaskSpecError)
        assert result.error.index == 1
        assert result.run is None
        assert calls == []
        assert fake_transport.requests == []
        assert len(fake_server.stop_calls) == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "spec",
        [
            {"path": "/x", 1: "y"},
            {"func": print, 2: 3},
            UrlTask("/x", overrides=None),
        ],
    )
    async def test_malformed_spec_reported(self, spec, fake_server, fake_transport, options):
        """Test malformed keys or options end the run with a result, not a crash."""
        results = []

        result = await run_warmup(
            fake_server.start,
            fake_server.stop,
            [spec],
            options,
            transport=fake_transport,
            on_complete=results.append,
        )

        assert isinstance(result.error, InvalidTaskSpecError)
        assert result.error.index == 0
        assert result.state == WarmupState.DONE
        assert results == [result]
        assert len(fake_server.stop_calls) == 1


class TestClose:
    """Test listener shutdown."""

    @pytest.mark.asyncio
    async def test_close_error_is_sole_error(self, fake_transport, options):
        """Test a close failure is reported when everything else succeeded."""
        server = FakeServer(stop_error=RuntimeError("socket stuck"))

        result = await run_warmup(server.start, server.stop, ["/foo"], options, transport=fake_transport)

        assert isinstance(result.error, CloseError)
        assert result.error.port == 20000
        assert "socket stuck" in str(result.error)

    @pytest.mark.asyncio
    async def test_close_error_after_task_failure(self, options):
        """Test the task failure wins over a later close failure."""
        server = FakeServer(stop_error=RuntimeError("socket stuck"))
        transport = FakeTransport({"/bar": (500, 0)})

        result = await run_warmup(server.start, server.stop, ["/bar"], options, transport=transport)

        assert isinstance(result.error, HttpStatusError)
        assert len(server.stop_calls) == 1

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self, fake_server, fake_transport, options):
        """Test extra close calls do not stop the listener again."""
        orchestrator = WarmupOrchestrator(
            fake_server.start, fake_server.stop, ["/foo"], options, transport=fake_transport
        )

        assert await orchestrator.close() is None
        await orchestrator.run()
        assert await orchestrator.close() is None
        assert await orchestrator.close() is None

        assert orchestrator.closed is True
        assert len(fake_server.stop_calls) == 1

    @pytest.mark.asyncio
    async def test_repeated_close_returns_first_error(self, fake_transport, options):
        """Test close keeps returning the first close failure."""
        server = FakeServer(stop_error=RuntimeError("socket stuck"))
        orchestrator = WarmupOrchestrator(server.start, server.stop, [], options, transport=fake_transport)

        result = await orchestrator.run()

        assert await orchestrator.close() is result.error
        assert len(server.stop_calls) == 1


class TestLifecycle:
    """Test state and completion reporting."""

    @pytest.mark.asyncio
    async def test_states(self, fake_server, fake_transport, options):
        """Test the state seen by tasks and after the run."""
        seen = []
        orchestrator = WarmupOrchestrator(
            fake_server.start,
            fake_server.stop,
            [lambda context: seen.append(orchestrator.state)],
            options,
            transport=fake_transport,
        )

        assert orchestrator.state == WarmupState.IDLE
        await orchestrator.run()

        assert seen == [WarmupState.RUNNING]
        assert orchestrator.state == WarmupState.DONE
        assert orchestrator.port == 20000

    @pytest.mark.asyncio
    async def test_run_twice(self, fake_server, fake_transport, options):
        """Test an orchestrator runs only once."""
        orchestrator = WarmupOrchestrator(
            fake_server.start, fake_server.stop, [], options, transport=fake_transport
        )
        await orchestrator.run()

        with pytest.raises(RuntimeError):
            await orchestrator.run()

        assert len(fake_server.start_calls) == 1

    @pytest.mark.asyncio
    async def test_on_complete_called_once(self, fake_server, fake_transport, options):
        """Test the completion callback fires once with the returned result."""
        results = []

        result = await run_warmup(
            fake_server.start,
            fake_server.stop,
            ["/foo"],
            options,
            transport=fake_transport,
            on_complete=results.append,
        )

        assert results == [result]

    @pytest.mark.asyncio
    async def test_async_on_complete(self, fake_transport, options):
        """Test an async completion callback is awaited, also on failure."""
        server = FakeServer(always_busy=True)
        results = []

        async def on_complete(result):
            results.append(result.error)

        await run_warmup(
            server.start,
            server.stop,
            ["/foo"],
            WarmupOptions(port=20000, max_bind_attempts=2, enable_metrics=False),
            transport=fake_transport,
            on_complete=on_complete,
        )

        assert len(results) == 1
        assert isinstance(results[0], PortExhaustedError)

    @pytest.mark.asyncio
    async def test_on_complete_error_propagates(self, fake_server, fake_transport, options):
        """Test a failing callback raises from run after the listener closed."""

        def on_complete(result):
            raise ValueError("callback broke")

        with pytest.raises(ValueError, match="callback broke"):
            await run_warmup(
                fake_server.start,
                fake_server.stop,
                [],
                options,
                transport=fake_transport,
                on_complete=on_complete,
            )

        assert len(fake_server.stop_calls) == 1


class TestTransportOwnership:
    """Test who closes the HTTP transport."""

    @pytest.mark.asyncio
    async def test_injected_transport_left_open(self, fake_server, fake_transport, options):
        """Test a caller-supplied transport is not closed."""
        await run_warmup(fake_server.start, fake_server.stop, ["/foo"], options, transport=fake_transport)

        assert fake_transport.closed is False

    @pytest.mark.asyncio
    async def test_owned_transport_closed(self, fake_server, options, monkeypatch):
        """Test the default transport is created and closed by the run."""
        monkeypatch.setattr("prewarm.orchestrator.HttpxTransport", FakeTransport)
        orchestrator = WarmupOrchestrator(fake_server.start, fake_server.stop, ["/foo"], options)

        await orchestrator.run()

        assert isinstance(orchestrator._transport, FakeTransport)
        assert len(orchestrator._transport.requests) == 1
        assert orchestrator._transport.closed is True


class TestCancellation:
    """Test cancelling a run while tasks are in flight."""

    @staticmethod
    async def _cancel_while_running(orchestrator, started):
        running = asyncio.create_task(orchestrator.run())
        await asyncio.wait_for(started.wait(), timeout=1.0)

        running.cancel()
        with pytest.raises(asyncio.CancelledError):
            await running

    @pytest.mark.asyncio
    async def test_cancel_closes_listener(self, fake_server, fake_transport, options):
        """Test the listener is closed once when the run is cancelled."""
        started = asyncio.Event()

        async def hang(context):
            started.set()
            await asyncio.sleep(10)

        orchestrator = WarmupOrchestrator(
            fake_server.start, fake_server.stop, [hang], options, transport=fake_transport
        )
        await self._cancel_while_running(orchestrator, started)

        assert len(fake_server.stop_calls) == 1
        assert orchestrator.closed is True
        assert orchestrator.state == WarmupState.CLOSING

    @pytest.mark.asyncio
    async def test_cancel_leaves_injected_transport_open(self, fake_server, options):
        """Test a caller-supplied transport survives cancellation."""
        started = asyncio.Event()
        transport = FakeTransport({"/slow": (200, 10)})

        async def mark_started(context):
            started.set()

        orchestrator = WarmupOrchestrator(
            fake_server.start,
            fake_server.stop,
            ["/slow", mark_started],
            options,
            transport=transport,
        )
        await self._cancel_while_running(orchestrator, started)

        assert transport.closed is False
        assert len(transport.requests) == 1
        assert len(fake_server.stop_calls) == 1


class TestOrchestratorLogging:
    """Test the log sink."""

    @pytest.mark.asyncio
    async def test_custom_logger(self, fake_server, fake_transport, options, caplog):
        """Test lines go to the injected logger with the warmup prefix."""
        sink = logging.getLogger("tests.warmup")

        with caplog.at_level(logging.INFO, logger="tests.warmup"):
            await run_warmup(
                fake_server.start,
                fake_server.stop,
                ["/foo"],
                options,
                transport=fake_transport,
                log=sink,
            )

        records = [r for r in caplog.records if r.name == "tests.warmup"]
        messages = [r.getMessage() for r in records]
        assert "[warmup] Attempting to listen on port 20000" in messages
        assert "[warmup] Listening on port 20000" in messages
        assert '[warmup] Warming up "/foo" (http://127.0.0.1:20000/foo)...' in messages
        assert "[warmup] Closing the server!" in messages
