"""
Uvicorn Listener

Serves an ASGI app on the warmup port for the duration of one run.
"""

import asyncio
import contextlib
import logging
import socket
from dataclasses import dataclass
from typing import Any, Optional

import uvicorn

logger = logging.getLogger(__name__)


class EmbeddedServer(uvicorn.Server):
    """uvicorn server that leaves process signal handling to the host application"""

    @contextlib.contextmanager
    def capture_signals(self):
        yield

    def install_signal_handlers(self) -> None:
        pass


@dataclass
class RunningServer:
    """Handle for a started warmup server"""

    server: EmbeddedServer
    task: asyncio.Task
    port: int

    @property
    def stopped(self) -> bool:
        return self.task.done()


class UvicornListener:
    """
    start_server / stop_server pair for an ASGI application.

    The socket is bound synchronously before uvicorn takes it over, so a
    port conflict surfaces as OSError(EADDRINUSE) from start().

    Example:
        listener = UvicornListener(app)
        result = await run_warmup(listener.start, listener.stop, ["/health"])
    """

    def __init__(
        self,
        app: Any,
        host: str = "127.0.0.1",
        graceful_shutdown_timeout: Optional[float] = 5.0,
        log_level: str = "warning",
        backlog: int = 128,
        startup_poll_interval: float = 0.01,
    ):
        """
        Initialize listener.

        Args:
            app: ASGI application to warm up
            host: Interface to bind
            graceful_shutdown_timeout: Seconds to wait for in-flight requests
                on stop before cancelling them (None waits indefinitely)
            log_level: uvicorn log level
            backlog: Listen backlog
            startup_poll_interval: Seconds between startup checks
        """
        self.app = app
        self.host = host
        self.graceful_shutdown_timeout = graceful_shutdown_timeout
        self.log_level = log_level
        self.backlog = backlog
        self.startup_poll_interval = startup_poll_interval

    def bind_socket(self, port: int) -> socket.socket:
        """Bind a TCP socket to the given port (raises OSError on failure)"""
        family = socket.AF_INET6 if ":" in self.host else socket.AF_INET
        sock = socket.socket(family, socket.SOCK_STREAM)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind((self.host, port))
        except (OSError, OverflowError):
            sock.close()
            raise
        sock.set_inheritable(True)
        return sock

    async def start(self, port: int) -> RunningServer:
        """
        Start serving the app on a port.

        Args:
            port: Port to bind

        Returns:
            RunningServer handle

        Raises:
            OSError: If the port cannot be bound
            RuntimeError: If uvicorn exits during startup
        """
        sock = self.bind_socket(port)

        config = uvicorn.Config(
            self.app,
            host=self.host,
            port=port,
            lifespan="off",
            # Logging handlers belong to the host application
            log_config=None,
            log_level=self.log_level,
            access_log=False,
            backlog=self.backlog,
            timeout_graceful_shutdown=self.graceful_shutdown_timeout,
        )
        server = EmbeddedServer(config)
        task = asyncio.create_task(server.serve(sockets=[sock]))

        while not server.started:
            if task.done():
                sock.close()
                error = None if task.cancelled() else task.exception()
                raise RuntimeError(f"Warmup server exited during startup on port {port}") from error
            await asyncio.sleep(self.startup_poll_interval)

        logger.debug(f"Warmup server started on {self.host}:{port}")
        return RunningServer(server=server, task=task, port=port)

    async def stop(self, handle: RunningServer) -> None:
        """
        Stop a started server and wait for it to exit.

        Stopping an already stopped server is a no-op.
        """
        if handle.stopped:
            return

        handle.server.should_exit = True
        await handle.task
        logger.debug(f"Warmup server on port {handle.port} stopped")
