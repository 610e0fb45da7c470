"""
ASGI application warmup

Warm up a FastAPI (or any ASGI) app on an ephemeral uvicorn listener
before the real server starts taking traffic.
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, Optional, Sequence, Union

from fastapi import FastAPI

from .config import WarmupSettings, get_settings
from .listener.uvicorn_server import UvicornListener
from .log import WarmupLogAdapter, get_warmup_logger
from .models import WarmupOptions, WarmupResult
from .orchestrator import CompletionCallback, run_warmup
from .posthog_client import PostHogClient
from .runner.tasks import WarmupTaskSpec
from .runner.transport import HttpTransport, HttpxTransport


async def warmup_app(
    app: Any,
    tasks: Sequence[WarmupTaskSpec],
    options: Optional[WarmupOptions] = None,
    settings: Optional[WarmupSettings] = None,
    *,
    transport: Optional[HttpTransport] = None,
    log: Optional[Union[logging.Logger, WarmupLogAdapter]] = None,
    on_complete: Optional[CompletionCallback] = None,
) -> WarmupResult:
    """
    Serve an ASGI app on a warmup port, run the tasks against it, shut it down.

    Args:
        app: ASGI application
        tasks: Warmup task specs
        options: Run options (built from settings if None)
        settings: Settings (cached settings if None)
        transport: HTTP transport (an httpx transport configured from settings if None)
        log: Log sink
        on_complete: Called once with the final result

    Returns:
        WarmupResult
    """
    settings = settings or get_settings()
    options = options or WarmupOptions.from_settings(settings)
    PostHogClient.initialize(settings.posthog_api_key, settings.posthog_host)

    listener = UvicornListener(
        app,
        host=options.host,
        graceful_shutdown_timeout=settings.graceful_shutdown_timeout,
        log_level=settings.server_log_level,
    )

    owned_transport = None
    if transport is None:
        transport = owned_transport = HttpxTransport(timeout=settings.http_timeout)

    try:
        return await run_warmup(
            listener.start,
            listener.stop,
            tasks,
            options,
            transport=transport,
            log=log,
            on_complete=on_complete,
        )
    finally:
        if owned_transport is not None:
            await owned_transport.aclose()
        # Flush pending events and stop the consumer thread
        PostHogClient.shutdown()


def warmup_lifespan(
    tasks: Sequence[WarmupTaskSpec],
    options: Optional[WarmupOptions] = None,
    *,
    raise_on_failure: bool = False,
    settings: Optional[WarmupSettings] = None,
    log: Optional[Union[logging.Logger, WarmupLogAdapter]] = None,
):
    """
    Build a FastAPI lifespan that warms the app up during startup.

    The real server only starts accepting connections once the lifespan
    has yielded, so the warmup runs before any traffic arrives.

    Example:
        app = FastAPI(lifespan=warmup_lifespan(["/", "/health"]))

    Args:
        tasks: Warmup task specs
        options: Run options (built from settings if None)
        raise_on_failure: Abort startup if the warmup fails (logged otherwise)
        settings: Settings (cached settings if None)
        log: Log sink

    Returns:
        Lifespan context manager factory
    """
    sink = get_warmup_logger(log)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        result = await warmup_app(app, tasks, options, settings, log=sink)
        app.state.warmup_result = result

        if not result.success:
            if raise_on_failure:
                result.raise_for_error()
            sink.warning(f"Continuing startup after failed warmup: {result.error}")

        yield

    return lifespan
