"""
Port Binder

Binds the warmup listener, probing upward from a random or fixed port
while the port is already in use.
"""

import errno
import inspect
import logging
import random
from dataclasses import dataclass
from typing import Any, Callable, Optional, Tuple, Union

from .. import metrics
from ..exceptions import BindError, PortExhaustedError
from ..log import WarmupLogAdapter, get_warmup_logger
from ..models import DEFAULT_PORT_RANGE

# start_server(port) returns the listener (or an awaitable of it) and raises on failure
StartServer = Callable[[int], Any]


def random_port(port_range: Tuple[int, int] = DEFAULT_PORT_RANGE) -> int:
    """Pick a port uniformly at random from an inclusive range"""
    low, high = port_range
    return random.randint(low, high)


def is_address_in_use(error: BaseException) -> bool:
    """Check if a bind error means the port is taken"""
    return isinstance(error, OSError) and error.errno == errno.EADDRINUSE


@dataclass(frozen=True)
class BoundListener:
    """Listener returned by start_server and the port it is bound to"""

    listener: Any
    port: int
    attempts: int


class PortBinder:
    """
    Binds a listener through a caller-supplied start_server capability.

    Only "address in use" failures are retried (next port up); any other
    failure is structural and reported immediately.
    """

    def __init__(
        self,
        start_server: StartServer,
        max_attempts: int = 20,
        port_range: Tuple[int, int] = DEFAULT_PORT_RANGE,
        log: Optional[Union[logging.Logger, WarmupLogAdapter]] = None,
        enable_metrics: bool = True,
    ):
        """
        Initialize binder.

        Args:
            start_server: Starts the app listening on a port
            max_attempts: Total bind attempts before giving up
            port_range: Range for the random starting port
            log: Log sink
            enable_metrics: Whether attempts are counted in Prometheus
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

        self.start_server = start_server
        self.max_attempts = max_attempts
        self.port_range = port_range
        self.log = get_warmup_logger(log)
        self.enable_metrics = enable_metrics
        self.attempts = 0

    async def bind(self, port: Optional[int] = None) -> BoundListener:
        """
        Bind a listener.

        Args:
            port: Starting port (random within port_range if None)

        Returns:
            BoundListener with the listener and the port it bound to

        Raises:
            PortExhaustedError: If every attempt hit a port in use
            BindError: On any other bind failure
        """
        port = port if port is not None else random_port(self.port_range)
        self.attempts = 0

        for attempt in range(1, self.max_attempts + 1):
            self.attempts = attempt
            self.log.info(f"Attempting to listen on port {port}")

            try:
                listener = self.start_server(port)
                if inspect.isawaitable(listener):
                    listener = await listener
            except Exception as e:
                if not is_address_in_use(e):
                    self.log.error(f"Error listening on port {port}: {e}")
                    self._record("error")
                    raise BindError(port, e) from e

                self._record("in_use")
                if attempt == self.max_attempts:
                    break
                self.log.info(f"Failed to listen on port {port}. Trying next port...")
                port += 1
                continue

            self._record("bound")
            self.log.info(f"Listening on port {port}")
            return BoundListener(listener=listener, port=port, attempts=attempt)

        self.log.error(f"Unable to find an available warmup port after {self.max_attempts} attempts")
        raise PortExhaustedError(port, self.max_attempts)

    def _record(self, result: str) -> None:
        if self.enable_metrics:
            metrics.record_bind_attempt(result)
