"""
Warmup Exceptions

Error taxonomy for the warmup lifecycle: listener binding, task
validation, task execution and listener shutdown.
"""

from typing import Optional


class WarmupError(Exception):
    """Base exception for warmup errors"""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class BindError(WarmupError):
    """Raised when the listener cannot be bound for a reason other than a port conflict"""

    def __init__(self, port: int, cause: BaseException):
        self.port = port
        self.cause = cause
        super().__init__(f"Error listening on port {port}: {cause}")


class PortExhaustedError(WarmupError):
    """Raised when every bind attempt hit a port already in use"""

    def __init__(self, port: int, attempts: int):
        self.port = port
        self.attempts = attempts
        super().__init__(
            f"Unable to find an available warmup port after {attempts} attempts "
            f"(last attempted port: {port})"
        )


class InvalidTaskSpecError(WarmupError):
    """Raised when a warmup task has an unsupported shape"""

    def __init__(self, index: int, reason: str):
        self.index = index
        self.reason = reason
        super().__init__(f"Invalid warmup task at index {index}: {reason}")


class TaskFailureError(WarmupError):
    """Raised when a warmup task reports an error"""

    def __init__(self, name: str, index: int, message: str):
        self.name = name
        self.index = index
        super().__init__(message)


class HttpStatusError(TaskFailureError):
    """Raised when a URL task gets a non-2xx response"""

    def __init__(self, name: str, index: int, url: str, status_code: int):
        self.url = url
        self.status_code = status_code
        super().__init__(
            name,
            index,
            f"Request to {url} failed with HTTP status code {status_code}",
        )


class TaskTimeoutError(WarmupError):
    """Raised when a warmup task exceeds its timeout"""

    def __init__(self, name: str, timeout_ms: int, index: Optional[int] = None):
        self.name = name
        self.timeout_ms = timeout_ms
        self.index = index
        super().__init__(f"Warmup task timed out after {timeout_ms}ms: {name}")


class CloseError(WarmupError):
    """Raised when the warmup listener fails to close cleanly"""

    def __init__(self, cause: BaseException, port: Optional[int] = None):
        self.cause = cause
        self.port = port
        where = f" on port {port}" if port is not None else ""
        super().__init__(f"Failed to close warmup listener{where}: {cause}")
