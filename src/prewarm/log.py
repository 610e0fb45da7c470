"""
Warmup log sink

Every warmup component logs through a prefixed adapter around an
injected logger. The package logger carries a NullHandler, so nothing is
emitted until the host application configures logging.
"""

import logging
from typing import Optional, Union

LOG_PREFIX = "[warmup]"

logger = logging.getLogger("prewarm")


class WarmupLogAdapter(logging.LoggerAdapter):
    """Prefixes every message with the warmup tag"""

    def __init__(self, logger: logging.Logger, prefix: str = LOG_PREFIX):
        super().__init__(logger, {"prefix": prefix})
        self.prefix = prefix

    def process(self, msg, kwargs):
        return f"{self.prefix} {msg}", kwargs


def get_warmup_logger(
    sink: Optional[Union[logging.Logger, WarmupLogAdapter]] = None,
    prefix: str = LOG_PREFIX,
) -> WarmupLogAdapter:
    """
    Wrap a logger as the warmup log sink.

    Args:
        sink: Logger to write to (package logger if None); an existing
            adapter is returned unchanged
        prefix: Tag prepended to every message

    Returns:
        WarmupLogAdapter
    """
    if isinstance(sink, WarmupLogAdapter):
        return sink
    return WarmupLogAdapter(sink or logger, prefix)
