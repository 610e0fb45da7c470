"""
Warmup Listener

Port acquisition with retry-on-conflict and an embedded uvicorn server
for ASGI apps.
"""

from .binder import BoundListener, PortBinder
from .uvicorn_server import RunningServer, UvicornListener

__all__ = [
    "BoundListener",
    "PortBinder",
    "RunningServer",
    "UvicornListener",
]
