"""
PostHog Error Tracking for warmup runs

Reports failed warmup runs to PostHog when an API key is configured.
"""

import logging
from typing import Any, Dict, Optional

from posthog import Posthog

from .models import WarmupResult

logger = logging.getLogger(__name__)


class PostHogClient:
    """Singleton PostHog client for warmup failure tracking"""

    _instance: Optional[Posthog] = None
    _enabled: bool = False

    @classmethod
    def initialize(cls, api_key: Optional[str], api_host: Optional[str] = None) -> None:
        """Initialize the PostHog client (no-op without an API key or when already enabled)"""
        if cls._enabled:
            return

        if not api_key or not api_host:
            logger.debug("PostHog API key or host not configured. Warmup error tracking disabled.")
            return

        try:
            cls._instance = Posthog(
                project_api_key=api_key,
                host=api_host,
                on_error=cls._on_error,
            )
            cls._enabled = True
            logger.info(f"PostHog warmup error tracking enabled (host: {api_host})")
        except Exception as e:
            logger.error(f"Failed to initialize PostHog client: {e}")
            cls._enabled = False

    @classmethod
    def is_enabled(cls) -> bool:
        return cls._enabled and cls._instance is not None

    @classmethod
    def _on_error(cls, error: Exception, items: Any) -> None:
        logger.error(f"PostHog client error: {error}")

    @classmethod
    def capture_warmup_failure(
        cls,
        result: WarmupResult,
        distinct_id: str = "prewarm",
        properties: Optional[Dict[str, Any]] = None,
    ) -> None:
        """
        Capture a failed warmup run.

        Args:
            result: Finished warmup result; successful results are ignored
            distinct_id: Identifier of the reporting process
            properties: Additional properties to attach
        """
        if result.success or not cls.is_enabled():
            return

        error = result.error
        event_properties: Dict[str, Any] = {
            "error_type": type(error).__name__,
            "error_message": str(error),
            "warmup_port": result.port,
            "bind_attempts": result.bind_attempts,
            "duration_ms": round(result.duration_ms, 1),
            "service": "prewarm",
        }
        if result.run is not None:
            event_properties["failed_tasks"] = [o.name for o in result.run.failures]

        if properties:
            event_properties.update(properties)

        try:
            cls._instance.capture(
                distinct_id=distinct_id,
                event="$exception",
                properties=event_properties,
            )
            # Warmup runs once at startup, flush before the process moves on
            cls._instance.flush()
        except Exception as e:
            logger.error(f"Failed to capture warmup failure to PostHog: {e}")

    @classmethod
    def shutdown(cls) -> None:
        """Shutdown the PostHog client and flush pending events"""
        if cls._instance:
            try:
                cls._instance.shutdown()
            except Exception as e:
                logger.error(f"Error shutting down PostHog client: {e}")
            finally:
                cls._instance = None
                cls._enabled = False
