"""
Warmup configuration
"""
from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache

class WarmupSettings(BaseSettings):
    """Warmup settings"""

    # Task execution
    timeout_ms: int = 10000  # 0 disables the per-task timeout
    max_concurrency: Optional[int] = None
    error_order: str = "index"  # index | arrival

    # Listener
    host: str = "127.0.0.1"
    port: Optional[int] = None
    max_bind_attempts: int = 20
    port_range_start: int = 10000
    port_range_end: int = 50000

    # Embedded server
    graceful_shutdown_timeout: float = 5.0  # seconds
    server_log_level: str = "warning"

    # HTTP transport
    http_timeout: Optional[float] = None  # seconds, None leaves it to the task timeout

    # Monitoring
    enable_metrics: bool = True

    # PostHog Error Tracking
    posthog_api_key: Optional[str] = None
    posthog_host: str = "https://us.i.posthog.com"

    model_config = SettingsConfigDict(
        env_prefix="PREWARM_",
        env_file=".env",
        case_sensitive=False,
    )

@lru_cache()
def get_settings() -> WarmupSettings:
    """Get cached settings instance"""
    return WarmupSettings()
