"""
Configuration Module

Loads settings from environment variables and the config/.env file.
"""

import os
from dataclasses import dataclass
from typing import List, Optional
from pathlib import Path

from dotenv import load_dotenv

PROJECT_ROOT = Path(__file__).resolve().parents[2]
ENV_PATH = PROJECT_ROOT / "config" / ".env"
load_dotenv(dotenv_path=ENV_PATH)

SINK_BACKENDS = ["memory", "supabase", "none"]

# Narrowest display that still fits "-1e-308"
MIN_DISPLAY_LEN = 8


@dataclass
class Config:
    """
    Application configuration.

    All settings can be overridden from environment variables.
    See config/.env.example for available options.
    """

    # === Display ===
    max_display_len: int = 18

    # === Calculation Sink ===
    sink_backend: str = "memory"            # "memory", "supabase", "none"
    supabase_url: str = ""
    supabase_key: str = ""
    supabase_table: str = "calculations"

    # === Reliability Settings ===
    request_timeout: float = 10.0           # Seconds before a sink request times out
    retry_attempts: int = 3                 # Max attempts per record
    retry_min_wait: float = 0.5             # Min seconds between retries
    retry_max_wait: float = 5.0             # Max seconds between retries
    circuit_breaker_threshold: int = 5      # Failures before circuit opens
    circuit_breaker_timeout: float = 30.0   # Seconds before circuit resets
    record_queue_max_size: int = 100        # Max records waiting for delivery

    # === Sessions ===
    session_idle_timeout: float = 3600.0    # Seconds before an idle session is closed

    # === Logging ===
    log_level: str = "INFO"
    log_json: bool = True
    log_file: Optional[str] = None

    # === Server ===
    host: str = "127.0.0.1"
    port: int = 8765

    @classmethod
    def from_env(cls) -> "Config":
        """
        Load configuration from environment variables.

        Environment variables override defaults.
        """
        def get_bool(key: str, default: bool) -> bool:
            value = os.getenv(key, str(default)).lower()
            return value in ("true", "1", "yes")

        def get_float(key: str, default: float) -> float:
            try:
                return float(os.getenv(key, default))
            except ValueError:
                return default

        def get_int(key: str, default: int) -> int:
            try:
                return int(os.getenv(key, default))
            except ValueError:
                return default

        return cls(
            # Display
            max_display_len=get_int("MAX_DISPLAY_LEN", 18),

            # Sink
            sink_backend=os.getenv("SINK_BACKEND", "memory").lower(),
            supabase_url=os.getenv("SUPABASE_URL", ""),
            supabase_key=os.getenv("SUPABASE_KEY", ""),
            supabase_table=os.getenv("SUPABASE_TABLE", "calculations"),

            # Reliability
            request_timeout=get_float("REQUEST_TIMEOUT", 10.0),
            retry_attempts=get_int("RETRY_ATTEMPTS", 3),
            retry_min_wait=get_float("RETRY_MIN_WAIT", 0.5),
            retry_max_wait=get_float("RETRY_MAX_WAIT", 5.0),
            circuit_breaker_threshold=get_int("CIRCUIT_BREAKER_THRESHOLD", 5),
            circuit_breaker_timeout=get_float("CIRCUIT_BREAKER_TIMEOUT", 30.0),
            record_queue_max_size=get_int("RECORD_QUEUE_MAX_SIZE", 100),

            # Sessions
            session_idle_timeout=get_float("SESSION_IDLE_TIMEOUT", 3600.0),

            # Logging
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_json=get_bool("LOG_JSON", True),
            log_file=os.getenv("LOG_FILE") or None,

            # Server
            host=os.getenv("HOST", "127.0.0.1"),
            port=get_int("PORT", 8765),
        )

    def validate(self) -> List[str]:
        """
        Validate the configuration.

        Returns:
            List of error messages (empty if valid)
        """
        errors = []

        if self.max_display_len < MIN_DISPLAY_LEN:
            errors.append(f"MAX_DISPLAY_LEN must be at least {MIN_DISPLAY_LEN}")

        if self.sink_backend not in SINK_BACKENDS:
            errors.append(f"SINK_BACKEND must be one of: {', '.join(SINK_BACKENDS)}")

        if self.sink_backend == "supabase":
            if not self.supabase_url:
                errors.append("SUPABASE_URL is required when using the supabase sink.")
            if not self.supabase_key:
                errors.append("SUPABASE_KEY is required when using the supabase sink.")

        if self.record_queue_max_size < 1:
            errors.append("RECORD_QUEUE_MAX_SIZE must be at least 1")

        if self.retry_attempts < 1:
            errors.append("RETRY_ATTEMPTS must be at least 1")

        return errors

    def __post_init__(self):
        """Validate after initialization."""
        errors = self.validate()
        if errors:
            raise ValueError(f"Configuration errors: {errors}")


def load_config() -> Config:
    """
    Load configuration from environment.

    Usage:
        from calcpad.config import load_config
        config = load_config()
    """
    return Config.from_env()


if __name__ == "__main__":
    config = load_config()
    print("Current Configuration:")
    print(f"  Display width: {config.max_display_len}")
    print(f"  Sink backend: {config.sink_backend}")
    print(f"  Server: {config.host}:{config.port}")
