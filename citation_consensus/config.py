"""Settings loaded from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv


def _load_env() -> None:
    """Load .env from project root if it exists."""
    env_path = Path(__file__).resolve().parent.parent / ".env"
    if env_path.exists():
        load_dotenv(env_path)


_load_env()


@dataclass(frozen=True)
class Settings:
    # API Keys
    anthropic_api_key: str = field(default_factory=lambda: os.environ.get("ANTHROPIC_API_KEY", ""))

    # Models
    tier2_model: str = field(
        default_factory=lambda: os.environ.get("TIER2_MODEL", "claude-haiku-4-5-20251001")
    )
    tier3_model: str = field(
        default_factory=lambda: os.environ.get("TIER3_MODEL", "claude-sonnet-4-5-20250929")
    )

    # Agent Invoker
    agent_timeout: float = field(
        default_factory=lambda: float(os.environ.get("AGENT_TIMEOUT", "60"))
    )
    agent_max_retries: int = field(
        default_factory=lambda: int(os.environ.get("AGENT_MAX_RETRIES", "3"))
    )
    retry_min_delay: float = field(
        default_factory=lambda: float(os.environ.get("RETRY_MIN_DELAY", "1.0"))
    )
    retry_max_delay: float = field(
        default_factory=lambda: float(os.environ.get("RETRY_MAX_DELAY", "10.0"))
    )
    max_concurrent_requests: int = field(
        default_factory=lambda: int(os.environ.get("MAX_CONCURRENT_REQUESTS", "10"))
    )

    # Job Orchestrator
    worker_batch_size: int = field(
        default_factory=lambda: int(os.environ.get("WORKER_BATCH_SIZE", "5"))
    )
    max_item_retries: int = field(
        default_factory=lambda: int(os.environ.get("MAX_ITEM_RETRIES", "3"))
    )

    # Persistence
    store_path: str = field(
        default_factory=lambda: os.environ.get("STORE_PATH", "data/pipeline.json")
    )
    run_log_dir: str = field(default_factory=lambda: os.environ.get("RUN_LOG_DIR", "runs/"))

    # Logging
    log_level: str = field(default_factory=lambda: os.environ.get("LOG_LEVEL", "INFO").upper())

    def validate(self) -> list[str]:
        """Return list of validation errors. Empty list means valid."""
        errors = []
        if not self.anthropic_api_key:
            errors.append("ANTHROPIC_API_KEY is required")
        if self.worker_batch_size < 1:
            errors.append(f"WORKER_BATCH_SIZE must be >= 1, got {self.worker_batch_size}")
        if self.agent_max_retries < 0:
            errors.append(f"AGENT_MAX_RETRIES must be >= 0, got {self.agent_max_retries}")
        if self.max_item_retries < 0:
            errors.append(f"MAX_ITEM_RETRIES must be >= 0, got {self.max_item_retries}")
        if self.agent_timeout <= 0:
            errors.append(f"AGENT_TIMEOUT must be > 0, got {self.agent_timeout}")
        if self.retry_min_delay > self.retry_max_delay:
            errors.append(
                f"RETRY_MIN_DELAY ({self.retry_min_delay}) must not exceed "
                f"RETRY_MAX_DELAY ({self.retry_max_delay})"
            )
        if self.log_level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            errors.append(f"LOG_LEVEL must be a standard logging level, got '{self.log_level}'")
        return errors

    def warnings(self) -> list[str]:
        """Return list of non-fatal configuration warnings."""
        warns: list[str] = []
        if self.agent_timeout < 10:
            warns.append(
                f"AGENT_TIMEOUT={self.agent_timeout}s is aggressive. "
                "Tier 3 investigations routinely take longer than 10s."
            )
        if self.max_concurrent_requests < 5:
            warns.append(
                f"MAX_CONCURRENT_REQUESTS={self.max_concurrent_requests} is below the "
                "Tier 2 panel size; panel calls will be serialized."
            )
        return warns


def get_settings() -> Settings:
    """Create Settings from current environment."""
    return Settings()
