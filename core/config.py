"""
Configuration management for ReelForge.

Centralizes all configuration including:
- Video provider API keys and endpoints
- Queue retry budget
- Scheduler intervals and batch sizes
- Database and LLM settings
"""

import os
from dataclasses import dataclass, field
from typing import Literal, Optional


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


def _env_float(name: str, default: float) -> float:
    return float(os.getenv(name, str(default)))


@dataclass
class ProviderConfig:
    """API configuration for the asynchronous video providers."""

    kie_api_key: str = field(default_factory=lambda: os.getenv("KIE_API_KEY", ""))
    kie_api_base: str = field(default_factory=lambda: os.getenv("KIE_API_URL", "https://api.kie.ai/api/v1"))

    poyo_api_key: str = field(default_factory=lambda: os.getenv("POYO_API_KEY", ""))
    poyo_api_base: str = field(default_factory=lambda: os.getenv("POYO_API_URL", "https://api.poyo.ai"))

    default_provider: Literal["kie", "poyo"] = field(
        default_factory=lambda: os.getenv("VIDEO_PROVIDER", "kie")
    )
    callback_url: Optional[str] = field(default_factory=lambda: os.getenv("VIDEO_CALLBACK_URL") or None)

    create_timeout: float = 30.0  # seconds
    status_timeout: float = 15.0

    # Backoff for create/status calls (429 / 5xx only)
    max_retries: int = 3
    initial_retry_delay: float = 1.0

    # 120 polls * 10s = 20 minutes
    poll_max_attempts: int = field(default_factory=lambda: _env_int("VIDEO_POLL_MAX_ATTEMPTS", 120))
    poll_interval: float = field(default_factory=lambda: _env_float("VIDEO_POLL_INTERVAL", 10.0))

    def api_key_for(self, provider: str) -> str:
        return self.poyo_api_key if provider == "poyo" else self.kie_api_key

    def base_url_for(self, provider: str) -> str:
        return self.poyo_api_base if provider == "poyo" else self.kie_api_base


@dataclass
class DatabaseConfig:
    """Database configuration."""
    url: str = field(default_factory=lambda: os.getenv("DATABASE_URL", ""))
    pool_min_size: int = 2
    pool_max_size: int = 10


@dataclass
class QueueConfig:
    """Background job queue settings."""
    max_attempts: int = field(default_factory=lambda: _env_int("JOB_MAX_ATTEMPTS", 3))
    retry_delay_seconds: int = field(default_factory=lambda: _env_int("JOB_RETRY_DELAY_SECONDS", 300))
    drain_batch_size: int = field(default_factory=lambda: _env_int("JOB_DRAIN_BATCH_SIZE", 10))


@dataclass
class SchedulerConfig:
    """Trigger intervals (seconds) and scan batch sizes."""
    research_interval: float = field(default_factory=lambda: _env_float("RESEARCH_SCAN_INTERVAL", 600))
    script_interval: float = field(default_factory=lambda: _env_float("SCRIPT_SCAN_INTERVAL", 600))
    auto_approval_interval: float = field(default_factory=lambda: _env_float("AUTO_APPROVAL_INTERVAL", 300))
    video_interval: float = field(default_factory=lambda: _env_float("VIDEO_SCAN_INTERVAL", 300))
    drain_interval: float = field(default_factory=lambda: _env_float("JOB_DRAIN_INTERVAL", 60))

    research_batch_size: int = 3
    script_batch_size: int = 5
    video_batch_size: int = 10

    # "direct" approves inside the tick, "queue" enqueues an auto_approval job
    auto_approval_mode: Literal["direct", "queue"] = field(
        default_factory=lambda: os.getenv("AUTO_APPROVAL_MODE", "direct")
    )


@dataclass
class LLMConfig:
    """LLM settings for topic, research and script generation."""
    google_api_key: str = field(default_factory=lambda: os.getenv("GOOGLE_API_KEY", ""))
    model: str = field(default_factory=lambda: os.getenv("LLM_MODEL", "gemini-2.0-flash"))
    topics_per_run: int = 3


@dataclass
class Config:
    """Main configuration class."""

    providers: ProviderConfig = field(default_factory=ProviderConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    queue: QueueConfig = field(default_factory=QueueConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    llm: LLMConfig = field(default_factory=LLMConfig)

    # Reel rendering defaults
    default_aspect_ratio: str = "9:16"
    default_duration_seconds: int = 10
    # New reels wait this long for manual review before auto-approval
    reel_review_minutes: int = field(default_factory=lambda: _env_int("REEL_REVIEW_MINUTES", 20))

    @classmethod
    def from_env(cls) -> "Config":
        """Load configuration from environment variables."""
        return cls()

    def validate(self) -> list[str]:
        """Validate configuration and return list of issues."""
        issues = []

        provider = self.providers.default_provider
        if provider not in ("kie", "poyo"):
            issues.append(f"Unknown VIDEO_PROVIDER: {provider}")
        elif not self.providers.api_key_for(provider):
            issues.append(f"{provider.upper()}_API_KEY not configured")

        if not self.database.url:
            issues.append("DATABASE_URL not configured")

        if not self.llm.google_api_key:
            issues.append("GOOGLE_API_KEY not configured (needed for research and scripts)")

        if self.queue.max_attempts < 1:
            issues.append("JOB_MAX_ATTEMPTS must be at least 1")

        return issues


# Global config instance
_config: Optional[Config] = None


def get_config() -> Config:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = Config.from_env()
    return _config


def reload_config():
    """Reload configuration from environment."""
    global _config
    _config = Config.from_env()
