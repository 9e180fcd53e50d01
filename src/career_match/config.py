"""Configuration management for Career Match."""

from typing import Dict, Optional, Tuple
from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Scoring Configuration
    surfacing_threshold: float = Field(80.0, ge=0, le=100, description="Minimum score for a match to be surfaced")
    similarity_floor: float = Field(0.3, ge=0, le=1, description="Embedding similarity pre-filter floor")
    scoring_batch_size: int = Field(50, gt=0, description="Maximum postings scored per run")
    queue_size: int = Field(20, gt=0, description="Maximum matches visible in the review queue")
    default_weights: Dict[str, float] = Field(
        default_factory=lambda: {
            "embedding_similarity": 0.35,
            "skill_overlap": 0.30,
            "sector_match": 0.10,
            "city_match": 0.10,
            "salary_fit": 0.10,
            "remote_match": 0.05,
        },
        description="Global default feature weights"
    )

    # Learning Configuration
    feedback_activation_threshold: int = Field(10, ge=1, description="Feedback count that activates recalibration")
    learning_rate: float = Field(0.2, gt=0, le=1, description="Bounded learning rate for weight updates")

    # Throttle Configuration
    throttle_email_window_seconds: int = Field(3600, gt=0, description="Email throttle window in seconds")
    throttle_email_limit: int = Field(20, gt=0, description="Email sends allowed per window")
    throttle_linkedin_window_seconds: int = Field(86400, gt=0, description="LinkedIn throttle window in seconds")
    throttle_linkedin_limit: int = Field(50, gt=0, description="LinkedIn sends allowed per window")

    # Dispatch Configuration
    default_channel: str = Field("Email", description="Channel used when none is given")
    max_send_attempts: int = Field(3, ge=1, description="Delivery attempts before an application fails")
    backoff_base_seconds: float = Field(30.0, gt=0, description="First retry delay")
    backoff_factor: float = Field(2.0, ge=1, description="Retry delay multiplier")
    backoff_max_seconds: float = Field(3600.0, gt=0, description="Retry delay cap")
    scheduler_interval_seconds: float = Field(30.0, gt=0, description="Background scheduler tick interval")
    auto_create_application: bool = Field(True, description="Create an application when a match is approved")
    email_relay_url: Optional[str] = Field(None, description="Email delivery relay endpoint")
    linkedin_relay_url: Optional[str] = Field(None, description="LinkedIn delivery relay endpoint")
    relay_timeout: float = Field(30.0, gt=0, description="Relay request timeout in seconds")

    # Application Configuration
    debug: bool = Field(False, description="Enable debug mode")
    log_level: str = Field("INFO", description="Logging level")

    # Server Configuration
    host: str = Field("0.0.0.0", description="Server host")
    port: int = Field(8000, description="Server port")
    reload: bool = Field(False, description="Enable auto-reload")
    allowed_origins: list[str] = Field(["*"], description="CORS allowed origins")
    allowed_hosts: Optional[list[str]] = Field(None, description="Trusted hosts")
    run_scheduler: bool = Field(True, description="Run the background scheduler with the API")

    @model_validator(mode="after")
    def _check_default_weights(self) -> "Settings":
        total = sum(self.default_weights.values())
        if any(not 0.0 <= w <= 1.0 for w in self.default_weights.values()) or abs(total - 1.0) > 1e-6:
            raise ValueError("default_weights must lie in [0, 1] and sum to 1")
        return self

    def throttle_limits(self) -> Dict[str, Tuple[int, int]]:
        """Return (window_seconds, limit) keyed by channel name."""
        return {
            "Email": (self.throttle_email_window_seconds, self.throttle_email_limit),
            "LinkedIn": (self.throttle_linkedin_window_seconds, self.throttle_linkedin_limit),
        }


# Global settings instance
settings = Settings()
