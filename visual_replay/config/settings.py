"""Configuration management for visual recording and replay."""

from functools import lru_cache
from pathlib import Path
from typing import Dict, Optional

from dotenv import load_dotenv
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


EXECUTION_METHODS = ("visualFirst", "selectorFirst", "visualOnly")


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Recorder Configuration
    typing_debounce_ms: int = Field(
        default=500, ge=0, description="Quiet window before a typing action is emitted (ms)"
    )
    scroll_debounce_ms: int = Field(
        default=300, ge=0, description="Quiet window before a scroll action is evaluated (ms)"
    )
    scroll_threshold_px: int = Field(
        default=50, ge=0, description="Minimum cumulative scroll delta worth recording"
    )
    url_poll_interval_ms: int = Field(
        default=500, ge=50, description="Polling interval for URL changes (ms)"
    )
    context_padding_px: int = Field(
        default=100, ge=0, description="Padding around an element for context screenshots"
    )
    context_screenshot_quality: int = Field(
        default=70, ge=1, le=100, description="JPEG quality for context screenshots"
    )
    max_text_length: int = Field(
        default=200, ge=1, description="Maximum length of captured element text"
    )
    max_surrounding_text: int = Field(
        default=5, ge=0, description="Maximum number of surrounding text snippets"
    )
    enrichment_timeout_seconds: float = Field(
        default=5.0, ge=0.0, description="Time allowed for pending screenshots at session stop"
    )

    # Optimizer Configuration
    screenshot_quality: int = Field(
        default=80, ge=1, le=100, description="Screenshot recompression quality"
    )
    screenshot_max_width: int = Field(
        default=400, ge=1, description="Maximum stored screenshot width"
    )
    screenshot_max_height: int = Field(
        default=400, ge=1, description="Maximum stored screenshot height"
    )

    # Size Budget Configuration
    size_warning_kb: float = Field(
        default=100.0, gt=0, description="Soft per-action size target (KB)"
    )
    size_limit_kb: float = Field(
        default=500.0, gt=0, description="Hard per-action size limit (KB)"
    )
    workflow_size_advisory_kb: float = Field(
        default=5120.0, gt=0, description="Per-workflow aggregate size advisory (KB)"
    )

    # Matcher Configuration
    matcher_acceptance_threshold: float = Field(
        default=0.7, ge=0.0, le=1.0, description="Minimum composite confidence for a visual match"
    )
    matcher_relaxed_threshold: float = Field(
        default=0.5, ge=0.0, le=1.0, description="Lowest threshold reached when retrying"
    )
    matcher_max_retries: int = Field(
        default=0, ge=0, description="Extra visual attempts with relaxed thresholds"
    )
    matcher_retry_delay_ms: int = Field(
        default=1000, ge=0, description="Delay between matcher retries (ms)"
    )
    matcher_position_tolerance_percent: float = Field(
        default=15.0, gt=0, le=100, description="Relative distance at which position proximity reaches zero"
    )
    matcher_pixel_threshold: float = Field(
        default=0.1, ge=0.0, le=1.0, description="Per-pixel difference tolerated by screenshot comparison"
    )
    matcher_selector_timeout_ms: int = Field(
        default=5000, ge=0, description="Wait applied before giving up on a backup selector"
    )
    matcher_max_candidates: int = Field(
        default=20, ge=1, description="Maximum live elements scored per visual attempt"
    )
    matcher_weights: Dict[str, float] = Field(
        default_factory=lambda: {
            "screenshot": 0.35,
            "text": 0.25,
            "position": 0.2,
            "size": 0.1,
            "surrounding_text": 0.1,
        },
        description="Relative weights of the visual match signals",
    )

    # Action Defaults
    default_execution_method: str = Field(
        default="visualFirst", description="Execution method applied when none is recorded"
    )
    default_platform: str = Field(
        default="all", description="Platform assigned to actions without one"
    )

    # Logging Configuration
    log_level: str = Field(default="INFO", description="Logging level")
    log_format: str = Field(default="json", description="Log format (json or text)")
    log_file: Optional[str] = Field(default=None, description="Log file path")

    # Storage Configuration
    data_dir: Path = Field(default=Path("data"), description="Data storage directory")
    recordings_dir: Path = Field(
        default=Path("data/recordings"), description="Recording export directory"
    )
    screenshots_dir: Path = Field(
        default=Path("data/recordings/screenshots"),
        description="Directory for externalized screenshots",
    )

    @field_validator("log_level")
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level: {v}")
        return v.upper()

    @field_validator("log_format")
    def validate_log_format(cls, v: str) -> str:
        """Validate log format."""
        if v not in ["json", "text"]:
            raise ValueError(f"Invalid log format: {v}")
        return v

    @field_validator("default_execution_method")
    def validate_execution_method(cls, v: str) -> str:
        if v not in EXECUTION_METHODS:
            raise ValueError(
                f"Invalid execution method: {v}. Allowed values: {list(EXECUTION_METHODS)}"
            )
        return v

    @field_validator("matcher_weights")
    def validate_matcher_weights(cls, v: Dict[str, float]) -> Dict[str, float]:
        """Ensure every signal has a non-negative weight and at least one counts."""
        allowed = {"screenshot", "text", "position", "size", "surrounding_text"}
        unknown = set(v) - allowed
        if unknown:
            raise ValueError(f"Unknown matcher signals: {sorted(unknown)}")
        if any(weight < 0 for weight in v.values()):
            raise ValueError("Matcher weights must be non-negative")
        if sum(v.values()) <= 0:
            raise ValueError("At least one matcher weight must be positive")
        return v

    @model_validator(mode="after")
    def check_size_budgets(self) -> "Settings":
        """The soft target must sit below the hard limit."""
        if self.size_warning_kb > self.size_limit_kb:
            raise ValueError("size_warning_kb cannot exceed size_limit_kb")
        if self.matcher_relaxed_threshold > self.matcher_acceptance_threshold:
            raise ValueError(
                "matcher_relaxed_threshold cannot exceed matcher_acceptance_threshold"
            )
        return self

    def create_directories(self) -> None:
        """Create required directories if they don't exist."""
        for dir_path in [self.data_dir, self.recordings_dir, self.screenshots_dir]:
            dir_path.mkdir(parents=True, exist_ok=True)


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    # Load .env file if it exists
    env_file = Path(".env")
    if env_file.exists():
        load_dotenv(env_file)

    settings = Settings()
    settings.create_directories()
    return settings
