"""
Configuration management with environment variable support and validation.

Design principles:
- Environment-specific configs (dev, staging, prod)
- Validation at startup (fail fast)
- Type safety with Pydantic
- Clinical thresholds live here, not in the rule code
"""

import os
from functools import lru_cache
from typing import Literal, cast

from dotenv import load_dotenv
from pydantic import BaseModel, Field, model_validator

# Load environment variables from .env file
load_dotenv()

RepeatTracking = Literal["per_alert", "persistent"]


class RuleConfig(BaseModel):
    """Thresholds for the clinical rule strategies."""

    # Blood pressure thresholds (mmHg), all comparisons strict
    systolic_high: float = Field(default=180.0, description="Systolic critical high bound")
    systolic_low: float = Field(default=90.0, description="Systolic critical low bound")
    diastolic_high: float = Field(default=110.0, description="Diastolic critical high bound")
    diastolic_low: float = Field(default=60.0, description="Diastolic critical low bound")
    trend_delta: float = Field(
        default=10.0, gt=0.0, description="Minimum step between consecutive readings for a trend"
    )

    # Oxygen saturation (%)
    saturation_low: float = Field(default=92.0, description="Low saturation bound")
    rapid_drop_points: float = Field(
        default=5.0, gt=0.0, description="Drop in percentage points that counts as rapid"
    )
    rapid_drop_window_ms: int = Field(
        default=600_000, gt=0, description="Window for the rapid drop rule (10 minutes)"
    )

    # Heart rate (bpm)
    heart_rate_low: float = Field(default=50.0, description="Low heart rate bound")
    heart_rate_high: float = Field(default=100.0, description="High heart rate bound")

    # ECG sliding window
    ecg_window_size: int = Field(default=5, ge=2, description="Samples in the moving average")
    ecg_peak_factor: float = Field(
        default=2.0, gt=1.0, description="Peak threshold as a multiple of the window mean"
    )
    ecg_fallback_alert: bool = Field(
        default=False,
        description="Alert on the largest ECG value when fewer than window-size samples exist",
    )

    # Hypotensive hypoxemia correlation
    correlation_window_ms: int = Field(
        default=60_000, gt=0, description="Max offset between BP and saturation readings"
    )
    correlation_systolic_low: float = Field(default=90.0)
    correlation_saturation_low: float = Field(default=92.0)

    @model_validator(mode="after")
    def bounds_are_ordered(self) -> "RuleConfig":
        if self.systolic_low >= self.systolic_high:
            raise ValueError("systolic_low must be below systolic_high")
        if self.diastolic_low >= self.diastolic_high:
            raise ValueError("diastolic_low must be below diastolic_high")
        if self.heart_rate_low >= self.heart_rate_high:
            raise ValueError("heart_rate_low must be below heart_rate_high")
        return self


class AnnotationConfig(BaseModel):
    """Settings for the repeat and priority annotators."""

    priority_level: int = Field(default=2, ge=0, description="Priority stamped on every alert")
    max_repeats: int = Field(default=3, gt=0, description="Cap on the repeat counter")
    repeat_tracking: RepeatTracking = Field(
        default="per_alert",
        description="per_alert: fresh count per alert; persistent: count across cycles",
    )


class MonitoringConfig(BaseModel):
    """Continuous evaluation loop settings."""

    evaluation_interval_seconds: float = Field(
        default=1.0, gt=0.0, description="Interval between evaluation rounds"
    )
    max_concurrent_evaluations: int = Field(
        default=4, gt=0, description="Maximum number of patients evaluated at once"
    )


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Logging level"
    )
    format: Literal["json", "console"] = Field(default="json", description="Logging format")


class AppConfig(BaseModel):
    """Main application configuration combining all subsystems."""

    environment: Literal["development", "staging", "production"] = Field(
        default="development", description="Environment"
    )
    debug: bool = Field(default=False, description="Enable debug mode")

    rules: RuleConfig = Field(default_factory=RuleConfig)
    annotation: AnnotationConfig = Field(default_factory=AnnotationConfig)
    monitoring: MonitoringConfig = Field(default_factory=MonitoringConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @model_validator(mode="after")
    def debug_only_in_dev(self) -> "AppConfig":
        """Ensure debug mode is only allowed in development environment."""
        if self.debug and self.environment != "development":
            raise ValueError("debug mode is only allowed in development environment")
        return self


def load_config_from_env() -> AppConfig:
    """Load configuration from environment variables with validation."""

    def _env_to_literal(val: str) -> Literal["development", "staging", "production"]:
        v = val.strip().lower()
        if v in {"dev", "development"}:
            return "development"
        if v in {"stage", "staging"}:
            return "staging"
        return "production"

    def _level_to_literal(val: str) -> Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]:
        v = val.strip().upper()
        return cast(
            Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
            v if v in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"} else "INFO",
        )

    def _tracking_to_literal(val: str) -> RepeatTracking:
        v = val.strip().lower().replace("-", "_")
        return "persistent" if v == "persistent" else "per_alert"

    def _parse_bool(val: str | None, default: bool) -> bool:
        if val is None:
            return default
        return val.strip().lower() in {"1", "true", "yes", "on"}

    environment = _env_to_literal(os.getenv("ENVIRONMENT", "development"))
    debug = environment == "development"

    rule_config = RuleConfig(
        ecg_fallback_alert=_parse_bool(os.getenv("ECG_FALLBACK_ALERT"), False),
    )

    annotation_config = AnnotationConfig(
        priority_level=int(os.getenv("ALERT_PRIORITY_LEVEL", "2")),
        repeat_tracking=_tracking_to_literal(os.getenv("REPEAT_TRACKING", "per_alert")),
    )

    monitoring_config = MonitoringConfig(
        evaluation_interval_seconds=float(os.getenv("EVALUATION_INTERVAL_SECONDS", "1.0")),
        max_concurrent_evaluations=int(os.getenv("MAX_CONCURRENT_EVALUATIONS", "4")),
    )

    logging_config = LoggingConfig(
        level=_level_to_literal(os.getenv("LOG_LEVEL", "INFO")),
        format="console" if debug else "json",
    )

    return AppConfig(
        environment=environment,
        debug=debug,
        rules=rule_config,
        annotation=annotation_config,
        monitoring=monitoring_config,
        logging=logging_config,
    )


@lru_cache
def get_config() -> AppConfig:
    """Get cached application configuration."""
    return load_config_from_env()
