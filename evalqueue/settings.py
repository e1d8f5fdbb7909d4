from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from evalqueue.domain.errors import ConfigurationError
from evalqueue.domain.states import QueuePriority

DEFAULT_PRIORITY_WEIGHTS = {
    QueuePriority.LOW: 1,
    QueuePriority.NORMAL: 2,
    QueuePriority.HIGH: 3,
    QueuePriority.URGENT: 4,
}

class QueueConfig(BaseModel):
    """
    Process-wide queue configuration. Built once per queue and never
    mutated afterwards. All durations are in seconds.
    """
    model_config = ConfigDict(frozen=True)

    max_concurrent_jobs: int = Field(default=3, ge=1)
    max_retries: int = Field(default=3, ge=0)
    retry_delay: float = Field(default=30, ge=0)
    retry_backoff: bool = False
    max_retry_delay: float = Field(default=3600, ge=0)
    priority_weights: dict[QueuePriority, float] = Field(default_factory=lambda: dict(DEFAULT_PRIORITY_WEIGHTS))
    timeout: float = Field(default=300, gt=0)
    cleanup_interval: float = Field(default=3600, gt=0)
    retention_window: float = Field(default=24 * 60 * 60, ge=0)

    # Estimated wait time heuristic
    base_wait_time: float = Field(default=30, ge=0)
    wait_time_per_item: float = Field(default=15, ge=0)

    @field_validator("priority_weights", mode="before")
    @classmethod
    def merge_priority_weights(cls, value):
        # Partial tables override the defaults tier by tier
        merged = dict(DEFAULT_PRIORITY_WEIGHTS)
        merged.update({QueuePriority(k): v for k, v in (value or {}).items()})
        return merged

    @field_validator("priority_weights")
    @classmethod
    def check_priority_weights(cls, value):
        for priority, weight in value.items():
            if weight <= 0:
                raise ValueError(f"priority weight for {priority} must be positive")
        return value

    def weight(self, priority: QueuePriority) -> float:
        return self.priority_weights[QueuePriority(priority)]

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    PROJECT_NAME: str = "Project Evaluation Queue"
    LOG_LEVEL: str = "INFO"

    EVALUATOR_URL: str = "http://localhost:8100"
    EVALUATOR_API_KEY: Optional[str] = None
    EVALUATOR_REQUEST_TIMEOUT: float = 60.0

    QUEUE_MAX_CONCURRENT_JOBS: int = 3
    QUEUE_MAX_RETRIES: int = 3
    QUEUE_RETRY_DELAY: float = 30
    QUEUE_RETRY_BACKOFF: bool = False
    QUEUE_MAX_RETRY_DELAY: float = 3600
    QUEUE_PRIORITY_WEIGHTS: dict[str, float] = {}
    QUEUE_TIMEOUT: float = 300
    QUEUE_CLEANUP_INTERVAL: float = 3600
    QUEUE_RETENTION_WINDOW: float = 24 * 60 * 60

    def queue_config(self) -> QueueConfig:
        try:
            return QueueConfig(
                max_concurrent_jobs=self.QUEUE_MAX_CONCURRENT_JOBS,
                max_retries=self.QUEUE_MAX_RETRIES,
                retry_delay=self.QUEUE_RETRY_DELAY,
                retry_backoff=self.QUEUE_RETRY_BACKOFF,
                max_retry_delay=self.QUEUE_MAX_RETRY_DELAY,
                priority_weights=self.QUEUE_PRIORITY_WEIGHTS,
                timeout=self.QUEUE_TIMEOUT,
                cleanup_interval=self.QUEUE_CLEANUP_INTERVAL,
                retention_window=self.QUEUE_RETENTION_WINDOW,
            )
        except (ValidationError, ValueError) as e:
            raise ConfigurationError(f"Invalid queue configuration: {e}") from e

settings = Settings()
