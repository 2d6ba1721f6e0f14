from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from consumer_service.app.constants import DEFAULT_HEADER_KEY, ConsumerMode


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore", frozen=True, populate_by_name=True)

    host: str = Field(..., validation_alias="RABBITMQ_HOST")
    port: int = Field(5672, validation_alias="RABBITMQ_PORT")
    username: str = Field(..., validation_alias="RABBITMQ_USERNAME")
    password: str = Field(..., validation_alias="RABBITMQ_PASSWORD")
    virtual_host: str = Field("/", validation_alias="RABBITMQ_VHOST")
    consumer_tag: str = Field("my_consumer", validation_alias="RABBITMQ_CONSUMER_TAG")

    queue_name: str = Field(..., validation_alias="RABBITMQ_QUEUE_NAME")
    queue_durable: bool = Field(False, validation_alias="RABBITMQ_QUEUE_DURABLE")

    consumer_mode: ConsumerMode = Field(ConsumerMode.SINGLE, validation_alias="CONSUMER_MODE")
    # Batch mode: max messages per batch (also the channel QoS prefetch) and the
    # per-pull inactivity window in milliseconds.
    prefetch_count: int = Field(10, ge=1, validation_alias="RABBITMQ_PREFETCH_COUNT")
    prefetch_window_ms: int = Field(1000, gt=0, validation_alias="RABBITMQ_PREFETCH_WINDOW")
    empty_batch_backoff_ms: int = Field(0, ge=0, validation_alias="EMPTY_BATCH_BACKOFF_MS")

    header_key: str = Field(DEFAULT_HEADER_KEY, validation_alias="HEADER_KEY")
    consumer_backend: str = Field("rabbitmq", validation_alias="CONSUMER_BACKEND")

    initial_backoff_seconds: float = Field(1.0, validation_alias="INITIAL_BACKOFF_SECONDS")
    max_backoff_seconds: float = Field(30.0, validation_alias="MAX_BACKOFF_SECONDS")
    backoff_multiplier: float = Field(2.0, validation_alias="BACKOFF_MULTIPLIER")
    max_connection_attempts: int = Field(5, ge=1, validation_alias="MAX_CONNECTION_ATTEMPTS")

    log_level: str = Field("INFO", validation_alias="LOG_LEVEL")
    log_json: bool = Field(False, validation_alias="LOG_JSON")

    @field_validator("consumer_mode", mode="before")
    @classmethod
    def _normalize_mode(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().lower()
        return value

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalize_level(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().upper()
        return value

    @property
    def prefetch_window_seconds(self) -> float:
        return self.prefetch_window_ms / 1000.0
