from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator

from ytdigest import constants


class RedisConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    url: str = "redis://localhost:6379"
    block_ms: int = Field(default=constants.REDIS_BLOCK_MS, ge=1)
    # Approximate MAXLEN for XADD; None never trims (unacknowledged entries stay readable)
    maxlen: Optional[int] = Field(default=None, ge=1)
    # Idle time after which another consumer's pending entry is claimed; None disables the sweep
    claim_min_idle_ms: Optional[int] = Field(default=None, ge=1)
    claim_interval_s: float = Field(default=constants.REDIS_CLAIM_INTERVAL_S, gt=0)


class DatabaseConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    path: str = "~/.ytdigest/ytdigest.db"
    busy_timeout_ms: int = Field(default=5000, ge=0)


class StreamsConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    work_stream: str = constants.WORK_STREAM
    result_stream: str = constants.RESULT_STREAM
    failure_stream: str = constants.FAILURE_STREAM
    group: str = constants.SERVICE_NAME
    consumer_name: Optional[str] = None  # defaults to "<group>-<hostname>"


class MessagesConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    queued: str = constants.QUEUED_MESSAGE
    invalid: str = constants.INVALID_MESSAGE
    error: str = constants.ERROR_MESSAGE
    failed: str = constants.FAILED_MESSAGE


class TelegramConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    bot_token: Optional[str] = None
    allowed_chat_ids: List[int] = []


class SupervisorConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    initial_backoff_s: float = Field(default=1.0, gt=0)
    max_backoff_s: float = Field(default=60.0, gt=0)

    @field_validator("max_backoff_s")
    @classmethod
    def validate_max_backoff(cls, v: float, info: ValidationInfo) -> float:
        initial = info.data.get("initial_backoff_s", 0.0)
        if v < initial:
            raise ValueError(f"max_backoff_s ({v}) must be >= initial_backoff_s ({initial})")
        return v


class Settings(BaseModel):
    model_config = ConfigDict(extra="allow")
    redis: RedisConfig = RedisConfig()
    database: DatabaseConfig = DatabaseConfig()
    streams: StreamsConfig = StreamsConfig()
    messages: MessagesConfig = MessagesConfig()
    telegram: TelegramConfig = TelegramConfig()
    supervisor: SupervisorConfig = SupervisorConfig()
