from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field

from telecare.config.constants import DEFAULT_POLL_INTERVAL_MS


class Settings(BaseSettings):
    # Database
    DB_USER: str = Field("telecare_admin")
    DB_PASSWORD: str = Field("TelecarePass2024")
    DB_NAME: str = Field("telecare")
    DB_HOST: str = Field("postgres")
    DB_PORT: int = Field(5432)

    # Redis
    REDIS_HOST: str = Field("redis")
    REDIS_PORT: int = Field(6379)
    REDIS_PASSWORD: str | None = Field(None)

    # AWS / Chime SDK
    AWS_REGION: str = Field("us-east-1")
    MEDIA_REGION: str = Field("us-east-1")
    CHIME_APP_INSTANCE_ARN: str | None = Field(None)

    # Messaging
    MESSAGE_POLL_INTERVAL_MS: int = Field(DEFAULT_POLL_INTERVAL_MS)
    MESSAGE_SYNC_FROM_CHANNEL: bool = Field(True)

    # App
    API_HOST: str = Field("0.0.0.0")
    API_PORT: int = Field(8000)
    DEBUG: bool = Field(True)
    JWT_SECRET_KEY: str = Field("supersecret")
    JWT_ALGORITHM: str = Field("HS256")
    METRICS_PORT: int | None = Field(None)

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
        env_file_encoding="utf-8"
    )


settings = Settings()
