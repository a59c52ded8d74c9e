from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


class Settings(BaseSettings):
    # Database
    DB_USER: str = Field("interpreter_admin")
    DB_PASSWORD: str = Field("InterpreterPass2024")
    DB_NAME: str = Field("medical_interpreter")
    DB_HOST: str = Field("postgres")
    DB_PORT: int = Field(5432)
    # Full SQLAlchemy URL, overrides the DB_* pieces when set
    DATABASE_URL: str | None = Field(None)

    # Redis
    REDIS_HOST: str = Field("redis")
    REDIS_PORT: int = Field(6379)
    REDIS_PASSWORD: str | None = Field(None)
    REDIS_DB: int = Field(0)

    # Upstream realtime provider
    OPENAI_API_KEY: str = Field("")
    OPENAI_REALTIME_URL: str = Field("wss://api.openai.com/v1/realtime")
    OPENAI_REALTIME_MODEL: str = Field("gpt-4o-realtime-preview-2024-12-17")
    OPENAI_TRANSCRIPTION_MODEL: str = Field("gpt-4o-transcribe")
    OPENAI_VOICE: str = Field("echo")

    # Text models (language detection, intents, summaries)
    OPENAI_BASE_URL: str = Field("https://api.openai.com/v1")
    OPENAI_CHAT_MODEL: str = Field("gpt-4o-mini")
    LLM_TIMEOUT_SEC: float = Field(15.0)

    # Webhook
    WEBHOOK_URL: str = Field("")
    WEBHOOK_TIMEOUT_SEC: float = Field(10.0)

    # Session lifecycle
    INACTIVITY_TIMEOUT_MINUTES: float = Field(15.0)
    HEARTBEAT_INTERVAL_SEC: float = Field(30.0)
    UPSTREAM_HANDSHAKE_TIMEOUT_SEC: float = Field(10.0)

    # App
    API_HOST: str = Field("0.0.0.0")
    API_PORT: int = Field(3001)
    DEBUG: bool = Field(False)
    # Prometheus exporter port, 0 disables it
    METRICS_PORT: int = Field(0)
    CLIENT_URL: str | None = Field(None)

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
        env_file_encoding="utf-8"
    )


settings = Settings()
