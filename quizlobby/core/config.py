from typing import Optional
from pydantic import Field, computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


class PostgresSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
        populate_by_name=True,
    )
    host: str = Field(default="localhost", alias="POSTGRES_HOST")
    port: int = Field(default=5432, alias="POSTGRES_DB_PORT")
    db_name: str = Field(default="quizlobby", alias="POSTGRES_DB_NAME")
    user: str = Field(default="postgres", alias="POSTGRES_DB_USER")
    password: str = Field(default="postgres", alias="POSTGRES_DB_PASSWORD")
    # Full SQLAlchemy URL; wins over the individual fields when set
    database_url: Optional[str] = Field(default=None, alias="DATABASE_URL")

    @computed_field
    def connection_string(self) -> str:
        if self.database_url:
            return self.database_url
        return f"postgresql+asyncpg://{self.user}:{self.password}@{self.host}:{self.port}/{self.db_name}"


class GameSettings(BaseSettings):
    """Timing and sizing knobs for lobbies and the client reconciliation loops."""

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
        populate_by_name=True,
    )
    pin_max_attempts: int = Field(default=10, alias="PIN_MAX_ATTEMPTS")
    min_players: int = Field(default=2, alias="MIN_PLAYERS")
    generation_concurrency: int = Field(default=2, alias="GENERATION_CONCURRENCY")

    poll_interval_sec: float = Field(default=1.0, alias="POLL_INTERVAL_SEC")
    leaderboard_poll_interval_sec: float = Field(
        default=0.5, alias="LEADERBOARD_POLL_INTERVAL_SEC"
    )
    answer_retry_interval_sec: float = Field(
        default=0.1, alias="ANSWER_RETRY_INTERVAL_SEC"
    )
    answer_signal_retries: int = Field(default=3, alias="ANSWER_SIGNAL_RETRIES")
    own_answer_retries: int = Field(default=15, alias="OWN_ANSWER_RETRIES")
    answer_feedback_delay_sec: float = Field(
        default=0.8, alias="ANSWER_FEEDBACK_DELAY_SEC"
    )
    timeout_advance_delay_sec: float = Field(
        default=0.3, alias="TIMEOUT_ADVANCE_DELAY_SEC"
    )


class AppSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )
    name: str = Field(default="quizlobby", alias="APP_NAME")
    version: str = Field(default="v1", alias="API_VERSION")
    port: int = Field(default=9000, alias="APP_PORT")
    mode: str = Field(default="prod", alias="MODE")

    @computed_field
    def is_production(self) -> bool:
        return self.mode != "dev"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )

    app: AppSettings = Field(default_factory=lambda: AppSettings())
    postgres: PostgresSettings = Field(default_factory=lambda: PostgresSettings())
    game: GameSettings = Field(default_factory=lambda: GameSettings())

    gemini_api_key: Optional[str] = Field(default=None, alias="GEMINI_API_KEY")
    openrouter_api_key: Optional[str] = Field(default=None, alias="OPENROUTER_API_KEY")

    # Model provider selection: "google" or "openrouter"
    model_provider: str = Field(default="google", alias="MODEL_PROVIDER")
    openrouter_model: str = Field(
        default="x-ai/grok-code-fast-1", alias="OPENROUTER_MODEL"
    )


settings = Settings()
