from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Database
    DATABASE_URL: str = Field("sqlite+aiosqlite:///./hpstudy.db", description="Async SQLAlchemy URL (sqlite+aiosqlite://...)")
    DATABASE_ECHO: bool = False

    # Exam Settings
    QUESTIONS_PER_PASS: int = 40
    EXAM_DURATION_SECONDS: int = 3300  # 55 minutes
    TICK_SECONDS: float = 1.0
    CHECKPOINT_INTERVAL_TICKS: int = 30

    # Environment
    ENV: str = "production"  # development, staging, production
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = Field(True, description="Render logs as JSON lines instead of console output")

settings = Settings()
