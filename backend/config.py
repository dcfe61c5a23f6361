"""
Configuration management for the application.
Loads settings from environment variables using Pydantic Settings.
"""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # Database Configuration
    DATABASE_URL: str = "sqlite:///./nexile.sqlite"
    DATABASE_AUTOCOMMIT: bool = False  # Engine runs without multi-statement transactions
    DATABASE_ECHO: bool = False

    @property
    def database_url_async(self) -> str:
        """
        Transform DATABASE_URL to use the appropriate async driver.
        - PostgreSQL: postgresql+asyncpg://...
        - SQLite: sqlite+aiosqlite:///...
        """
        if self.DATABASE_URL.startswith("postgresql://"):
            return self.DATABASE_URL.replace("postgresql://", "postgresql+asyncpg://", 1)
        elif self.DATABASE_URL.startswith("postgres://"):
            return self.DATABASE_URL.replace("postgres://", "postgresql+asyncpg://", 1)
        elif self.DATABASE_URL.startswith("sqlite://"):
            return self.DATABASE_URL.replace("sqlite://", "sqlite+aiosqlite://", 1)
        return self.DATABASE_URL

    # Sales write path
    SALES_ATOMIC_WRITES: bool = True  # Use one atomic session for record + stock decrements when supported

    # Security
    SECRET_KEY: str = "local_dev_secret_key_123"
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 1440  # 1 day
    MANAGER_ACCESS_CODE: str = "123456"

    # Application
    APP_NAME: str = "Nexile"
    DEBUG: bool = False
    CORS_ORIGINS: str = "http://localhost:5173,http://localhost:3000"
    APP_TIMEZONE: str = "UTC"
    SEED_DEMO_DATA: bool = False
    TRIAL_PERIOD_DAYS: int = 7

    # LiteLLM AI Configuration
    AI_API_KEY: str = ""
    AI_MODEL: str = "gemini/gemini-2.5-flash"  # LiteLLM format: provider/model
    AI_MAX_TOKENS: int = 200
    AI_INSIGHTS_ENABLED: bool = True

    class Config:
        env_file = ".env"
        case_sensitive = True


# Singleton instance - import this in other modules
settings = Settings()
