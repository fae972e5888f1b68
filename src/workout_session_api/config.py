"""Configuration settings for the workout session API."""
import os
from typing import List, Literal


EnvironmentType = Literal["development", "staging", "production"]


def _split_csv(value: str) -> List[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


class Settings:
    """Application settings."""

    # Environment
    ENVIRONMENT: EnvironmentType = "development"

    # Supabase
    SUPABASE_URL: str | None = None
    SUPABASE_KEY: str | None = None

    # HTTP
    CORS_ORIGINS: List[str] = []

    # Session behaviour
    SESSION_TICK_ENABLED: bool = True
    PROGRAM_PROGRESS_STEP: int = 3
    DEFAULT_REDIRECT: str = "/dashboard"

    def __init__(self):
        # Environment
        env = os.getenv("ENVIRONMENT", "development").lower()
        if env in ("development", "staging", "production"):
            self.ENVIRONMENT = env  # type: ignore
        else:
            self.ENVIRONMENT = "development"

        # Supabase (service role key wins over the anon key)
        self.SUPABASE_URL = os.getenv("SUPABASE_URL")
        self.SUPABASE_KEY = os.getenv("SUPABASE_SERVICE_ROLE_KEY") or os.getenv("SUPABASE_ANON_KEY")

        # HTTP
        self.CORS_ORIGINS = _split_csv(
            os.getenv("CORS_ORIGINS", "http://localhost:3000,http://localhost:3001")
        )

        # Session behaviour
        self.SESSION_TICK_ENABLED = os.getenv("SESSION_TICK_ENABLED", "true").lower() == "true"
        try:
            self.PROGRAM_PROGRESS_STEP = int(os.getenv("PROGRAM_PROGRESS_STEP", "3"))
        except ValueError:
            self.PROGRAM_PROGRESS_STEP = 3
        self.DEFAULT_REDIRECT = os.getenv("DEFAULT_REDIRECT", "/dashboard")


settings = Settings()
