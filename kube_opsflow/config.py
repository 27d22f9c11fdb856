from functools import lru_cache
from typing import Literal, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Oracle (LLM) Configuration
    OPENAI_API_KEY: Optional[str] = None
    OPENAI_MODEL: str = "gpt-4o"
    LLM_TEMPERATURE: float = 0.0

    # Oracle call discipline
    ORACLE_MAX_RETRIES: int = 3
    ORACLE_TIMEOUT_SECONDS: float = 120.0
    ORACLE_BACKOFF_SECONDS: float = 1.0

    # Action execution
    KUBECTL_BINARY: str = "kubectl"
    EXECUTOR_TIMEOUT_SECONDS: float = 30.0
    # A claim on a running action older than this may be taken over
    ACTION_LEASE_SECONDS: float = 300.0

    # Agentic loop bounds
    MAX_ITERATIONS: int = 20
    VALIDATION_MAX_ITERATIONS: int = 5
    MAX_CYCLES: int = 2
    FORCED_CONFIDENCE: float = 0.3

    # Execution gate defaults (overridable per request)
    DEFAULT_CONFIDENCE_THRESHOLD: float = 0.8
    DEFAULT_MAX_RISK_LEVEL: Literal["low", "medium", "high"] = "low"

    # Session storage
    SESSION_BACKEND: Literal["sql", "memory"] = "sql"
    DATABASE_URL: str = "sqlite:///./sessions.db"
    SESSION_TTL_SECONDS: int = 86400

    # Upper bound on a single tool call, Oracle and kubectl time included
    REQUEST_TIMEOUT_SECONDS: Optional[float] = 600.0

    # Optional link to a separately rendered view of a session
    WEB_UI_BASE_URL: Optional[str] = None

    # Loads from a .env file in the root directory
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


@lru_cache()
def get_settings() -> Settings:
    return Settings()
