import os
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


class AISettings(BaseModel):
    """Provider and limits for the AI capability"""
    base_url: Optional[str] = Field(None, description="OpenAI-compatible endpoint")
    api_key: Optional[str] = Field(None, description="Provider API key")
    model: str = Field("gpt-4o-mini", description="Model name")
    temperature: float = Field(0.3, ge=0.0, le=2.0)
    timeout_seconds: float = Field(30.0, gt=0, description="Per-call timeout")
    max_retries: int = Field(1, ge=0, description="Retries after the first failed call")
    max_chat_turns: int = Field(10, ge=1, description="User turns allowed in one AI sub-conversation")
    history_window: int = Field(10, ge=0, description="Sub-conversation entries sent as chat context")

    @classmethod
    def from_env(cls) -> "AISettings":
        return cls(
            base_url=os.getenv("MODEL_BASE_URL") or None,
            api_key=os.getenv("MODEL_API_KEY") or None,
            model=os.getenv("MODEL_NAME", "gpt-4o-mini"),
            temperature=float(os.getenv("MODEL_TEMPERATURE", "0.3")),
            timeout_seconds=float(os.getenv("MODEL_TIMEOUT_SECONDS", "30")),
            max_retries=int(os.getenv("MODEL_MAX_RETRIES", "1")),
            max_chat_turns=int(os.getenv("AI_MAX_CHAT_TURNS", "10")),
            history_window=int(os.getenv("AI_HISTORY_WINDOW", "10")),
        )


class AppSettings(BaseModel):
    """Service configuration, read from the environment (and .env)"""
    database_url: str = Field("sqlite:///./intelliform.db")
    log_level: str = Field("INFO")
    log_dir: str = Field("logs")
    log_to_file: bool = Field(True)
    cors_origins: List[str] = Field(default_factory=lambda: ["*"])
    auto_extract_problems: bool = Field(True, description="Run problem extraction after each submission")
    app_host: str = Field("0.0.0.0")
    app_port: int = Field(8080)
    app_reload: bool = Field(False)
    ai: AISettings = Field(default_factory=AISettings)

    @classmethod
    def from_env(cls) -> "AppSettings":
        load_dotenv()
        origins = os.getenv("CORS_ORIGINS", "*")
        return cls(
            database_url=os.getenv("DATABASE_URL", "sqlite:///./intelliform.db"),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_dir=os.getenv("LOG_DIR", "logs"),
            log_to_file=_env_bool("LOG_TO_FILE", "true"),
            cors_origins=[o.strip() for o in origins.split(",") if o.strip()],
            auto_extract_problems=_env_bool("AUTO_EXTRACT_PROBLEMS", "true"),
            app_host=os.getenv("APP_HOST", "0.0.0.0"),
            app_port=int(os.getenv("PORT", os.getenv("APP_PORT", "8080"))),
            app_reload=_env_bool("APP_RELOAD", "false"),
            ai=AISettings.from_env(),
        )
