from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from dotenv import load_dotenv
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

load_dotenv()


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_name: str = "RiResume"
    app_env: str = "development"
    app_host: str = "127.0.0.1"
    app_port: int = 8787
    log_level: str = "INFO"
    admin_email: str = ""

    database_url: str = "sqlite:///./data/riresume.db"
    data_dir: Path = Path("./data")
    export_dir: Path = Path("./data/exports")

    openai_api_key: str = ""
    openai_base_url: str = "https://api.openai.com/v1"
    openai_model_analyzer: str = "gpt-4o-mini"
    openai_model_writer: str = "gpt-4o-mini"
    openai_timeout_sec: int = 60

    local_llm_enabled: bool = False
    local_llm_base_url: str = "http://localhost:11434/v1"
    local_llm_api_key: str = "local"
    local_llm_model: str = "qwen2.5:14b-instruct"
    local_llm_timeout_sec: int = 90

    llm_router_default: str = "openai"
    llm_router_analyze_provider: str = "openai"
    llm_router_writer_provider: str = "openai"

    functions_base_url: str = "http://127.0.0.1:5001/riresume/us-central1"
    functions_timeout_sec: int = 30
    functions_auth_token: str = ""

    welcome_bonus_tokens: int = 110
    stale_task_minutes: int = 10
    active_task_limit: int = 10
    payment_currency: str = "usd"
    job_fetch_timeout_sec: int = 30

    cors_origins: str = "http://127.0.0.1:8787"

    @field_validator("app_env")
    @classmethod
    def validate_env(cls, value: str) -> str:
        allowed = {"development", "staging", "production", "test"}
        if value not in allowed:
            raise ValueError(f"app_env must be one of {sorted(allowed)}")
        return value

    @property
    def cors_origin_list(self) -> list[str]:
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
