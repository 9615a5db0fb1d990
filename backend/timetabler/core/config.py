from functools import lru_cache
import json
from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


BACKEND_DIR = Path(__file__).resolve().parents[2]
BACKEND_ENV_FILE = BACKEND_DIR / ".env"


class Settings(BaseSettings):
    # Resolve to backend/.env so `uvicorn --app-dir backend` works from any cwd.
    model_config = SettingsConfigDict(env_file=str(BACKEND_ENV_FILE), env_file_encoding="utf-8", extra="ignore")

    project_name: str = "Timetabler API"
    api_prefix: str = "/api"
    environment: str = "development"
    log_level: str | None = None

    database_url: str = f"sqlite+pysqlite:///{BACKEND_DIR / 'timetabler.db'}"

    generation_timeout_seconds: float = 30.0
    max_backtracks_per_batch: int = 200
    lab_double_slot: bool = True
    lab_split_fallback: bool = True

    cors_origins: list[str] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
        "http://localhost:5173",
        "http://127.0.0.1:5173",
    ]

    @field_validator("cors_origins", mode="before")
    @classmethod
    def split_cors_origins(cls, value: str | list[str]) -> list[str]:
        if isinstance(value, str):
            stripped = value.strip()
            if stripped.startswith("["):
                try:
                    parsed = json.loads(stripped)
                    if isinstance(parsed, list):
                        return [str(item).strip() for item in parsed if str(item).strip()]
                except json.JSONDecodeError:
                    pass
            return [item.strip() for item in value.split(",") if item.strip()]
        return value

    @field_validator("max_backtracks_per_batch")
    @classmethod
    def validate_backtrack_budget(cls, value: int) -> int:
        if value < 0:
            raise ValueError("max_backtracks_per_batch cannot be negative")
        return value

    @property
    def is_production(self) -> bool:
        return self.environment.lower().strip() == "production"


@lru_cache
def get_settings() -> Settings:
    return Settings()
