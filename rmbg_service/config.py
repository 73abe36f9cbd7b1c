"""
Configuration loader for the RMBG background-removal service.

Environment variables are centralized here to keep the rest of the code
focused on business logic and to make operational tuning clear.
"""

from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    # Model
    rmbg_model_path: Path = Path("models/model.onnx")
    rmbg_input_size: int = Field(1024, gt=0)
    # None lets the backend decide whether inference calls must be serialized.
    rmbg_serialize_inference: Optional[bool] = None
    rmbg_preload: bool = False

    # API
    host: str = "127.0.0.1"
    port: int = Field(3030, gt=0, lt=65536)
    cors_allow_origins: List[str] = ["*"]
    log_level: str = "INFO"

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in LOG_LEVELS:
            raise ValueError(f"LOG_LEVEL must be one of {'|'.join(sorted(LOG_LEVELS))}")
        return level


@lru_cache()
def get_settings() -> Settings:
    """Return cached settings to avoid reparsing env on every call."""
    return Settings()
