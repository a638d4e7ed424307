from __future__ import annotations

"""Runtime settings for the interpreter and the service."""

import os
from typing import Literal, Mapping

from pydantic import BaseModel, Field

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


class Settings(BaseModel):
    """Tunable limits and logging configuration."""

    max_iterations: int = Field(default=200, ge=1)
    service_timeout: float = Field(default=30.0, gt=0)
    log_level: LogLevel = "INFO"
    log_format: str = "%(asctime)s %(levelname)s %(name)s: %(message)s"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "Settings":
        """Build settings from ``RULESFLOW_*`` environment variables."""

        env = os.environ if environ is None else environ
        values: dict[str, str] = {}
        for name in cls.model_fields:
            raw = env.get(f"RULESFLOW_{name.upper()}")
            if raw is not None:
                values[name] = raw.upper() if name == "log_level" else raw
        return cls.model_validate(values)


__all__ = ["LogLevel", "Settings"]
