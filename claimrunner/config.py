"""Run configuration.

One immutable ``RunConfig`` is built at startup (defaults, then
``CLAIMRUNNER_*`` environment variables and ``.env``, then CLI options) and
passed by value into every worker process. Pipeline code never reads the
environment itself.
"""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import ConfigurationError

ENV_PREFIX = "CLAIMRUNNER_"

LOG_LEVELS = {
    "error": logging.ERROR,
    "warn": logging.WARNING,
    "info": logging.INFO,
    "debug": logging.DEBUG,
}


class RunConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    # Inputs / outputs
    tasks_file: Path = Path("wallets.txt")
    proxies_file: Optional[Path] = Path("proxies.txt")
    output_dir: Path = Path("outputs")

    # Worker pool
    workers: Optional[int] = Field(default=None, ge=1)
    worker_cap: int = Field(default=16, ge=1)
    concurrency: int = Field(default=1, ge=1)
    use_proxies: bool = True

    # Retry and pacing (seconds)
    max_attempts: int = Field(default=3, ge=1)
    retry_delay: float = Field(default=2.0, ge=0)
    task_delay: float = Field(default=2.0, ge=0)
    batch_delay: float = Field(default=1.0, ge=0)
    claim_delay: float = Field(default=1.0, ge=0)
    request_timeout: float = Field(default=30.0, gt=0)
    exit_grace_seconds: float = Field(default=10.0, ge=0)

    log_level: str = "info"

    # CAPTCHA service
    captcha_api_key: Optional[str] = None
    captcha_site_key: Optional[str] = None
    captcha_page_url: Optional[str] = None
    captcha_api_url: str = "https://api.anti-captcha.com"
    captcha_task_type: str = "TurnstileTaskProxyless"

    # Remote API and plugins
    api_base_url: Optional[str] = None
    signer: Optional[str] = None
    collaborators: str = "claimrunner.collaborators:build_default"

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalise_level(cls, value: Any) -> str:
        level = str(value).strip().lower()
        if level == "warning":
            level = "warn"
        if level not in LOG_LEVELS:
            raise ValueError(f"log_level must be one of {sorted(LOG_LEVELS)}")
        return level

    @property
    def python_log_level(self) -> int:
        return LOG_LEVELS[self.log_level]

    @property
    def captcha_configured(self) -> bool:
        return bool(self.captcha_api_key and self.captcha_site_key)

    @property
    def partial_dir(self) -> Path:
        return self.output_dir / "partial"

    @classmethod
    def from_env(cls, env_file: Optional[Path] = None, **overrides: Any) -> RunConfig:
        """Build config from ``CLAIMRUNNER_*`` variables plus explicit overrides.

        ``None`` overrides are ignored so unset CLI options fall through to the
        environment and then to the defaults.
        """
        load_dotenv(env_file)

        values: Dict[str, Any] = {}
        for name in cls.model_fields:
            raw = os.getenv(ENV_PREFIX + name.upper())
            if raw is not None and raw != "":
                values[name] = raw
        values.update({k: v for k, v in overrides.items() if v is not None})

        try:
            return cls(**values)
        except ValidationError as exc:
            raise ConfigurationError(f"invalid configuration: {exc}") from exc
