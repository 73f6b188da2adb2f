import os
from typing import Mapping

from pydantic import BaseModel

from core.constants.main_values import (
    DEFAULT_AUTH_PASSWORD,
    DEFAULT_AUTH_USERNAME,
    DEFAULT_PORT,
    REQUEST_TIMEOUT_SECONDS,
)

_TRUTHY = {"1", "true", "yes", "on"}


class Settings(BaseModel):
    mongodb_url: str | None = None
    db_name: str | None = None
    auth_username: str = DEFAULT_AUTH_USERNAME
    auth_password: str = DEFAULT_AUTH_PASSWORD
    port: int = DEFAULT_PORT
    debug: bool = False
    request_timeout: float = REQUEST_TIMEOUT_SECONDS
    rate_limit: str | None = None
    log_level: str = "INFO"
    log_file: str | None = None

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "Settings":
        env = os.environ if environ is None else environ

        values = {
            "mongodb_url": env.get("MONGODB_URL") or None,
            "db_name": env.get("DB_NAME") or None,
            "auth_username": env.get("AUTH_USERNAME") or DEFAULT_AUTH_USERNAME,
            "auth_password": env.get("AUTH_PASSWORD") or DEFAULT_AUTH_PASSWORD,
            "debug": env.get("DEBUG", "").strip().lower() in _TRUTHY,
            "rate_limit": env.get("RATE_LIMIT") or None,
            "log_level": env.get("LOG_LEVEL", "INFO").upper(),
            "log_file": env.get("LOG_FILE") or None,
        }
        if env.get("PORT"):
            values["port"] = int(env["PORT"])
        if env.get("REQUEST_TIMEOUT"):
            values["request_timeout"] = float(env["REQUEST_TIMEOUT"])

        return cls(**values)
