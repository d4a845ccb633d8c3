# Copyright (C) 2026 Bernardo Gómez Bey
# SPDX-License-Identifier: AGPL-3.0-or-later

"""Process-wide settings, read once from the environment at start-up."""

from __future__ import annotations

import logging
import os
import secrets
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Tuple

from civicboard.auth.passwords import HashParams

logger = logging.getLogger(__name__)

SEVEN_DAYS_SECONDS = 7 * 24 * 60 * 60
ONE_DAY_SECONDS = 24 * 60 * 60


def _flag(value: str) -> bool:
    return value.strip().lower() in {"1", "true", "yes", "y"}


def _secret(name: str) -> str:
    value = os.getenv(name, "").strip()
    if value:
        return value
    logger.warning("%s not set; using a random secret for this process", name)
    return secrets.token_hex(32)


def hash_params_from_env() -> HashParams:
    return HashParams(
        time_cost=int(os.getenv("CIVIC_ARGON2_TIME_COST", "2")),
        memory_cost=int(os.getenv("CIVIC_ARGON2_MEMORY_COST", "19456")),
        parallelism=int(os.getenv("CIVIC_ARGON2_PARALLELISM", "1")),
        hash_len=int(os.getenv("CIVIC_ARGON2_HASH_LEN", "64")),
        salt_len=int(os.getenv("CIVIC_ARGON2_SALT_LEN", "16")),
    )


@dataclass(frozen=True)
class Settings:
    token_secret: str
    session_secret: str
    environment: str = "development"
    cookie_name: str = "civic_session"
    cookie_secure: bool = False
    session_max_age: int = SEVEN_DAYS_SECONDS
    token_max_age: int = SEVEN_DAYS_SECONDS
    sweep_interval: int = ONE_DAY_SECONDS
    protected_prefixes: Tuple[str, ...] = ("/api/protected",)
    users_path: Optional[Path] = None
    hash_params: HashParams = field(default_factory=HashParams)

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    def cookie_settings(self) -> dict:
        return {
            "httponly": True,
            "samesite": "lax",
            "secure": self.cookie_secure,
            "max_age": self.session_max_age,
        }

    @classmethod
    def from_env(cls) -> "Settings":
        environment = os.getenv("CIVIC_ENV", "development").strip().lower()
        secure_env = os.getenv("CIVIC_COOKIE_SECURE")
        cookie_secure = _flag(secure_env) if secure_env is not None else environment == "production"

        prefixes = tuple(
            p.strip().rstrip("/")
            for p in os.getenv("CIVIC_PROTECTED_PREFIXES", "/api/protected").split(",")
            if p.strip()
        )
        users_path = os.getenv("CIVIC_USERS_PATH", "").strip()

        return cls(
            token_secret=_secret("CIVIC_TOKEN_SECRET"),
            session_secret=_secret("CIVIC_SESSION_SECRET"),
            environment=environment,
            cookie_name=os.getenv("CIVIC_COOKIE_NAME", "civic_session"),
            cookie_secure=cookie_secure,
            session_max_age=int(os.getenv("CIVIC_SESSION_MAX_AGE", str(SEVEN_DAYS_SECONDS))),
            token_max_age=int(os.getenv("CIVIC_TOKEN_MAX_AGE", str(SEVEN_DAYS_SECONDS))),
            sweep_interval=int(os.getenv("CIVIC_SESSION_SWEEP_SECONDS", str(ONE_DAY_SECONDS))),
            protected_prefixes=prefixes,
            users_path=Path(users_path).resolve() if users_path else None,
            hash_params=hash_params_from_env(),
        )
