from __future__ import annotations

import os
from functools import lru_cache
from typing import List, Optional

from dotenv import load_dotenv


load_dotenv()


INFERENCE_PROVIDERS = {"workers-ai", "gemini"}
STORAGE_BACKENDS = {"memory", "cloudflare-kv"}


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from exc


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got {raw!r}") from exc


class Settings:
    """Application settings loaded from environment variables.

    Keep all credentials and config centralized here.
    """

    def __init__(self) -> None:
        self.app_env: str = os.getenv("APP_ENV", "development")
        self.host: str = os.getenv("HOST", "127.0.0.1")
        self.port: int = _int_env("PORT", 8000)
        self.log_level: str = os.getenv("LOG_LEVEL", "INFO").upper()

        self.inference_provider: str = os.getenv("INFERENCE_PROVIDER", "workers-ai").lower()
        self.google_api_key: Optional[str] = os.getenv("GOOGLE_API_KEY")
        self.gemini_model: str = os.getenv("GEMINI_MODEL", "gemini-2.0-flash")
        self.workers_ai_model: str = os.getenv(
            "WORKERS_AI_MODEL", "@cf/meta/llama-3.3-70b-instruct-fp8-fast"
        )
        self.cloudflare_account_id: Optional[str] = os.getenv("CLOUDFLARE_ACCOUNT_ID")
        self.cloudflare_api_token: Optional[str] = os.getenv("CLOUDFLARE_API_TOKEN")

        self.storage_backend: str = os.getenv("STORAGE_BACKEND", "memory").lower()
        self.cloudflare_kv_namespace_id: Optional[str] = os.getenv("CLOUDFLARE_KV_NAMESPACE_ID")

        self.max_tokens: int = _int_env("MODEL_MAX_TOKENS", 512)
        self.temperature: float = _float_env("MODEL_TEMPERATURE", 0.4)
        self.max_history_turns: int = _int_env("MAX_HISTORY_TURNS", 16)
        self.session_ttl_seconds: int = _int_env("SESSION_TTL_SECONDS", 60 * 60 * 24 * 7)
        self.inference_timeout_seconds: float = _float_env("INFERENCE_TIMEOUT_SECONDS", 30.0)

        origins = os.getenv("CORS_ALLOW_ORIGINS", "*")
        self.cors_allow_origins: List[str] = [o.strip() for o in origins.split(",") if o.strip()]

        self._validate()

    @property
    def model(self) -> str:
        if self.inference_provider == "gemini":
            return self.gemini_model
        return self.workers_ai_model

    def _validate(self) -> None:
        if self.inference_provider not in INFERENCE_PROVIDERS:
            raise ValueError(
                f"INFERENCE_PROVIDER must be one of {sorted(INFERENCE_PROVIDERS)}, "
                f"got {self.inference_provider!r}"
            )
        if self.storage_backend not in STORAGE_BACKENDS:
            raise ValueError(
                f"STORAGE_BACKEND must be one of {sorted(STORAGE_BACKENDS)}, "
                f"got {self.storage_backend!r}"
            )
        if self.max_tokens <= 0:
            raise ValueError("MODEL_MAX_TOKENS must be positive")
        if self.max_history_turns <= 0:
            raise ValueError("MAX_HISTORY_TURNS must be positive")
        if self.session_ttl_seconds <= 0:
            raise ValueError("SESSION_TTL_SECONDS must be positive")
        if self.inference_timeout_seconds <= 0:
            raise ValueError("INFERENCE_TIMEOUT_SECONDS must be positive")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
