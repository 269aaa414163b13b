from __future__ import annotations

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # --- Runtime / env ---
    ENV: str = "prod"
    LOG_LEVEL: str = "INFO"

    # Reverse proxy prefix (e.g. the API mounted at /tradesync/api/*)
    API_ROOT_PATH: str = ""

    # --- Database ---
    DATABASE_URL: str = "sqlite:///./tradesync.sqlite3"

    # --- Terminal session tokens ---
    # HMAC key for bearer tokens. Rotating it invalidates every issued token.
    TOKEN_SECRET: str = "change-me-token-secret"
    # 0 disables expiry (terminals authenticate once and keep the token).
    TOKEN_MAX_AGE_SEC: int = 30 * 24 * 3600

    # --- Terminal credentials ---
    # Key for password digests at rest. Rotating it invalidates every credential.
    CREDENTIAL_PEPPER: str = "change-me-credential-pepper"
    CREDENTIAL_PASSWORD_LENGTH: int = 12

    # --- Ingestion defaults ---
    DEFAULT_TERMINAL_NAME: str = "MT4"
    DEFAULT_LOTS: float = 0.01

    # --- Dashboard read API ---
    # Empty = no gate (local/dev). Otherwise required in the X-API-Key header.
    DASHBOARD_API_KEY: str = ""
    CORS_ALLOW_ORIGINS: str = "*"

    @field_validator("API_ROOT_PATH", mode="before")
    @classmethod
    def _root_path_strip(cls, v: object) -> str:
        s = "" if v is None else str(v).strip()
        if not s:
            return ""
        # normalize: ensure leading slash, no trailing slash
        if not s.startswith("/"):
            s = "/" + s
        return s.rstrip("/")

    @field_validator("LOG_LEVEL", mode="before")
    @classmethod
    def _coerce_level(cls, v: object) -> str:
        s = "" if v is None else str(v).strip().upper()
        return s or "INFO"

    @field_validator("TOKEN_SECRET", "CREDENTIAL_PEPPER", "DASHBOARD_API_KEY", mode="before")
    @classmethod
    def _coerce_secret(cls, v: object) -> str:
        if v is None:
            return ""
        return str(v).strip()

    @field_validator("TOKEN_MAX_AGE_SEC", mode="before")
    @classmethod
    def _coerce_max_age(cls, v: object) -> int:
        if v is None or str(v).strip() == "":
            return 0
        return max(0, int(v))

    @field_validator("DEFAULT_LOTS")
    @classmethod
    def _positive_lots(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("DEFAULT_LOTS must be positive")
        return v

    def cors_origins(self) -> list[str]:
        return [x.strip() for x in (self.CORS_ALLOW_ORIGINS or "").split(",") if x.strip()] or ["*"]


settings = Settings()
