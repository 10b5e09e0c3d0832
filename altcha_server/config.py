import secrets
from datetime import timedelta

from pydantic import ConfigDict, field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
    )

    # Database (session store)
    database_url: str = "sqlite:///./altcha.db"

    # ALTCHA
    # Rotating the key invalidates every outstanding challenge
    altcha_hmac_key: str = secrets.token_hex(32)
    altcha_algorithm: str = "SHA-512"
    altcha_max_number: int = 50_000
    altcha_salt_length: int = 16  # bytes
    altcha_expires_in: timedelta = timedelta(hours=1)
    altcha_strip_max_number: bool = True

    # Sessions
    session_cookie_name: str = "altcha_session"
    session_cookie_secure: bool = False
    session_ttl_hours: int = 24

    # Cleanup
    cleanup_interval_minutes: int = 15

    # Rate Limiting
    rate_limit_challenges: str = "30/minute"
    rate_limit_verifications: str = "30/minute"

    # Logging
    log_level: str = "INFO"
    log_format: str = "console"  # "console" | "json"

    # CORS
    cors_origins: list[str] | str = ["http://localhost:5173", "http://127.0.0.1:5173"]

    @field_validator("cors_origins", mode="before")
    @classmethod
    def parse_cors_origins(cls, v):
        """Parse CORS origins from comma-separated string or list."""
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",") if origin.strip()]
        return v

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        if v not in ("console", "json"):
            raise ValueError("log_format must be 'console' or 'json'")
        return v


settings = Settings()
