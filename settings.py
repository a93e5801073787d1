from functools import lru_cache
from typing import Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        # `.env.prod` takes priority over `.env`
        env_file=(".env", ".env.prod")
    )

    database_url: str = "sqlite:///./jobconnect.db"

    # Token signing
    jwt_secret_key: str = "dev-jwt-secret-change-in-production"
    jwt_algorithm: str = "HS256"
    jwt_expire_hours: int = 24

    # bcrypt work factor; tests lower it
    bcrypt_rounds: int = 12

    # Default admin account, created on startup when both are set
    admin_email: Optional[str] = None
    admin_password: Optional[str] = None

    cors_origins: list[str] = [
        "http://localhost:3000",
        "http://localhost:5173",
    ]

    # Pagination for list endpoints
    default_page_size: int = 20
    max_page_size: int = 100

    # Observability
    log_level: str = "INFO"
    log_format: str = "json"

    @field_validator("jwt_expire_hours")
    @classmethod
    def check_expiry_window(cls, v: int) -> int:
        if not 24 <= v <= 168:
            raise ValueError("jwt_expire_hours must be between 24 and 168")
        return v


@lru_cache()
def get_settings() -> Settings:
    return Settings()
