import os
from functools import lru_cache
from typing import List

from pydantic import BaseModel, Field


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


class Settings(BaseModel):
    # Auth
    secret_key: str = "supersecretkey"
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 24 * 60
    password_hash_rounds: int = Field(12, ge=4, le=31)

    # Database
    database_url: str = "mongodb://localhost:27017"
    database_name: str = "store_rating_db"
    database_transactions: bool = True
    database_timeout_ms: int = 5000

    # Logging
    log_level: str = "info"
    log_json: bool = True

    cors_origins: List[str] = ["*"]

    # Seeded administrator
    admin_name: str = "System Administrator User"
    admin_email: str = "admin@system.com"
    admin_password: str = "Admin@123"
    admin_address: str = "123 Admin Street, City"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            secret_key=os.getenv("SECRET_KEY", "supersecretkey"),
            algorithm=os.getenv("JWT_ALGORITHM", "HS256"),
            access_token_expire_minutes=int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", str(24 * 60))),
            password_hash_rounds=int(os.getenv("PASSWORD_HASH_ROUNDS", "12")),
            database_url=os.getenv("DATABASE_URL", "mongodb://localhost:27017"),
            database_name=os.getenv("DATABASE_NAME", "store_rating_db"),
            database_transactions=_env_bool("DATABASE_TRANSACTIONS", "true"),
            database_timeout_ms=int(os.getenv("DATABASE_TIMEOUT_MS", "5000")),
            log_level=os.getenv("LOG_LEVEL", "info"),
            log_json=_env_bool("LOG_JSON", "true"),
            cors_origins=[o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()],
            admin_name=os.getenv("ADMIN_NAME", "System Administrator User"),
            admin_email=os.getenv("ADMIN_EMAIL", "admin@system.com"),
            admin_password=os.getenv("ADMIN_PASSWORD", "Admin@123"),
            admin_address=os.getenv("ADMIN_ADDRESS", "123 Admin Street, City"),
        )


@lru_cache
def get_settings() -> Settings:
    return Settings.from_env()
