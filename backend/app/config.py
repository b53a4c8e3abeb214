"""Application settings and validation."""

import os
from pathlib import Path

BASE = Path(__file__).resolve().parent.parent


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


class Settings:
    ENV: str
    DATABASE_URL: str
    JWT_SECRET: str
    JWT_REFRESH_SECRET: str
    JWT_ALGORITHM: str
    ACCESS_TOKEN_EXPIRE_HOURS: int
    REFRESH_TOKEN_EXPIRE_DAYS: int
    ALLOW_INSECURE_JWT: bool
    ALLOW_DEV_CORS: bool
    COOKIE_SECURE: bool
    ADMIN_EMAILS: set
    PLATFORM_FEE_RATE: float
    FEE_DUE_DAYS: int
    KAKAO_COOLDOWN_MINUTES: int
    SOLAPI_API_KEY: str
    SOLAPI_API_SECRET: str
    SOLAPI_SENDER_KEY: str
    SOLAPI_BASE_URL: str
    SENDER_PHONE: str
    LOGIN_RATE_LIMIT_PER_MIN: int

    def __init__(self):
        self.ENV = os.getenv("ENV", "dev").lower()
        self.DATABASE_URL = os.getenv("DATABASE_URL", f"sqlite:///{BASE / 'app.db'}")
        self.JWT_SECRET = os.getenv("JWT_SECRET", "change_me_for_prod")
        self.JWT_REFRESH_SECRET = os.getenv("JWT_REFRESH_SECRET", "change_me_refresh_for_prod")
        self.JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
        self.ACCESS_TOKEN_EXPIRE_HOURS = int(os.getenv("ACCESS_TOKEN_EXPIRE_HOURS", "24"))
        self.REFRESH_TOKEN_EXPIRE_DAYS = int(os.getenv("REFRESH_TOKEN_EXPIRE_DAYS", "30"))
        self.ALLOW_INSECURE_JWT = _env_bool("ALLOW_INSECURE_JWT", "false")
        self.ALLOW_DEV_CORS = _env_bool("ALLOW_DEV_CORS", "true")
        self.COOKIE_SECURE = _env_bool("COOKIE_SECURE", "false" if self.ENV == "dev" else "true")
        self.ADMIN_EMAILS = {
            e.strip().lower() for e in os.getenv("ADMIN_EMAILS", "").split(",") if e.strip()
        }
        self.PLATFORM_FEE_RATE = float(os.getenv("PLATFORM_FEE_RATE", "0.10"))
        self.FEE_DUE_DAYS = int(os.getenv("FEE_DUE_DAYS", "3"))
        self.KAKAO_COOLDOWN_MINUTES = int(os.getenv("KAKAO_COOLDOWN_MINUTES", "10"))
        # messaging provider (Solapi); blank credentials disable outbound sends
        self.SOLAPI_API_KEY = os.getenv("SOLAPI_API_KEY", "")
        self.SOLAPI_API_SECRET = os.getenv("SOLAPI_API_SECRET", "")
        self.SOLAPI_SENDER_KEY = os.getenv("SOLAPI_SENDER_KEY", "")
        self.SOLAPI_BASE_URL = os.getenv("SOLAPI_BASE_URL", "https://api.solapi.com").rstrip("/")
        self.SENDER_PHONE = os.getenv("SENDER_PHONE", "")
        self.LOGIN_RATE_LIMIT_PER_MIN = int(os.getenv("LOGIN_RATE_LIMIT_PER_MIN", "10"))
        self._validate()

    def _validate(self):
        if self.ENV != "dev" and not self.ALLOW_INSECURE_JWT and (
            self.JWT_SECRET == "change_me_for_prod" or self.JWT_REFRESH_SECRET == "change_me_refresh_for_prod"
        ):
            raise RuntimeError("JWT_SECRET and JWT_REFRESH_SECRET must be set to non-default values in non-dev environments")
        if not 0 <= self.PLATFORM_FEE_RATE < 1:
            raise RuntimeError("PLATFORM_FEE_RATE must be between 0 and 1")


settings = Settings()
