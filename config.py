from __future__ import annotations
import os
from pydantic import BaseModel
from dotenv import load_dotenv

load_dotenv()


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name, str(default))
    try:
        return int(raw)
    except ValueError:
        return default


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name, str(default))
    try:
        return float(raw)
    except ValueError:
        return default


class Settings(BaseModel):
    database_url: str = os.getenv("DATABASE_URL", "mongodb://localhost:27017")
    database_name: str = os.getenv("DATABASE_NAME", "restaurant")

    jwt_secret: str = os.getenv("JWT_SECRET", "dev-secret-change-me")
    jwt_alg: str = os.getenv("JWT_ALG", "HS256")
    # default 24h
    jwt_expire_minutes: int = _int_env("JWT_EXPIRE_MIN", 1440)

    delivery_fee: float = _float_env("DELIVERY_FEE", 25.0)
    currency_symbol: str = os.getenv("CURRENCY_SYMBOL", "R")

    log_level: str = os.getenv("LOG_LEVEL", "INFO").upper()
    port: int = _int_env("PORT", 8000)


settings = Settings()
