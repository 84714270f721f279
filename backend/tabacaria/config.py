# backend/tabacaria/config.py
from __future__ import annotations

import os
from dataclasses import dataclass

from flask import current_app


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/tabacaria.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",  # optional alternative location
        "sqlite:///tabacaria.sqlite3",  # default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # "production" hides stack traces in error responses
    APP_ENV = os.environ.get("APP_ENV", "development")

    # Signed bearer credentials
    JWT_SECRET_KEY = os.environ.get("JWT_SECRET", "tabacaria-jwt-secret-change-me")
    JWT_ALGORITHM = os.environ.get("JWT_ALGORITHM", "HS256")
    JWT_EXPIRES_DAYS = _env_int("JWT_EXPIRE_DAYS", 30)

    BCRYPT_ROUNDS = _env_int("BCRYPT_ROUNDS", 12)

    PAGINATION_DEFAULT_LIMIT = _env_int("PAGINATION_DEFAULT_LIMIT", 10)
    PAGINATION_MAX_LIMIT = _env_int("PAGINATION_MAX_LIMIT", 100)

    # Stock alert levels; the low threshold is also the default min_stock
    STOCK_LOW_THRESHOLD = _env_int("STOCK_LOW_THRESHOLD", 5)
    STOCK_CRITICAL_THRESHOLD = _env_int("STOCK_CRITICAL_THRESHOLD", 2)

    # One loyalty point per R$ 10,00 spent
    LOYALTY_CENTS_PER_POINT = _env_int("LOYALTY_CENTS_PER_POINT", 1000)

    CORS_ALLOWED_ORIGINS = [
        origin.strip()
        for origin in os.environ.get(
            "CORS_ALLOWED_ORIGINS",
            "http://localhost:5173,http://127.0.0.1:5173",
        ).split(",")
        if origin.strip()
    ]


@dataclass(frozen=True)
class ShopSettings:
    """
    Immutable snapshot of the business settings a service needs.

    Built once by create_app() and handed to services explicitly by the
    routes, so service functions never read Flask config on their own.
    """
    jwt_secret_key: str
    jwt_algorithm: str
    jwt_expires_days: int
    bcrypt_rounds: int
    pagination_default_limit: int
    pagination_max_limit: int
    stock_low_threshold: int
    stock_critical_threshold: int
    loyalty_cents_per_point: int
    production: bool

    @classmethod
    def from_mapping(cls, config) -> "ShopSettings":
        return cls(
            jwt_secret_key=config["JWT_SECRET_KEY"],
            jwt_algorithm=config["JWT_ALGORITHM"],
            jwt_expires_days=int(config["JWT_EXPIRES_DAYS"]),
            bcrypt_rounds=int(config["BCRYPT_ROUNDS"]),
            pagination_default_limit=int(config["PAGINATION_DEFAULT_LIMIT"]),
            pagination_max_limit=int(config["PAGINATION_MAX_LIMIT"]),
            stock_low_threshold=int(config["STOCK_LOW_THRESHOLD"]),
            stock_critical_threshold=int(config["STOCK_CRITICAL_THRESHOLD"]),
            loyalty_cents_per_point=int(config["LOYALTY_CENTS_PER_POINT"]),
            production=config.get("APP_ENV") == "production",
        )


def get_settings() -> ShopSettings:
    """Settings of the running app (request or app context required)."""
    return current_app.extensions["shop_settings"]
