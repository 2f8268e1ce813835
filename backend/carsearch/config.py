# backend/carsearch/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored next to the app unless DATABASE_URL points elsewhere
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///carsearch.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Whole-dollar amounts (CAD)
    BUYER_BUDGET = int(os.environ.get("BUYER_BUDGET", "20000"))
    TAX_RATE = os.environ.get("TAX_RATE", "0.13")

    # Human approval checkpoints
    CHECKPOINTS_ENABLED = _env_bool("CHECKPOINTS_ENABLED", True)
    OFFER_APPROVAL_THRESHOLD = int(os.environ.get("OFFER_APPROVAL_THRESHOLD", "15000"))
    VIEWING_REQUIRES_APPROVAL = _env_bool("VIEWING_REQUIRES_APPROVAL", True)
    MAX_AUTO_FOLLOWUPS = int(os.environ.get("MAX_AUTO_FOLLOWUPS", "2"))
    PORTFOLIO_EXPOSURE_ALERT = int(os.environ.get("PORTFOLIO_EXPOSURE_ALERT", "40000"))  # 0 disables
    APPROVAL_TTL_HOURS = int(os.environ.get("APPROVAL_TTL_HOURS", "48"))  # 0 = never expires
