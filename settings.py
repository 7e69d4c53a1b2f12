"""
Settings

Environment driven configuration. Values are read once at import time,
after loading a local .env file if one exists.
"""

import os
from dotenv import load_dotenv

load_dotenv()


def _flag(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")

# Security settings
SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-key-change-me")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", 60 * 24))

# "open" lets an admin move an order to any status, "strict" enforces the workflow graph
ORDER_STATUS_WORKFLOW = os.getenv("ORDER_STATUS_WORKFLOW", "open").strip().lower()

FIRST_USER_IS_ADMIN = _flag("FIRST_USER_IS_ADMIN", True)
MAX_PICTURE_BYTES = int(os.getenv("MAX_PICTURE_BYTES", 2 * 1024 * 1024))

CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
PORT = int(os.getenv("PORT", 8000))
