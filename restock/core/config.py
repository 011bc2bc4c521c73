import os
from dotenv import load_dotenv

# Load the .env from the project root
load_dotenv()


def _env_flag(name: str, default: str = "") -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./restock.db")
ENV = os.getenv("ENV", "dev")
ENV_NORMALIZED = ENV.lower()
IS_DEV = ENV_NORMALIZED in {"dev", "development", "local"}
IS_STAGE = ENV_NORMALIZED in {"stage", "staging"}
IS_PROD = ENV_NORMALIZED in {"prod", "production"}
IS_TEST = ENV_NORMALIZED == "test"

SQL_ECHO = _env_flag("SQL_ECHO")

# Pool: bounds the number of tenant operations running at the same time.
DB_POOL_SIZE = int(os.getenv("DB_POOL_SIZE", "20"))
DB_MAX_OVERFLOW = int(os.getenv("DB_MAX_OVERFLOW", "10"))
DB_POOL_TIMEOUT_SECONDS = int(os.getenv("DB_POOL_TIMEOUT_SECONDS", "10"))
DB_POOL_RECYCLE_SECONDS = int(os.getenv("DB_POOL_RECYCLE_SECONDS", "1800"))

# External POS (Poster)
POS_API_BASE_URL_TEMPLATE = os.getenv(
    "POS_API_BASE_URL_TEMPLATE",
    "https://{account}.joinposter.com/api",
).strip()
POS_TIMEOUT_SECONDS = _env_float("POS_TIMEOUT_SECONDS", 10.0)
POS_SUPPLY_TIMEOUT_SECONDS = _env_float("POS_SUPPLY_TIMEOUT_SECONDS", 5.0)
_default_storage_raw = os.getenv("POS_DEFAULT_STORAGE_ID", "").strip()
POS_DEFAULT_STORAGE_ID = _default_storage_raw or None
POS_SUPPLY_COMMENT = os.getenv("POS_SUPPLY_COMMENT", "Order from restock").strip()

# Sync
SYNC_STALE_AFTER_HOURS = _env_float("SYNC_STALE_AFTER_HOURS", 24.0)
SYNC_ENTITY_TIMEOUT_SECONDS = _env_float("SYNC_ENTITY_TIMEOUT_SECONDS", 60.0)

# Orders
ORDER_LIST_DEFAULT_LIMIT = int(os.getenv("ORDER_LIST_DEFAULT_LIMIT", "100"))
ORDER_LIST_MAX_LIMIT = int(os.getenv("ORDER_LIST_MAX_LIMIT", "500"))

# CORS
_cors_env = os.getenv("CORS_ORIGINS", "")
CORS_ORIGINS = [origin.strip() for origin in _cors_env.split(",") if origin.strip() and origin.strip() != "*"]

if not CORS_ORIGINS and IS_DEV:
    CORS_ORIGINS = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]
