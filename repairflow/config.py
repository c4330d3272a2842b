import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./repairflow.db")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Security - CRITICAL: No default secret key in production
SECRET_KEY = os.getenv("SECRET_KEY")
if not SECRET_KEY:
    import warnings

    warnings.warn(
        "SECRET_KEY not set! Using insecure default - DO NOT USE IN PRODUCTION", RuntimeWarning, stacklevel=2
    )
    SECRET_KEY = "INSECURE-DEV-KEY-CHANGE-IN-PRODUCTION"  # noqa: S105 - Dev fallback only

# Bearer tokens are issued by the identity service; we only verify them
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")

# Parts custody strategy recorded on a decision lock when the caller sends none
DEFAULT_PARTS_STRATEGY = os.getenv("DEFAULT_PARTS_STRATEGY", "STATE_A_SUPPLIER_CUSTODY")

# Carrier webhook configuration
# When unset, carrier callbacks are accepted without a signature check
CARRIER_WEBHOOK_SECRET = os.getenv("CARRIER_WEBHOOK_SECRET")
CARRIER_EVENT_TTL_SECONDS = int(os.getenv("CARRIER_EVENT_TTL_SECONDS", "86400"))
CARRIER_EVENT_CACHE_SIZE = int(os.getenv("CARRIER_EVENT_CACHE_SIZE", "10000"))

# Redis backs carrier-event dedup across workers; optional
REDIS_URL = os.getenv("REDIS_URL")

ALLOWED_ORIGINS = os.getenv(
    "ALLOWED_ORIGINS",
    "http://localhost:5173,http://localhost:3000",
).split(",")

# API server bind address for `python -m repairflow`
HOST = os.getenv("HOST", "0.0.0.0")  # noqa: S104
PORT = int(os.getenv("PORT", "8000"))
