# cart_service/config.py
import os
from datetime import timedelta

from dotenv import load_dotenv

load_dotenv()


def _flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


DATABASE_URL = os.getenv("CART_DATABASE_URL") or (
    f"postgresql+asyncpg://{os.getenv('CART_DB_USER', 'cart')}:{os.getenv('CART_DB_PASSWORD', 'cart')}"
    f"@{os.getenv('CART_DB_HOST', 'localhost')}:{os.getenv('CART_DB_PORT', '5432')}/{os.getenv('CART_DB_NAME', 'cart')}"
)
DATABASE_ECHO = _flag("CART_DB_ECHO")

# Token issued by the auth service
SECRET_KEY = os.getenv("AUTH_SECRET_KEY", "your_secret_key")
ALGORITHM = os.getenv("AUTH_ALGORITHM", "HS256")

# Reservations older than this are abandoned
CART_TTL = timedelta(seconds=int(os.getenv("CART_TTL_SECONDS", "7200")))
SWEEP_INTERVAL_SECONDS = float(os.getenv("CART_SWEEP_INTERVAL_SECONDS", "300"))

CORS_ALLOW_ORIGINS = [origin.strip() for origin in os.getenv("CORS_ALLOW_ORIGINS", "*").split(",") if origin.strip()]

RECONCILIATION_QUEUE = os.getenv("RECONCILIATION_QUEUE", "payment_reconciliation")


def gateway_secret():
    """Shared secret of the payment gateway, read on every call so rotation needs no restart."""
    return os.getenv("PAYMENT_GATEWAY_SECRET") or None


def rabbitmq_url():
    return os.getenv("RABBITMQ_URL") or None
