import os


def _env_bool(name: str, default: str = "0") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


# ✅ Database
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./gigmarket.db")
RUN_MIGRATIONS = _env_bool("RUN_MIGRATIONS")
AUTO_CREATE_TABLES = _env_bool("AUTO_CREATE_TABLES", "1")

# ✅ Security
SECRET_KEY = os.getenv("SECRET_KEY", "change-me")
ALGORITHM = os.getenv("ALGORITHM", "HS256")
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "60"))

# ✅ Stripe
STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY")
STRIPE_WEBHOOK_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET")
STRIPE_ESCROW_WEBHOOK_SECRET = os.getenv("STRIPE_ESCROW_WEBHOOK_SECRET")
STRIPE_PRICE_ID_BASIC = os.getenv("STRIPE_PRICE_ID_BASIC")
STRIPE_PRICE_ID_PRO = os.getenv("STRIPE_PRICE_ID_PRO")

# ✅ Escrow
CURRENCY = os.getenv("CURRENCY", "inr")
PLATFORM_FEE_PERCENT = float(os.getenv("PLATFORM_FEE_PERCENT", "0"))
PLATFORM_FEE_VERSION = os.getenv("PLATFORM_FEE_VERSION", "flat_pct_v1")
ESCROW_ORDER_TTL_MINUTES = int(os.getenv("ESCROW_ORDER_TTL_MINUTES", "30"))
GATEWAY_TIMEOUT_SECONDS = float(os.getenv("GATEWAY_TIMEOUT_SECONDS", "10"))

# ✅ Background workers
BACKGROUND_WORKERS_ENABLED = _env_bool("BACKGROUND_WORKERS_ENABLED", "1")
ESCROW_SWEEP_INTERVAL_SECONDS = int(os.getenv("ESCROW_SWEEP_INTERVAL_SECONDS", "60"))
NOTIFICATION_DISPATCH_INTERVAL_SECONDS = int(os.getenv("NOTIFICATION_DISPATCH_INTERVAL_SECONDS", "5"))
NOTIFICATION_MAX_ATTEMPTS = int(os.getenv("NOTIFICATION_MAX_ATTEMPTS", "5"))

# ✅ Frontend / logging
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:3000")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_DIR = os.getenv("LOG_DIR")
