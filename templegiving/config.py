import os

# ----------------------------
# Database
# ----------------------------
DATABASE_URL = os.environ.get("DATABASE_URL", None)
DB_POOL_SIZE = int(os.environ.get("DB_POOL_SIZE", "5"))
DB_MAX_OVERFLOW = int(os.environ.get("DB_MAX_OVERFLOW", "5"))
DB_POOL_TIMEOUT = int(os.environ.get("DB_POOL_TIMEOUT", "30"))
# defaults to pool size + overflow
DB_GATE_LIMIT = (
    int(os.environ["DB_GATE_LIMIT"]) if os.environ.get("DB_GATE_LIMIT")
    else None
)

# ----------------------------
# Application
# ----------------------------
SITE_NAME = os.environ.get("SITE_NAME", "Yamraj Dham Trust")
BASE_URL = os.environ.get("BASE_URL", "http://localhost:8000").rstrip("/")
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()

# ----------------------------
# Payment gateway (Cashfree PG)
# ----------------------------
CASHFREE_APP_ID = os.environ.get("CASHFREE_APP_ID", "")
CASHFREE_SECRET_KEY = os.environ.get("CASHFREE_SECRET_KEY", "")
CASHFREE_ENVIRONMENT = os.environ.get(
    "CASHFREE_ENVIRONMENT", "sandbox"
).lower()  # 'sandbox' | 'production'
CASHFREE_API_VERSION = os.environ.get("CASHFREE_API_VERSION", "2023-08-01")
CASHFREE_BASE_URL = (
    "https://api.cashfree.com"
    if CASHFREE_ENVIRONMENT == "production"
    else "https://sandbox.cashfree.com"
)
# Cashfree signs webhooks with the client secret unless a dedicated one is set
CASHFREE_WEBHOOK_SECRET = (
    os.environ.get("CASHFREE_WEBHOOK_SECRET") or CASHFREE_SECRET_KEY
)

# 'cashfree' | 'mock'; without credentials we can only run against MockPay
GATEWAY_BACKEND = os.environ.get(
    "GATEWAY_BACKEND", "cashfree" if CASHFREE_APP_ID else "mock"
).lower()

MOCK_SECRET = os.environ.get("MOCK_SECRET", "supersecret")
MOCK_WEBHOOK_URL = os.environ.get(
    "MOCK_WEBHOOK_URL",
    f"{BASE_URL}/api/webhook/cashfree"
)

HTTP_TIMEOUT_SECONDS = float(os.environ.get("HTTP_TIMEOUT_SECONDS", "10"))

# ----------------------------
# Admin lookup cache
# ----------------------------
ADMIN_CACHE_BACKEND = os.environ.get(
    "ADMIN_CACHE_BACKEND", "memory"
).lower()  # 'memory' | 'redis'
ADMIN_CACHE_TTL_SECONDS = int(os.environ.get("ADMIN_CACHE_TTL_SECONDS", "300"))
ADMIN_CACHE_MAX_ENTRIES = int(
    os.environ.get("ADMIN_CACHE_MAX_ENTRIES", "1024")
)
REDIS_URL = os.environ.get("REDIS_URL", "redis://127.0.0.1:6379")

# ----------------------------
# Donations
# ----------------------------
PENDING_TIMEOUT_SECONDS = int(os.environ.get("PENDING_TIMEOUT_SECONDS", "3600"))
CLEANUP_TOKEN = os.environ.get("CLEANUP_TOKEN", "")
DEFAULT_CURRENCY = "INR"
