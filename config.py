import os


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


APP_ENV = os.getenv("APP_ENV", "development")
IS_PRODUCTION = APP_ENV == "production"

# Database
DATABASE_URL = os.getenv("DATABASE_URL", "mongodb://localhost:27017")
DATABASE_NAME = os.getenv("DATABASE_NAME", "storefront")
# Standalone mongod cannot run multi-document transactions
DATABASE_TRANSACTIONS = _env_bool("DATABASE_TRANSACTIONS", True)

# JWT Config
JWT_SECRET = os.getenv("JWT_SECRET", "dev-secret-change")
JWT_REFRESH_SECRET = os.getenv("JWT_REFRESH_SECRET", "dev-refresh-secret-change")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = 15
REFRESH_TOKEN_EXPIRE_DAYS = 7

# CORS
CLIENT_URLS = [origin.strip() for origin in os.getenv("CLIENT_URL", "http://localhost:5173").split(",") if origin.strip()]

# Rate limiting (per IP, fixed window)
RATE_LIMIT_WINDOW_SECONDS = int(os.getenv("RATE_LIMIT_WINDOW_SECONDS", 15 * 60))
RATE_LIMIT_MAX = int(os.getenv("RATE_LIMIT_MAX", 100))
AUTH_RATE_LIMIT_MAX = int(os.getenv("AUTH_RATE_LIMIT_MAX", 20))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
PORT = int(os.getenv("PORT", 8000))

# Checkout pricing
FREE_SHIPPING_THRESHOLD = 50
FLAT_SHIPPING = 5.99
TAX_RATE = 0.08

REQUIRED_PRODUCTION_ENV = ("DATABASE_URL", "JWT_SECRET", "JWT_REFRESH_SECRET")


def missing_production_env():
    if not IS_PRODUCTION:
        return []
    return [name for name in REQUIRED_PRODUCTION_ENV if not os.getenv(name)]
