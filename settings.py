import os

# Database
DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")

# Environment / Auth settings
SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-key-change-me")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", 60 * 24))

# Bootstrap admin, created on startup when both are set
ADMIN_EMAIL = os.getenv("ADMIN_EMAIL")
ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD")

CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]

# Forward-only order lifecycle instead of free status changes
STRICT_ORDER_STATUS = os.getenv("STRICT_ORDER_STATUS", "false").lower() in ("1", "true", "yes")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
PORT = int(os.getenv("PORT", 8000))

# Storefront constants
LANDING_PRODUCT_LIMIT = 6
DEFAULT_UNIT = "kg"
PAYMENT_METHOD = "bank_transfer"
ADMIN_ROLE = "admin"

# Login views
USER_LOGIN_PATH = "/auth"
ADMIN_LOGIN_PATH = "/petani"
