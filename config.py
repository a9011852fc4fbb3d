import os
import logging

from dotenv import load_dotenv

load_dotenv()

# ---------------------- Runtime ----------------------

ENVIRONMENT = os.getenv("ENVIRONMENT", "development")
IS_PRODUCTION = ENVIRONMENT == "production"
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

logging.basicConfig(
    level=getattr(logging, LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
)

# ---------------------- Database ----------------------

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")

# ---------------------- Identity ----------------------

JWT_SECRET = os.getenv("JWT_SECRET", "change-me-in-production")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_EXPIRE_DAYS = int(os.getenv("JWT_EXPIRE_DAYS", "7"))
GOOGLE_CLIENT_ID = os.getenv("GOOGLE_CLIENT_ID")

# ---------------------- Integrations ----------------------

PRINTFUL_API_KEY = os.getenv("PRINTFUL_API_KEY", "")
PRINTFUL_API_BASE = os.getenv("PRINTFUL_API_BASE", "https://api.printful.com")
PRINTFUL_TIMEOUT = int(os.getenv("PRINTFUL_TIMEOUT", "30"))

SQUARE_ACCESS_TOKEN = os.getenv("SQUARE_ACCESS_TOKEN", "")
SQUARE_LOCATION_ID = os.getenv("SQUARE_LOCATION_ID", "")
SQUARE_ENVIRONMENT = os.getenv("SQUARE_ENVIRONMENT", "sandbox")
SQUARE_API_VERSION = "2024-10-17"
CHECKOUT_REDIRECT_URL = os.getenv("CHECKOUT_REDIRECT_URL", "http://localhost:8080/order-confirmation.html")
SQUARE_TIMEOUT = int(os.getenv("SQUARE_TIMEOUT", "30"))

FEED_TIMEOUT = 10

# ---------------------- Uploads ----------------------

UPLOAD_DIR = os.getenv("UPLOAD_DIR", "uploads")
MAX_FILE_SIZE = int(os.getenv("MAX_FILE_SIZE", str(5 * 1024 * 1024)))

# ---------------------- HTTP ----------------------

_default_origins = "http://localhost:8081,http://localhost:3000,http://127.0.0.1:8081,http://127.0.0.1:3000"
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", _default_origins).split(",") if o.strip()]

# ---------------------- Orders ----------------------

TAX_RATE = os.getenv("TAX_RATE", "0.10")
FREE_SHIPPING_THRESHOLD = os.getenv("FREE_SHIPPING_THRESHOLD", "50.00")
FLAT_SHIPPING_FEE = os.getenv("FLAT_SHIPPING_FEE", "9.99")
CURRENCY = "USD"
ORDER_TXN_MAX_ATTEMPTS = int(os.getenv("ORDER_TXN_MAX_ATTEMPTS", "5"))
