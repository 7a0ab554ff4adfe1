import logging
import os

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./app.db")

JWT_SECRET = os.getenv("JWT_SECRET") or "dev-access-secret"
REFRESH_SECRET = os.getenv("REFRESH_SECRET") or "dev-refresh-secret"
ACCESS_TOKEN_MINUTES = int(os.getenv("ACCESS_TOKEN_MINUTES", 120))
REFRESH_TOKEN_DAYS = int(os.getenv("REFRESH_TOKEN_DAYS", 7))

FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:3000")

UPLOAD_DIR = os.getenv("UPLOAD_DIR", "uploads")
MAX_UPLOAD_MB = int(os.getenv("MAX_UPLOAD_MB", 10))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
PORT = int(os.getenv("PORT", 8000))


def warn_insecure_defaults():
    if not os.getenv("JWT_SECRET") or not os.getenv("REFRESH_SECRET"):
        logger.warning("JWT_SECRET / REFRESH_SECRET not set, using development secrets")
