"""
Application settings
"""
import os
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

APP_NAME = "Field Service CRM"
VERSION = "1.0.0"

BASE_DIR = Path(__file__).parent

# Database (SQLite by default, see database/connection.py)
DATABASE_URL = os.getenv("DATABASE_URL", "")

# Auth
SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-change-me")
TOKEN_MAX_AGE_DAYS = int(os.getenv("TOKEN_MAX_AGE_DAYS", "30"))
ADMIN_USERNAME = os.getenv("ADMIN_USERNAME", "admin")
ADMIN_DEFAULT_PASSWORD = os.getenv("ADMIN_DEFAULT_PASSWORD", "admin123")

# Listings
CALLS_PAGE_SIZE = int(os.getenv("CALLS_PAGE_SIZE", "4"))
CALL_DETAIL_LIMIT = int(os.getenv("CALL_DETAIL_LIMIT", "200"))

# Push notifications (disabled when PUSH_ENDPOINT is empty)
PUSH_ENDPOINT = os.getenv("PUSH_ENDPOINT", "")
PUSH_SERVER_KEY = os.getenv("PUSH_SERVER_KEY", "")
PUSH_TIMEOUT = float(os.getenv("PUSH_TIMEOUT", "10"))

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_DIR = os.getenv("LOG_DIR", str(BASE_DIR / "logs"))

# Web
CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")
