"""
Runtime configuration for the cinema listing service.

Values come from the process environment; a local `.env` file is loaded first
when present so development setups don't need exported variables.
"""

import os
from pathlib import Path

from dotenv import load_dotenv

BASE_DIR = Path(__file__).resolve().parent

load_dotenv(BASE_DIR / ".env")

ENVIRONMENT = os.getenv("ENVIRONMENT", "development")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
PORT = int(os.getenv("PORT", 8000))

# Storage. Without DATABASE_URL the app runs on the in-memory store.
DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME", "movie-system")
DATABASE_TIMEOUT_MS = int(os.getenv("DATABASE_TIMEOUT_MS", 5000))

# Sessions
SESSION_SECRET = os.getenv("SESSION_SECRET", "change-me-session-secret")
SESSION_COOKIE = os.getenv("SESSION_COOKIE", "movieSystem.sid")
SESSION_MAX_AGE = int(os.getenv("SESSION_MAX_AGE", 24 * 60 * 60))

# Account seeded on first boot of an empty manager collection
DEFAULT_MANAGER_USERNAME = os.getenv("DEFAULT_MANAGER_USERNAME", "test")
DEFAULT_MANAGER_PASSWORD = os.getenv("DEFAULT_MANAGER_PASSWORD", "test123")
DEFAULT_MANAGER_EMAIL = os.getenv("DEFAULT_MANAGER_EMAIL", "test@movie-system.com")
DEFAULT_MANAGER_ROLE = os.getenv("DEFAULT_MANAGER_ROLE", "superadmin")

# Movie defaults
DEFAULT_LANGUAGE = os.getenv("DEFAULT_LANGUAGE", "English")
DEFAULT_THEATER_LOCATION = os.getenv("DEFAULT_THEATER_LOCATION", "Hong Kong")


def is_development() -> bool:
    return ENVIRONMENT.lower() == "development"
