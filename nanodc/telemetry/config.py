"""
Process configuration for the NanoDC monitor.

Values that must be known before the settings store exists (where the
remote API lives, which credentials to use, where the settings database is)
come from environment variables. Everything tunable at runtime lives in the
device settings store instead.
"""

import os

API_BASE_URL = os.getenv("NANODC_API_URL", "http://211.176.180.172:8080/api")
API_CLIENT_ID = os.getenv("NANODC_API_ID", "")
API_CLIENT_SECRET = os.getenv("NANODC_API_SECRET", "")

DATABASE_URL = os.getenv("NANODC_DATABASE_URL", "sqlite:///./nanodc_settings.db")

# Optional JSON file with extra slot override tables
OVERRIDES_FILE = os.getenv("NANODC_OVERRIDES_FILE", "")

CORS_ALLOWED_ORIGINS = os.getenv("CORS_ALLOWED_ORIGINS", "http://localhost:8000").split(",")

ENVIRONMENT = os.getenv("ENVIRONMENT", "development")

# Defaults used when the settings store has no value yet
DEFAULT_FACILITY_ID = "GY01"
DEFAULT_REFRESH_INTERVAL_MS = 30000
DEFAULT_API_TIMEOUT_SECONDS = 30
