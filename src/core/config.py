"""
Service configuration - environment driven, loaded once at import.
"""

import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

# Database path configuration
DB_PATH = os.getenv("DB_PATH", "./data/hs_verifier.db")

# Debug flag is now a function to be dynamic
DEBUG = os.getenv("DEBUG", "false").lower() == "true"

# Upstream nomenclature provider (paginated tree API)
UPSTREAM_BASE_URL = os.getenv(
    "UPSTREAM_BASE_URL",
    "https://ext-isztar4.mf.gov.pl/tariff/rest/goods-nomenclature/codes"
)
UPSTREAM_TOTAL_PAGES = int(os.getenv("UPSTREAM_TOTAL_PAGES", "21"))
UPSTREAM_PAGE_DELAY_SEC = float(os.getenv("UPSTREAM_PAGE_DELAY_SEC", "2.0"))
UPSTREAM_TIMEOUT_SEC = float(os.getenv("UPSTREAM_TIMEOUT_SEC", "60"))

# Code table cache
CACHE_TTL_SEC = int(os.getenv("CACHE_TTL_SEC", "300"))

# Restriction lists (sanctions / SANEPID)
STATUS_CODE_LENGTH = int(os.getenv("STATUS_CODE_LENGTH", "4"))

# Administrative access - both required for their endpoints to accept requests
SYNC_TOKEN = os.getenv("SYNC_TOKEN")
ADMIN_TOKEN = os.getenv("ADMIN_TOKEN")

ALLOWED_ORIGINS = [o.strip() for o in os.getenv("ALLOWED_ORIGINS", "*").split(",") if o.strip()]

# Scheduled sync (default disabled)
SYNC_SCHEDULE_ENABLED = os.getenv("SYNC_SCHEDULE_ENABLED", "false").lower() == "true"
SYNC_INTERVAL_SEC = int(os.getenv("SYNC_INTERVAL_SEC", "86400"))  # Daily

# Upper bound on one sync run; a crashed holder blocks others no longer than this
SYNC_LEASE_TTL_SEC = int(os.getenv("SYNC_LEASE_TTL_SEC", "3600"))

# Version string
VERSION = "1.4.3"

# Store keys
CURRENT_TABLE_KEY = "HS_CURRENT_DATABASE"
BACKUP_TABLE_KEY = "HS_PREVIOUS_DATABASE"
METADATA_KEY = "HS_METADATA"
SANCTIONS_KEY = "HS_SANCTIONS"
SANEPID_KEY = "HS_SANEPID"


def debug_enabled():
    """Check if debug mode is enabled."""
    return os.getenv("DEBUG", "false").lower() == "true"


def ensure_db_directory(db_path: str = None):
    """Ensure the database directory exists."""
    Path(db_path or DB_PATH).parent.mkdir(parents=True, exist_ok=True)


def is_sync_schedule_enabled():
    """Check if the scheduled sync is enabled."""
    return SYNC_SCHEDULE_ENABLED


def get_sync_interval():
    """Get scheduled sync interval in seconds."""
    return SYNC_INTERVAL_SEC


def validate_sync_config():
    """Validate sync configuration and return any issues."""
    issues = []

    if not UPSTREAM_BASE_URL:
        issues.append("UPSTREAM_BASE_URL must be set")

    if UPSTREAM_TOTAL_PAGES < 1:
        issues.append("UPSTREAM_TOTAL_PAGES must be >= 1")

    if UPSTREAM_PAGE_DELAY_SEC < 0:
        issues.append("UPSTREAM_PAGE_DELAY_SEC must be >= 0")

    if SYNC_INTERVAL_SEC < 1:
        issues.append("SYNC_INTERVAL_SEC must be >= 1")

    if SYNC_LEASE_TTL_SEC < 1:
        issues.append("SYNC_LEASE_TTL_SEC must be >= 1")

    return issues
