"""Central configuration constants for talking to the GitHub REST API."""

from __future__ import annotations

import os

USER_AGENT = "github-search-replace/1.0"
BASE_URL = os.getenv("GITHUB_API_URL", "https://api.github.com").rstrip("/")
PER_PAGE = 100
MAX_SEARCH_PAGES = 10  # GitHub code search never returns more than 1000 results
SEARCH_PAGE_DELAY_SEC = float(os.getenv("SEARCH_PAGE_DELAY_SEC", "1.0"))
REQUEST_TIMEOUT = 90
MAX_RETRIES = int(os.getenv("MAX_RETRIES", "6"))
BACKOFF_BASE_SEC = 2
MAX_WAIT_ON_403 = int(os.getenv("MAX_WAIT_ON_403", "180"))
RATE_LIMIT_TOKEN_RESET_WAIT_SEC = int(
    os.getenv("RATE_LIMIT_TOKEN_RESET_WAIT_SEC", str(60 * 60))
)
RATE_LIMIT_RESERVE = int(os.getenv("RATE_LIMIT_RESERVE", "5"))
DEFAULT_MAX_WORKERS = 4

__all__ = [
    "USER_AGENT",
    "BASE_URL",
    "PER_PAGE",
    "MAX_SEARCH_PAGES",
    "SEARCH_PAGE_DELAY_SEC",
    "REQUEST_TIMEOUT",
    "MAX_RETRIES",
    "BACKOFF_BASE_SEC",
    "MAX_WAIT_ON_403",
    "RATE_LIMIT_TOKEN_RESET_WAIT_SEC",
    "RATE_LIMIT_RESERVE",
    "DEFAULT_MAX_WORKERS",
]
