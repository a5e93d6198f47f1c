"""Internal constants shared across the library."""

CLOUD_API_URL = "https://x-posed-cache.xaitax.workers.dev"

PROVIDER_BASE_URL = "https://x.com/i/api/graphql"
PROVIDER_QUERY_ID = "XRqGa7EeokUU5kppkh13EA"
PROVIDER_OPERATION = "AboutAccountQuery"
PROVIDER_BEARER_TOKEN = (
    "AAAAAAAAAAAAAAAAAAAAANRILgAAAAAAnNwIzUejRCOuH5E6I8xnZz4puTs%3D1Zv7ttfk8LF81IUq16cHjhLTvJu4FA33AGWWjCpTnA"
)
RATE_LIMIT_RESET_HEADER = "x-rate-limit-reset"

# ------------------------------------------------------------------
# Durable store keys
# ------------------------------------------------------------------

HISTORY_STORAGE_KEY = "x_posed_lookup_history"
CLOUD_ENABLED_KEY = "cloud_contribution_enabled"
CLOUD_STATS_KEY = "cloud_stats"

# ------------------------------------------------------------------
# Limits
# ------------------------------------------------------------------

MAX_HISTORY_ENTRIES = 2000
MAX_USERNAME_LENGTH = 50
MAX_CLOUD_TEXT_LENGTH = 100
RATE_WINDOW_MS = 60_000
DEFAULT_RATE_LIMIT_COOLDOWN_MS = 60_000

BACKOFF_BASE_MS = 1000
BACKOFF_MAX_MS = 30_000
# Added on top of the remaining cooldown before a deferred flush retries.
COOLDOWN_RETRY_PADDING_MS = 1000


def backoff_delay_ms(consecutive_failures: int) -> int:
    """Exponential backoff delay for a given failure count.

    ``0, 1, 2, 3`` failures give ``1000, 2000, 4000, 8000`` ms, capped at
    :data:`BACKOFF_MAX_MS`.
    """
    failures = max(0, consecutive_failures)
    # 2**5 already exceeds the cap; avoid building huge ints for long outages.
    if failures >= 5:
        return BACKOFF_MAX_MS
    return min(BACKOFF_BASE_MS * (2**failures), BACKOFF_MAX_MS)
