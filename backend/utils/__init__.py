from .logger import setup_logging, get_logger, scheduler_logger, feed_logger, store_logger, api_logger
from .rate_limiter import RateLimiter, rate_limiter, endpoint_for_url
from .utcnow import utcnow, as_naive_utc, day_bucket, day_start, to_iso

__all__ = [
    # Logger
    "setup_logging",
    "get_logger",
    "scheduler_logger",
    "feed_logger",
    "store_logger",
    "api_logger",

    # Rate Limiter
    "RateLimiter",
    "rate_limiter",
    "endpoint_for_url",

    # Time
    "utcnow",
    "as_naive_utc",
    "day_bucket",
    "day_start",
    "to_iso",
]
