from scan_gateway.utils.content_hash import (
    build_cache_key,
    canonicalize_payload,
    generate_content_hash,
    language_family,
    normalize_text,
)
from scan_gateway.utils.time_buckets import day_bucket, hour_bucket, month_bucket, utc_now

__all__ = [
    "build_cache_key",
    "canonicalize_payload",
    "generate_content_hash",
    "language_family",
    "normalize_text",
    "day_bucket",
    "hour_bucket",
    "month_bucket",
    "utc_now",
]
