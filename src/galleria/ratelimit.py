"""Rate limiting setup using slowapi (in-memory, per process)."""

from slowapi import Limiter
from slowapi.util import get_remote_address

limiter = Limiter(key_func=get_remote_address)

THUMBNAIL_RATE_LIMIT = "600/minute"
LIKE_RATE_LIMIT = "60/minute"
