"""Rate limiting for the polling endpoints.

Signed provider webhooks are never throttled: Telnyx retries a 429 and
a burst of calls would lose events.
"""

from __future__ import annotations

from slowapi import Limiter
from slowapi.util import get_remote_address


# Rate limiter instance - shared across the application
limiter = Limiter(key_func=get_remote_address)


class RateLimits:
    """Rate limit constants for different endpoint types."""

    # Health checks (allow frequent polling)
    HEALTH = "300/minute"
