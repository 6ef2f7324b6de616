"""Rate limiting via slowapi.

A module-level Limiter shared by routers (``@limiter.limit``) and wired into
the app in main.py. The escalation cron endpoint is the main consumer.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

# Per client IP; routes override with @limiter.limit("N/period")
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=["120/minute"],
)
