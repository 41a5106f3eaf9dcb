"""Rate limiting configuration using slowapi.

The module-level Limiter is wired into the FastAPI app in main.py; operator
endpoints that kick off heavy work (the manual reconciliation trigger)
apply a tighter per-route limit with ``@limiter.limit``.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

# Default: 60 requests/minute per client IP for all endpoints.
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=["60/minute"],
)

MANUAL_JOB_TRIGGER_LIMIT = "5/minute"
