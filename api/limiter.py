"""
api/limiter.py -- Shared slowapi rate limiter instance.

Import this in both api/main.py (to mount as middleware) and the route
modules under api/routes/ (to apply per-route limits with @limiter.limit()).

Using a single shared instance ensures all routes share the same in-memory
counter store. If this were instantiated in each module separately, each
module would get its own isolated counter and rate limits would never trigger.

The limit strings come from settings (LOGIN_RATE_LIMIT, MFA_RATE_LIMIT) so
operators and the test suite can tune them without code changes. These limits
are per client IP; per-account lockout lives in auth/throttle.py.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings

_settings = get_settings()

LOGIN_LIMIT = _settings.login_rate_limit
MFA_LIMIT = _settings.mfa_rate_limit

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")
