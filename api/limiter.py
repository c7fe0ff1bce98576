"""
api/limiter.py -- The process-wide slowapi Limiter.

Route modules decorate handlers with @limiter.limit(...) and api/main.py
mounts SlowAPIMiddleware with this same object on app.state.limiter. There
must be exactly one instance: limits live in its storage, and a second
Limiter would count into a separate, always-empty store.

This is a coarse per-address request throttle (login, register, upload and
the public share endpoints). Credential lockout is a separate concern,
handled by auth.ratelimit.LoginRateLimiter, which counts failures rather than
requests.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")
