"""
api/limiter.py -- Shared slowapi rate limiter instance.

api/main.py mounts it as middleware; the v1 route modules decorate handlers
with @limiter.limit(). One shared instance means one counter store, so limits
hold across every router. Keys are the client address.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")
