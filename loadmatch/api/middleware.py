"""Shared slowapi limiter; routes decorate with ``@limiter.limit``."""

from slowapi import Limiter
from slowapi.util import get_remote_address

from loadmatch.config import settings

limiter = Limiter(key_func=get_remote_address, default_limits=[settings.rate_limit])
