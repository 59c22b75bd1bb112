"""
Shared Flask extension instances.

Centralized to avoid circular imports. Extensions are initialized
here but configured in create_app().
"""

import os
from flask_wtf import CSRFProtect
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address

from app.utils.backend_client import Backend

# Initialize extensions (without binding to an app yet)
csrf = CSRFProtect()
backend = Backend()


# Initialize rate limiter
# Uses proxy-aware IP detection for accurate rate limiting
def get_real_ip_for_limiter():
    """Get real IP for rate limiting, handling reverse proxies."""
    try:
        from flask import request
        real_ip = request.headers.get('CF-Connecting-IP')
        if real_ip:
            return real_ip
        forwarded_for = request.headers.get('X-Forwarded-For')
        if forwarded_for:
            return forwarded_for.split(',')[0].strip()
        return request.remote_addr
    except RuntimeError:
        return get_remote_address()


# Use memory storage in CI/testing environments, Redis when configured
if os.environ.get('RATELIMIT_STORAGE_URI'):
    storage_uri = os.environ.get('RATELIMIT_STORAGE_URI')
elif os.environ.get('CI') or os.environ.get('GITHUB_ACTIONS'):
    storage_uri = 'memory://'
elif os.environ.get('REDIS_URL'):
    storage_uri = os.environ.get('REDIS_URL')
else:
    storage_uri = 'memory://'

limiter = Limiter(
    key_func=get_real_ip_for_limiter,
    default_limits=["2000 per day", "500 per hour"],
    storage_uri=storage_uri,
    strategy="fixed-window"
)
