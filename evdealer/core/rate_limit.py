"""
Shared slowapi limiter.

Routers decorate endpoints with ``limiter.limit``; the application wires
the limiter into its state and error handling.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from evdealer.core.config import get_settings

limiter = Limiter(
    key_func=get_remote_address,
    enabled=get_settings().rate_limit_enabled,
)
