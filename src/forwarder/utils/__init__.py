"""Utility modules for the forwarder."""

from forwarder.utils.ratelimit import AsyncRateLimiter

__all__ = ["AsyncRateLimiter"]
