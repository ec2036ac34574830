"""Shared helpers for source adapters."""

from dealflow.sources.utils.rate_limiter import RequestThrottle
from dealflow.sources.utils.user_agents import get_random_user_agent

__all__ = ["RequestThrottle", "get_random_user_agent"]
