"""Service client helpers shared by adapters."""

from .http import HttpServiceClient
from .polling import next_backoff, poll_until

__all__ = ["HttpServiceClient", "next_backoff", "poll_until"]
