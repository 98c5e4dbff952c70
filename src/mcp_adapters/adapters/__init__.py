"""Adapters built on the capability core."""
