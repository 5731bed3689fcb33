"""Proxy configuration and logging setup."""
