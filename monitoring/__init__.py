"""Prometheus metrics for the RPC cache."""
