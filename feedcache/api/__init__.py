"""
HTTP API

Operational surface of the service: health, job control, cache statistics,
manual invalidation and Prometheus metrics.
"""
