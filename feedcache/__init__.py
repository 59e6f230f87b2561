"""
feedcache

Versioned cache and recommendation-refresh service:
- Semantic-versioned cache entries with a bounded process-local mirror
- Read-through cache facade with hit/miss monitoring
- Operation-driven cache invalidation
- Periodic hot-score recompute with a durable retry queue
- Cron orchestration of recompute jobs

Author: System Architect
Date: 2025-12-05
"""

__version__ = "1.0.0"
