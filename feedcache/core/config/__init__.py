"""
Configuration Module

Type-safe configuration for the feed cache service.

Components:
-----------
- **settings.py**: Pydantic-based configuration with environment variable loading
- **constants.py**: Key prefixes, enums and defaults

Usage:
------
```python
from feedcache.core.config import get_settings
from feedcache.core.config.constants import JobName, VersionLevel

settings = get_settings()
redis_host = settings.redis.REDIS_HOST
jobs = settings.scheduler.job_definitions()
```

Testing:
-------
```python
import os
from feedcache.core.config import reload_settings

os.environ["CACHE_ENABLED"] = "false"
settings = reload_settings()
assert settings.cache.CACHE_ENABLED is False
```

Author: System Architect
Date: 2025-12-05
"""

from feedcache.core.config.constants import (
    DEFAULT_VERSION,
    VERSION_KEY_PREFIX,
    HotScoreLevel,
    JobName,
    Stage,
    VersionLevel,
)
from feedcache.core.config.settings import Settings, get_settings, reload_settings

__all__ = [
    "Settings",
    "get_settings",
    "reload_settings",
    "Stage",
    "JobName",
    "VersionLevel",
    "HotScoreLevel",
    "VERSION_KEY_PREFIX",
    "DEFAULT_VERSION",
]
