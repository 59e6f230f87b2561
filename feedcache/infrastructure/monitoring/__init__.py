from feedcache.infrastructure.monitoring.cache_monitor import CacheMonitor, MonitorMetric
from feedcache.infrastructure.monitoring.metrics_collector import MetricsCollector

__all__ = ["CacheMonitor", "MonitorMetric", "MetricsCollector"]
