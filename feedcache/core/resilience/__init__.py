from feedcache.core.resilience.fail_soft import Result, fail_soft

__all__ = ["Result", "fail_soft"]
