"""
Infrastructure Layer

Redis-backed cache, version store and job queue, plus monitoring.
"""
