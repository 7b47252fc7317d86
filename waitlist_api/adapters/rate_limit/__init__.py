"""Rate limiting adapters.

This package provides a small abstraction layer so the API can prefer a
shared Redis sliding window and transparently degrade to an in-memory limiter
when the shared store is missing or unreachable.
"""
