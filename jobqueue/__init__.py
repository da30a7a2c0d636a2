"""
MongoDB Job Queue

A durable, concurrency-safe job queue backed by a document store. Workers
claim jobs under time-bounded leases, renew them with heartbeats, and
complete or fail them through single-document conditional updates.
"""

__version__ = "1.0.0"
