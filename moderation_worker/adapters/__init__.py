"""
Adapter pattern implementations for object storage, job state and
moderated video records.

This module provides abstract base classes and concrete implementations
for object storage (S3, local disk) and state backends (in-memory, Postgres).
"""

from .base import StorageAdapter, JobStore, VideoRepository
from .memory_adapter import MemoryJobStore, MemoryVideoRepository
from .local_adapter import LocalStorageAdapter

__all__ = [
    'StorageAdapter',
    'JobStore',
    'VideoRepository',
    'MemoryJobStore',
    'MemoryVideoRepository',
    'LocalStorageAdapter'
]
