"""
Storage module.
Contains the storage port and its backends.
"""

from jobengine.storage.base import Storage
from jobengine.storage.memory import MemoryStorage

__all__ = [
    "Storage",
    "MemoryStorage",
]
