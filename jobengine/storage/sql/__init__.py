"""
SQL storage backend.
Contains the jobs table model, engine helpers and the storage implementation.
"""

from jobengine.storage.sql.connection import create_engine, create_session_factory
from jobengine.storage.sql.models import Base, JobRecord
from jobengine.storage.sql.storage import SqlStorage

__all__ = [
    "SqlStorage",
    "JobRecord",
    "Base",
    "create_engine",
    "create_session_factory",
]
