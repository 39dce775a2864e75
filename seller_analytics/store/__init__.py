"""
Event Store Adapters
"""
from .memory import InMemoryEventStore
from .sql import SqlEventStore, create_schema

__all__ = [
    "InMemoryEventStore",
    "SqlEventStore",
    "create_schema",
]
