"""Backends for the passwords table."""
from .base import RecordStore
from .memory import MemoryRecordStore
from .dynamodb import DynamoRecordStore
from .postgres import PostgresRecordStore

__all__ = [
    "RecordStore",
    "MemoryRecordStore",
    "DynamoRecordStore",
    "PostgresRecordStore",
]
