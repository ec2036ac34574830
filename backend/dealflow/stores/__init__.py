"""Record store implementations."""

from dealflow.stores.base import JOB_PREFIX, OFFER_PREFIX, PRICE_PREFIX, Record, RecordStore
from dealflow.stores.memory import MemoryRecordStore
from dealflow.stores.sql import SqlRecordStore

__all__ = [
    "JOB_PREFIX",
    "OFFER_PREFIX",
    "PRICE_PREFIX",
    "Record",
    "RecordStore",
    "MemoryRecordStore",
    "SqlRecordStore",
]
