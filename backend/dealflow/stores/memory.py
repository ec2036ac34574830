"""In-process record store.

Records are JSON-encoded on write and decoded on read, so callers never
share mutable state with the store and anything that would not survive a
real serialization boundary fails here too.
"""

import json
from typing import Dict, List, Optional, Tuple

from dealflow.stores.base import Record


class MemoryRecordStore:
    """Dict-backed RecordStore for tests and single-process deployments."""

    def __init__(self):
        self._data: Dict[str, str] = {}

    def __len__(self) -> int:
        return len(self._data)

    async def put(self, key: str, record: Record) -> None:
        self._data[key] = json.dumps(record, sort_keys=True)

    async def get(self, key: str) -> Optional[Record]:
        raw = self._data.get(key)
        return json.loads(raw) if raw is not None else None

    async def scan(self, prefix: str) -> List[Tuple[str, Record]]:
        return [
            (key, json.loads(self._data[key]))
            for key in sorted(self._data)
            if key.startswith(prefix)
        ]

    async def delete(self, key: str) -> bool:
        return self._data.pop(key, None) is not None
