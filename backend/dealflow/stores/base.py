"""Pluggable record store interface.

Records are JSON-compatible dicts. Keys follow a ``kind:identity`` layout:
``offer:{fingerprint}``, ``price:{fingerprint}``, ``job:{name}``.
"""

from typing import Any, Dict, List, Optional, Protocol, Tuple, runtime_checkable

Record = Dict[str, Any]

OFFER_PREFIX = "offer:"
PRICE_PREFIX = "price:"
JOB_PREFIX = "job:"


@runtime_checkable
class RecordStore(Protocol):
    async def put(self, key: str, record: Record) -> None:
        ...

    async def get(self, key: str) -> Optional[Record]:
        ...

    async def scan(self, prefix: str) -> List[Tuple[str, Record]]:
        """All (key, record) pairs whose key starts with prefix, ordered by key."""
        ...

    async def delete(self, key: str) -> bool:
        ...
