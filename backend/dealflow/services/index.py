"""In-memory scored index keyed by fingerprint, written through to the store."""

import asyncio
from datetime import datetime
from typing import Dict, Iterable, List, Optional

import structlog

from dealflow.core.exceptions import StoreWriteError
from dealflow.domain.offers import ScoredOffer
from dealflow.stores.base import OFFER_PREFIX, RecordStore

logger = structlog.get_logger(__name__)


class ScoredIndex:
    """Latest ScoredOffer per fingerprint.

    ScoredOffers are immutable and the mapping is replaced entry by entry, so
    readers never observe a partially written record. Writers are serialized
    and the last write for a fingerprint wins.
    """

    def __init__(self, store: Optional[RecordStore] = None):
        self.store = store
        self._offers: Dict[str, ScoredOffer] = {}
        self._write_lock = asyncio.Lock()
        self.logger = logger.bind(service="scored_index")

    def __len__(self) -> int:
        return len(self._offers)

    def __contains__(self, fingerprint: str) -> bool:
        return fingerprint in self._offers

    def get(self, fingerprint: str) -> Optional[ScoredOffer]:
        return self._offers.get(fingerprint)

    def all(self) -> List[ScoredOffer]:
        """Point-in-time snapshot of every indexed offer."""
        return list(self._offers.values())

    async def load(self) -> int:
        """Warm the index from the record store."""
        if self.store is None:
            return 0
        records = await self.store.scan(OFFER_PREFIX)
        async with self._write_lock:
            for _key, record in records:
                scored = ScoredOffer.from_record(record)
                self._offers[scored.fingerprint] = scored
        self.logger.info("scored_index_loaded", count=len(records))
        return len(records)

    async def put_many(self, offers: Iterable[ScoredOffer]) -> int:
        """Index a batch of scored offers.

        Every offer lands in memory before anything is persisted. A store
        refusal is raised once the whole batch has been attempted.

        Returns:
            Number of offers written

        Raises:
            StoreWriteError: First write the record store refused
        """
        batch = list(offers)
        failure: Optional[StoreWriteError] = None

        async with self._write_lock:
            for scored in batch:
                self._offers[scored.fingerprint] = scored

            if self.store is not None:
                for scored in batch:
                    try:
                        await self.store.put(f"{OFFER_PREFIX}{scored.fingerprint}", scored.to_record())
                    except StoreWriteError as e:
                        self.logger.error(
                            "scored_offer_persist_failed",
                            fingerprint=scored.fingerprint,
                            error=str(e),
                        )
                        failure = failure or e

        if failure is not None:
            raise failure
        return len(batch)

    async def put(self, scored: ScoredOffer) -> None:
        await self.put_many([scored])

    async def evict_older_than(self, cutoff: datetime) -> int:
        """Remove offers last observed before ``cutoff``.

        Returns:
            Number of offers evicted
        """
        async with self._write_lock:
            stale = [
                fingerprint
                for fingerprint, scored in self._offers.items()
                if scored.offer.fetched_at < cutoff
            ]
            for fingerprint in stale:
                del self._offers[fingerprint]
                if self.store is not None:
                    await self.store.delete(f"{OFFER_PREFIX}{fingerprint}")

        if stale:
            self.logger.info("stale_offers_evicted", count=len(stale), cutoff=cutoff.isoformat())
        return len(stale)
