"""SQLAlchemy-backed record store."""

import json
import logging
from datetime import datetime, timezone
from typing import List, Optional, Tuple

import structlog
from sqlalchemy import delete, select
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from dealflow.core.exceptions import StoreWriteError
from dealflow.models.record import RecordRow
from dealflow.stores.base import Record

logger = structlog.get_logger(__name__)

# Transient database errors (locked sqlite file, dropped connection)
write_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=0.2, min=0.2, max=2),
    retry=retry_if_exception_type(OperationalError),
    before_sleep=before_sleep_log(logging.getLogger(__name__), logging.WARNING),
    reraise=True,
)


class SqlRecordStore:
    """RecordStore over a single ``records`` key/value table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory
        self.logger = logger.bind(service="sql_record_store")

    async def put(self, key: str, record: Record) -> None:
        payload = json.dumps(record, sort_keys=True)
        try:
            await self._put(key, payload)
        except SQLAlchemyError as e:
            self.logger.error("record_write_failed", key=key, error=str(e))
            raise StoreWriteError(key, str(e)) from e

    @write_retry
    async def _put(self, key: str, payload: str) -> None:
        async with self.session_factory() as session:
            await session.merge(
                RecordRow(key=key, value=payload, updated_at=datetime.now(timezone.utc))
            )
            await session.commit()

    async def get(self, key: str) -> Optional[Record]:
        async with self.session_factory() as session:
            row = await session.get(RecordRow, key)
            return json.loads(row.value) if row is not None else None

    async def scan(self, prefix: str) -> List[Tuple[str, Record]]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(RecordRow)
                .where(RecordRow.key.startswith(prefix, autoescape=True))
                .order_by(RecordRow.key)
            )
            return [(row.key, json.loads(row.value)) for row in result.scalars().all()]

    async def delete(self, key: str) -> bool:
        try:
            return await self._delete(key)
        except SQLAlchemyError as e:
            self.logger.error("record_delete_failed", key=key, error=str(e))
            raise StoreWriteError(key, str(e)) from e

    @write_retry
    async def _delete(self, key: str) -> bool:
        async with self.session_factory() as session:
            result = await session.execute(delete(RecordRow).where(RecordRow.key == key))
            await session.commit()
            return result.rowcount > 0
