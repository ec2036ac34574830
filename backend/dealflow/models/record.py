"""Key/value row backing the SQL record store."""

from datetime import datetime

from sqlalchemy import DateTime, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from dealflow.models.base import Base


class RecordRow(Base):
    """One JSON-encoded record under a namespaced key.

    Keys look like ``offer:{fingerprint}``, ``price:{fingerprint}`` or
    ``job:{name}``; prefix scans rely on the primary key index.
    """

    __tablename__ = "records"

    key: Mapped[str] = mapped_column(String(512), primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False, comment="JSON document")
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
