"""SQLAlchemy ORM models."""

from dealflow.models.base import Base
from dealflow.models.record import RecordRow

__all__ = ["Base", "RecordRow"]
