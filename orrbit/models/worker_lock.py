"""
Lease rows used by the database-backed worker run lock.
"""

from datetime import datetime

from sqlalchemy import DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from .base import BaseModel


class WorkerLock(BaseModel):
    __tablename__ = "worker_locks"

    name: Mapped[str] = mapped_column(String(100), primary_key=True)

    owner: Mapped[str] = mapped_column(String(64), comment="Token of the holder")

    acquired_at: Mapped[datetime] = mapped_column(DateTime)

    expires_at: Mapped[datetime] = mapped_column(
        DateTime,
        comment="Lease end; an expired lease may be taken over"
    )
