"""
Deedkeeper Database Models

The store is schemaless, so there is a single table: one row per record,
keyed by (collection path, record id), with the record body as JSON.

All datetime columns use DateTime(timezone=True) for proper UTC handling.
"""

from datetime import datetime

from sqlalchemy import JSON, DateTime, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from deedkeeper.core.database import Base
from deedkeeper.core.utc import utc_now

DateTimeTZ = DateTime(timezone=True)


class EntityRecord(Base):
    """
    One record of any collection.

    collection_path is "users", "properties", ... or a subcollection path
    such as "backups/backup_1700000000000/data".
    """
    __tablename__ = "entities"

    collection_path: Mapped[str] = mapped_column(String(255), primary_key=True)
    doc_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    payload: Mapped[dict] = mapped_column(JSON, default=dict)
    updated_at: Mapped[datetime] = mapped_column(DateTimeTZ, default=utc_now, onupdate=utc_now)

    __table_args__ = (
        Index("ix_entities_collection_path", "collection_path"),
    )

    def __repr__(self) -> str:
        return f"<EntityRecord {self.collection_path}/{self.doc_id}>"
