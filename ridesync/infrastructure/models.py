"""
SQLAlchemy ORM models.

Tables
------
* ``documents`` -- every collection (rides, drivers, promos) as JSON
  documents keyed by ``(collection, id)``.

Indexes
-------
* **B-Tree** on ``collection`` and ``updated_at`` for collection scans and
  change-feed catch-up.
"""

from sqlalchemy import JSON, Column, DateTime, Index, String, func

from .database import Base


class DocumentModel(Base):
    __tablename__ = "documents"

    collection = Column(String(64), primary_key=True)
    id = Column(String(128), primary_key=True)
    data = Column(JSON, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index("idx_documents_collection", "collection"),
        Index("idx_documents_updated", "updated_at"),
    )
