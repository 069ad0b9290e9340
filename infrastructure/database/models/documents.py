from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    DateTime,
    Integer,
    JSON,
    String,
    UniqueConstraint,
    Index,
)
from sqlalchemy.dialects.postgresql import JSONB

from infrastructure.database.database import Base


DocumentData = JSON().with_variant(JSONB(), "postgresql")


class StoredDocument(Base):
    """A single document in the tenant -> collection -> document hierarchy."""

    __tablename__ = "documents"

    id = Column(Integer, primary_key=True, autoincrement=True)
    tenant_id = Column(String(128), nullable=False, index=True)
    collection = Column(String(128), nullable=False)
    document_id = Column(String(255), nullable=False)
    data = Column(DocumentData, nullable=False, default=dict)
    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint(
            "tenant_id",
            "collection",
            "document_id",
            name="uq_document_tenant_collection_id",
        ),
        Index("ix_documents_tenant_collection", "tenant_id", "collection"),
    )
