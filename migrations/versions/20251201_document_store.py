"""Tenant-scoped document store for CRM entities and associations

Revision ID: 20251201_document_store
Revises:
Create Date: 2025-12-01
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "20251201_document_store"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "documents",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("tenant_id", sa.String(length=128), nullable=False),
        sa.Column("collection", sa.String(length=128), nullable=False),
        sa.Column("document_id", sa.String(length=255), nullable=False),
        sa.Column(
            "data",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("TIMEZONE('utc', now())"),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("TIMEZONE('utc', now())"),
        ),
        sa.UniqueConstraint(
            "tenant_id",
            "collection",
            "document_id",
            name="uq_document_tenant_collection_id",
        ),
    )
    op.create_index("ix_documents_tenant_id", "documents", ["tenant_id"])
    op.create_index("ix_documents_tenant_collection", "documents", ["tenant_id", "collection"])

    # Association lookups filter on these keys inside crm_associations.
    op.execute(
        """
        CREATE INDEX ix_documents_association_source
        ON documents (tenant_id, (data->>'sourceEntityType'), (data->>'sourceEntityId'))
        WHERE collection = 'crm_associations'
        """
    )
    op.execute(
        """
        CREATE INDEX ix_documents_association_target
        ON documents (tenant_id, (data->>'targetEntityType'), (data->>'targetEntityId'))
        WHERE collection = 'crm_associations'
        """
    )


def downgrade() -> None:
    op.execute("DROP INDEX IF EXISTS ix_documents_association_target")
    op.execute("DROP INDEX IF EXISTS ix_documents_association_source")
    op.drop_index("ix_documents_tenant_collection", table_name="documents")
    op.drop_index("ix_documents_tenant_id", table_name="documents")
    op.drop_table("documents")
