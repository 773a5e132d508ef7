from __future__ import annotations

from sqlmodel import SQLModel

from alembic import op
from samap.db.base import *  # noqa: F401,F403 registra las tablas en SQLModel.metadata

# revision identifiers, used by Alembic.
revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None

TABLES = (
    "clients",
    "plans",
    "templates",
    "sales",
    "template_responses",
    "documents",
    "document_packages",
    "document_package_items",
    "signature_links",
    "process_traces",
    "notification_logs",
)


def upgrade() -> None:
    bind = op.get_bind()
    tables = [SQLModel.metadata.tables[name] for name in TABLES]
    SQLModel.metadata.create_all(bind=bind, tables=tables)


def downgrade() -> None:
    bind = op.get_bind()
    tables = [SQLModel.metadata.tables[name] for name in TABLES]
    SQLModel.metadata.drop_all(bind=bind, tables=tables)
