"""create image, signature, stream and audit tables

Revision ID: 001
Revises:
Create Date: 2026-10-18 00:00:00
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "images",
        sa.Column("name", sa.String(length=256), primary_key=True),
        sa.Column("docker_image_reference", sa.String(length=1024), nullable=False),
        sa.Column("docker_image_metadata", sa.JSON(), nullable=False),
        sa.Column("docker_image_metadata_version", sa.String(length=16), nullable=False),
        sa.Column("docker_image_manifest", sa.Text(), nullable=False),
        sa.Column("docker_image_manifest_media_type", sa.String(length=256), nullable=False),
        sa.Column("docker_image_layers", sa.JSON(), nullable=False),
        sa.Column("docker_image_signatures", sa.JSON(), nullable=False),
        sa.Column("docker_image_config", sa.Text(), nullable=True),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
    )

    op.create_table(
        "image_signatures",
        sa.Column("name", sa.String(length=512), primary_key=True),
        sa.Column(
            "image_name",
            sa.String(length=256),
            sa.ForeignKey("images.name", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("type", sa.String(length=64), nullable=False),
        sa.Column("content", sa.LargeBinary(), nullable=False),
        sa.Column("conditions", sa.JSON(), nullable=False),
        sa.Column("image_identity", sa.String(length=1024), nullable=True),
        sa.Column("signed_claims", sa.JSON(), nullable=False),
        sa.Column("signed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("issued_by", sa.JSON(), nullable=True),
        sa.Column("issued_to", sa.JSON(), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
    )
    op.create_index("ix_image_signatures_image_name", "image_signatures", ["image_name"])

    op.create_table(
        "image_streams",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column("namespace", sa.String(length=253), nullable=False),
        sa.Column("name", sa.String(length=253), nullable=False),
        sa.Column("generation", sa.Integer(), nullable=False),
        sa.Column("resource_version", sa.Integer(), nullable=False),
        sa.Column("annotations", sa.JSON(), nullable=False),
        sa.Column("spec", sa.JSON(), nullable=False),
        sa.Column("status", sa.JSON(), nullable=False),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.UniqueConstraint("namespace", "name", name="uq_image_streams_namespace_name"),
    )
    op.create_index("ix_image_streams_namespace", "image_streams", ["namespace"])
    op.create_index("ix_image_streams_updated_at", "image_streams", ["updated_at"])

    actor_kind = sa.Enum("human", "controller", "system", name="audit_actor_kind")
    action = sa.Enum(
        "created", "updated", "status_changed", "deleted", "tagged", "pruned",
        name="audit_action",
    )
    op.create_table(
        "audit_log",
        sa.Column("id", sa.String(length=36), primary_key=True),
        sa.Column(
            "ts", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.Column("actor_kind", actor_kind, nullable=False),
        sa.Column("actor_id", sa.String(length=128), nullable=False),
        sa.Column("action", action, nullable=False),
        sa.Column("entity_kind", sa.String(length=50), nullable=False),
        sa.Column("entity_id", sa.String(length=512), nullable=False),
        sa.Column("before", sa.JSON(), nullable=True),
        sa.Column("after", sa.JSON(), nullable=True),
        sa.Column("note", sa.Text(), nullable=True),
        sa.Column("trace_id", sa.String(length=36), nullable=True),
    )
    op.create_index("ix_audit_log_ts", "audit_log", ["ts"])
    op.create_index("ix_audit_log_actor_id", "audit_log", ["actor_id"])
    op.create_index("ix_audit_log_action", "audit_log", ["action"])
    op.create_index("ix_audit_log_entity_kind", "audit_log", ["entity_kind"])
    op.create_index("ix_audit_log_entity_id", "audit_log", ["entity_id"])
    op.create_index("ix_audit_log_trace_id", "audit_log", ["trace_id"])
    op.create_index("ix_audit_log_entity", "audit_log", ["entity_kind", "entity_id"])
    op.create_index("ix_audit_log_entity_ts", "audit_log", ["entity_kind", "entity_id", "ts"])


def downgrade() -> None:
    op.drop_table("audit_log")
    sa.Enum(name="audit_action").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="audit_actor_kind").drop(op.get_bind(), checkfirst=True)
    op.drop_table("image_streams")
    op.drop_table("image_signatures")
    op.drop_table("images")
