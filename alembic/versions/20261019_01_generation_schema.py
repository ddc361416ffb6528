"""Generation jobs, artifacts and credit ledger."""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "20261019_01"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "generation_job",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("account_id", sa.String(length=64), nullable=False),
        sa.Column("provider", sa.String(length=32), nullable=False),
        sa.Column("model_id", sa.String(length=128), nullable=False),
        sa.Column("requested_model", sa.String(length=128), nullable=False),
        sa.Column("media_kind", sa.String(length=16), nullable=False, server_default="video"),
        sa.Column("prompt", sa.Text(), nullable=False),
        sa.Column("parameters_json", sa.Text(), nullable=False, server_default="{}"),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("operation_name", sa.String(length=512)),
        sa.Column("task_id", sa.String(length=128)),
        sa.Column("provider_job_id", sa.String(length=128)),
        sa.Column("location_hint", sa.String(length=512)),
        sa.Column("result_locator", sa.String(length=512)),
        sa.Column("credits_reserved", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("error_kind", sa.String(length=64)),
        sa.Column("error_message", sa.Text()),
        sa.Column("error_remediation_json", sa.Text()),
        sa.Column("fallback_reason", sa.String(length=128)),
        sa.Column(
            "created_at",
            sa.DateTime(),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.Column("completed_at", sa.DateTime()),
    )
    op.create_index("ix_generation_job_account_id", "generation_job", ["account_id"])
    op.create_index("ix_generation_job_status", "generation_job", ["status"])

    op.create_table(
        "media_artifact",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column(
            "generation_id",
            sa.String(length=64),
            sa.ForeignKey("generation_job.id"),
            nullable=False,
        ),
        sa.Column("account_id", sa.String(length=64), nullable=False),
        sa.Column("storage_uri", sa.String(length=512), nullable=False),
        sa.Column("source_locator", sa.String(length=1024)),
        sa.Column("mime_type", sa.String(length=64), nullable=False),
        sa.Column("size_bytes", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_public", sa.Boolean(), nullable=False, server_default=sa.text("FALSE")),
        sa.Column(
            "created_at",
            sa.DateTime(),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.UniqueConstraint("generation_id", name="uq_media_artifact_generation_id"),
    )

    op.create_table(
        "credit_account",
        sa.Column("account_id", sa.String(length=64), primary_key=True),
        sa.Column("balance", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("reserved", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "updated_at",
            sa.DateTime(),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
    )

    op.create_table(
        "credit_ledger_entry",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column(
            "account_id",
            sa.String(length=64),
            sa.ForeignKey("credit_account.account_id"),
            nullable=False,
        ),
        sa.Column("job_id", sa.String(length=64)),
        sa.Column("kind", sa.String(length=16), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("description", sa.String(length=256)),
        sa.Column(
            "created_at",
            sa.DateTime(),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.UniqueConstraint("job_id", "kind", name="uq_credit_ledger_entry_job_kind"),
    )
    op.create_index("ix_credit_ledger_entry_account_id", "credit_ledger_entry", ["account_id"])


def downgrade() -> None:
    op.drop_index("ix_credit_ledger_entry_account_id", table_name="credit_ledger_entry")
    op.drop_table("credit_ledger_entry")
    op.drop_table("credit_account")
    op.drop_table("media_artifact")
    op.drop_index("ix_generation_job_status", table_name="generation_job")
    op.drop_index("ix_generation_job_account_id", table_name="generation_job")
    op.drop_table("generation_job")
