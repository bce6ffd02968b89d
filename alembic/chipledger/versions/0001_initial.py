"""initial chipledger schema

Revision ID: 0001_chipledger
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "0001_chipledger"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("first_name", sa.String(), nullable=True),
        sa.Column("last_name", sa.String(), nullable=True),
        sa.Column("role", sa.String(), nullable=False, server_default="USER"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("email_verified", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "pets",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("owner_user_id", sa.String(), nullable=False),
        sa.Column("microchip_number", sa.String(length=16), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("species", sa.String(), nullable=False),
        sa.Column("breed", sa.String(), nullable=False),
        sa.Column("color", sa.String(), nullable=False),
        sa.Column("sex", sa.String(), nullable=False),
        sa.Column("neutered", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("date_of_birth", sa.Date(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("status", sa.String(), nullable=False, server_default="active"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(["owner_user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_pets_owner_user_id", "pets", ["owner_user_id"])
    op.create_index("ix_pets_microchip_number", "pets", ["microchip_number"], unique=True)

    op.create_table(
        "registration_credits",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("owner_user_id", sa.String(), nullable=False),
        sa.Column("external_payment_reference", sa.String(), nullable=False),
        sa.Column("amount_pence", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("consumed_by_pet_id", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(["owner_user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["consumed_by_pet_id"], ["pets.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("external_payment_reference"),
    )
    op.create_index("ix_registration_credits_owner_user_id", "registration_credits", ["owner_user_id"])
    op.create_index(
        "ix_registration_credits_consumed_by_pet_id",
        "registration_credits",
        ["consumed_by_pet_id"],
        unique=True,
    )
    # Serves the FIFO "oldest available credit" lookup.
    op.create_index(
        "ix_registration_credits_available",
        "registration_credits",
        ["owner_user_id", "created_at", "id"],
        postgresql_where=sa.text("consumed_by_pet_id IS NULL"),
    )

    op.create_table(
        "promo_codes",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("code", sa.String(), nullable=False),
        sa.Column("max_uses", sa.Integer(), nullable=True),
        sa.Column("used_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("max_uses IS NULL OR used_count <= max_uses", name="ck_promo_codes_cap"),
    )
    op.create_index("ix_promo_codes_code", "promo_codes", ["code"], unique=True)

    op.create_table(
        "transfer_requests",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("pet_id", sa.String(), nullable=False),
        sa.Column("from_user_id", sa.String(), nullable=False),
        sa.Column("to_user_id", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(["pet_id"], ["pets.id"]),
        sa.ForeignKeyConstraint(["from_user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["to_user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("status IN ('pending', 'accepted', 'rejected')", name="ck_transfer_requests_status"),
    )
    op.create_index("ix_transfer_requests_pet_id", "transfer_requests", ["pet_id"])
    op.create_index("ix_transfer_requests_from_user_id", "transfer_requests", ["from_user_id"])
    op.create_index("ix_transfer_requests_to_user_id", "transfer_requests", ["to_user_id"])
    op.create_index("ix_transfer_requests_status", "transfer_requests", ["status"])
    op.create_index(
        "uq_transfer_requests_pending_pet",
        "transfer_requests",
        ["pet_id"],
        unique=True,
        postgresql_where=sa.text("status = 'pending'"),
    )

    op.create_table(
        "transfer_payments",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("transfer_request_id", sa.String(), nullable=False),
        sa.Column("external_payment_reference", sa.String(), nullable=False),
        sa.Column("amount_pence", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(["transfer_request_id"], ["transfer_requests.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("transfer_request_id"),
        sa.UniqueConstraint("external_payment_reference"),
    )

    op.create_table(
        "outbox_events",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("aggregate_type", sa.String(), nullable=False),
        sa.Column("aggregate_id", sa.String(), nullable=False),
        sa.Column("event_type", sa.String(), nullable=False),
        sa.Column("topic", sa.String(), nullable=False),
        sa.Column("payload", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("claimed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_outbox_events_aggregate_id", "outbox_events", ["aggregate_id"])
    op.create_index("ix_outbox_events_event_type", "outbox_events", ["event_type"])
    op.create_index("ix_outbox_events_status", "outbox_events", ["status"])


def downgrade() -> None:
    op.drop_index("ix_outbox_events_status", table_name="outbox_events")
    op.drop_index("ix_outbox_events_event_type", table_name="outbox_events")
    op.drop_index("ix_outbox_events_aggregate_id", table_name="outbox_events")
    op.drop_table("outbox_events")
    op.drop_table("transfer_payments")
    op.drop_index("uq_transfer_requests_pending_pet", table_name="transfer_requests")
    op.drop_index("ix_transfer_requests_status", table_name="transfer_requests")
    op.drop_index("ix_transfer_requests_to_user_id", table_name="transfer_requests")
    op.drop_index("ix_transfer_requests_from_user_id", table_name="transfer_requests")
    op.drop_index("ix_transfer_requests_pet_id", table_name="transfer_requests")
    op.drop_table("transfer_requests")
    op.drop_index("ix_promo_codes_code", table_name="promo_codes")
    op.drop_table("promo_codes")
    op.drop_index("ix_registration_credits_available", table_name="registration_credits")
    op.drop_index("ix_registration_credits_consumed_by_pet_id", table_name="registration_credits")
    op.drop_index("ix_registration_credits_owner_user_id", table_name="registration_credits")
    op.drop_table("registration_credits")
    op.drop_index("ix_pets_microchip_number", table_name="pets")
    op.drop_index("ix_pets_owner_user_id", table_name="pets")
    op.drop_table("pets")
    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")
