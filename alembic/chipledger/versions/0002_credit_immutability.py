"""freeze consumed registration credits

Revision ID: 0002_credit_immutability
Revises: 0001_chipledger
Create Date: 2026-10-19
"""

from alembic import op


revision = "0002_credit_immutability"
down_revision = "0001_chipledger"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.execute(
        """
        CREATE OR REPLACE FUNCTION prevent_credit_mutation()
        RETURNS trigger
        LANGUAGE plpgsql
        AS $$
        BEGIN
            IF TG_OP = 'DELETE' THEN
                RAISE EXCEPTION 'registration_credits rows cannot be deleted';
            END IF;
            IF NEW.owner_user_id IS DISTINCT FROM OLD.owner_user_id
               OR NEW.external_payment_reference IS DISTINCT FROM OLD.external_payment_reference
               OR NEW.amount_pence IS DISTINCT FROM OLD.amount_pence
               OR NEW.currency IS DISTINCT FROM OLD.currency THEN
                RAISE EXCEPTION 'registration_credits % is immutable apart from consumption', OLD.id;
            END IF;
            IF OLD.consumed_by_pet_id IS NOT NULL
               AND NEW.consumed_by_pet_id IS DISTINCT FROM OLD.consumed_by_pet_id THEN
                RAISE EXCEPTION 'registration_credits % is already consumed', OLD.id;
            END IF;
            RETURN NEW;
        END;
        $$;
        """
    )
    op.execute(
        """
        CREATE TRIGGER trg_registration_credits_immutable
        BEFORE UPDATE OR DELETE ON registration_credits
        FOR EACH ROW
        EXECUTE FUNCTION prevent_credit_mutation();
        """
    )


def downgrade() -> None:
    op.execute("DROP TRIGGER IF EXISTS trg_registration_credits_immutable ON registration_credits;")
    op.execute("DROP FUNCTION IF EXISTS prevent_credit_mutation();")
