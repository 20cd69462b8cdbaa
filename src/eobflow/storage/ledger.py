"""Per-tenant page credit ledger using psycopg (PostgreSQL)."""

import logging
from uuid import UUID

import psycopg

logger = logging.getLogger(__name__)


# ============================================================================
# Cursor-level operations (compose inside a caller's transaction)
# ============================================================================


def charge_credits(cur: psycopg.Cursor, tenant_id: UUID, amount: int) -> bool:
    """Atomically check and decrement a tenant's balance.

    The tenant row is locked with SELECT ... FOR UPDATE so two concurrent
    charges are serialized; the second one sees the first one's debit.

    Args:
        cur: Cursor bound to an open transaction
        tenant_id: Tenant to charge
        amount: Number of page credits

    Returns:
        bool: True if charged, False if the tenant is unknown or the balance is short
    """
    if amount < 0:
        raise ValueError(f"Charge amount must be non-negative, got {amount}")

    cur.execute("""
        SELECT balance
        FROM tenant_credits
        WHERE tenant_id = %s
        FOR UPDATE
    """, (tenant_id,))
    row = cur.fetchone()

    if row is None:
        logger.warning(f"No credit record for tenant {tenant_id}")
        return False

    if row["balance"] < amount:
        logger.info(f"Insufficient credits for tenant {tenant_id}: balance={row['balance']}, needed={amount}")
        return False

    cur.execute("""
        UPDATE tenant_credits
        SET balance = balance - %s,
            updated_at = now()
        WHERE tenant_id = %s
    """, (amount, tenant_id))
    logger.info(f"Charged {amount} credits to tenant {tenant_id}")
    return True


def refund_credits(cur: psycopg.Cursor, tenant_id: UUID, amount: int) -> int:
    """Add credits back to a tenant's balance.

    Missing tenant rows are logged and ignored so the caller's failure path
    still completes.

    Returns:
        int: Credits actually refunded (0 when the tenant is unknown)
    """
    if amount <= 0:
        return 0

    cur.execute("""
        UPDATE tenant_credits
        SET balance = balance + %s,
            updated_at = now()
        WHERE tenant_id = %s
    """, (amount, tenant_id))

    if cur.rowcount == 0:
        logger.warning(f"Refund of {amount} credits skipped: no credit record for tenant {tenant_id}")
        return 0

    logger.info(f"Refunded {amount} credits to tenant {tenant_id}")
    return amount


# ============================================================================
# Ledger client
# ============================================================================


class CreditLedger:
    """Standalone charge/refund against a DatabaseClient's connection."""

    def __init__(self, db):
        """Initialize ledger.

        Args:
            db: DatabaseClient providing transaction()
        """
        self.db = db

    def charge(self, tenant_id: UUID, amount: int) -> bool:
        with self.db.transaction() as conn:
            with conn.cursor() as cur:
                return charge_credits(cur, tenant_id, amount)

    def refund(self, tenant_id: UUID, amount: int) -> int:
        with self.db.transaction() as conn:
            with conn.cursor() as cur:
                return refund_credits(cur, tenant_id, amount)

    def balance(self, tenant_id: UUID) -> int:
        conn = self.db.connect()
        with conn.cursor() as cur:
            cur.execute("SELECT balance FROM tenant_credits WHERE tenant_id = %s", (tenant_id,))
            row = cur.fetchone()
        conn.commit()
        return row["balance"] if row else 0
