"""WhatsApp instances repository - one gateway instance per organization.

Uses raw SQL with psycopg2 (no ORM).

The unique constraint on organization_id enforces the one-instance-per-tenant
rule; callers still check for an existing row first so they can answer with a
conflict instead of surfacing a constraint violation.

instance_token is read here for server-side gateway calls only. It must never
leave the process through the tenant API.
"""

from dataclasses import dataclass
from datetime import datetime

from psycopg2.extensions import cursor as PgCursor

_COLUMNS = """
    id, organization_id, instance_name, instance_token, status,
    phone_number, webhook_configured, created_at, last_connected_at
"""


@dataclass(frozen=True)
class InstanceRecord:
    """Stored WhatsApp instance row."""

    id: str
    organization_id: str
    instance_name: str
    instance_token: str
    status: str
    phone_number: str | None
    webhook_configured: bool
    created_at: datetime | None
    last_connected_at: datetime | None


def _row_to_record(row: tuple) -> InstanceRecord:
    return InstanceRecord(
        id=str(row[0]),
        organization_id=str(row[1]),
        instance_name=row[2],
        instance_token=row[3],
        status=row[4],
        phone_number=row[5],
        webhook_configured=bool(row[6]),
        created_at=row[7],
        last_connected_at=row[8],
    )


def get_instance_by_org(cur: PgCursor, organization_id: str) -> InstanceRecord | None:
    """Fetch the instance row for an organization.

    Args:
        cur: Database cursor.
        organization_id: Organization UUID.

    Returns:
        InstanceRecord if the organization has an instance, None otherwise.
    """
    cur.execute(
        f"SELECT {_COLUMNS} FROM whatsapp_instances WHERE organization_id = %s",
        (organization_id,),
    )
    row = cur.fetchone()
    return _row_to_record(row) if row else None


def get_instance_by_token(cur: PgCursor, instance_token: str) -> InstanceRecord | None:
    """Fetch the instance row owning a gateway token (webhook resolution)."""
    cur.execute(
        f"SELECT {_COLUMNS} FROM whatsapp_instances WHERE instance_token = %s",
        (instance_token,),
    )
    row = cur.fetchone()
    return _row_to_record(row) if row else None


def insert_instance(
    cur: PgCursor,
    *,
    organization_id: str,
    instance_name: str,
    instance_token: str,
    status: str,
    webhook_configured: bool,
) -> InstanceRecord:
    """Insert a new instance row.

    Args:
        cur: Database cursor (within transaction).
        organization_id: Owning organization UUID.
        instance_name: Gateway-side instance name.
        instance_token: Gateway-assigned bearer token.
        status: Initial status (normally 'connecting').
        webhook_configured: Whether the gateway webhook was registered.

    Returns:
        The inserted InstanceRecord.

    Raises:
        psycopg2.IntegrityError: If the organization already has an instance.
    """
    cur.execute(
        f"""
        INSERT INTO whatsapp_instances (
            organization_id, instance_name, instance_token,
            status, webhook_configured
        )
        VALUES (%s, %s, %s, %s, %s)
        RETURNING {_COLUMNS}
        """,
        (organization_id, instance_name, instance_token, status, webhook_configured),
    )
    return _row_to_record(cur.fetchone())


def update_instance_state(
    cur: PgCursor,
    *,
    instance_id: str,
    status: str,
    phone_number: str | None,
    last_connected_at: datetime | None,
) -> None:
    """Write back status, phone and last_connected_at for an instance."""
    cur.execute(
        """
        UPDATE whatsapp_instances
        SET status = %s, phone_number = %s, last_connected_at = %s, updated_at = now()
        WHERE id = %s
        """,
        (status, phone_number, last_connected_at, instance_id),
    )


def mark_connecting(cur: PgCursor, *, instance_id: str) -> None:
    """Set status to 'connecting' after a fresh connect call."""
    cur.execute(
        """
        UPDATE whatsapp_instances
        SET status = 'connecting', updated_at = now()
        WHERE id = %s
        """,
        (instance_id,),
    )


def mark_disconnected(cur: PgCursor, *, instance_id: str) -> None:
    """Set status to 'disconnected' and clear the phone number."""
    cur.execute(
        """
        UPDATE whatsapp_instances
        SET status = 'disconnected', phone_number = NULL, updated_at = now()
        WHERE id = %s
        """,
        (instance_id,),
    )


def delete_instance(cur: PgCursor, *, instance_id: str) -> None:
    """Delete an instance row by id."""
    cur.execute("DELETE FROM whatsapp_instances WHERE id = %s", (instance_id,))
