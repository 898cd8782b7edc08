"""Contacts repository - CRM contacts scoped by organization.

Uses raw SQL with psycopg2 (no ORM).
"""

from psycopg2.extensions import cursor as PgCursor

from batepapo.infra.phone import format_br_phone


def get_contact(cur: PgCursor, *, organization_id: str, contact_id: str) -> dict | None:
    """Fetch a contact within an organization.

    Args:
        cur: Database cursor.
        organization_id: Organization UUID (tenant isolation).
        contact_id: Contact UUID.

    Returns:
        Dict with id, name, phone; None if not found in this organization.
    """
    cur.execute(
        """
        SELECT id, name, phone
        FROM contacts
        WHERE id = %s AND organization_id = %s
        """,
        (contact_id, organization_id),
    )
    row = cur.fetchone()
    if row is None:
        return None
    return {"id": str(row[0]), "name": row[1], "phone": row[2]}


def find_or_create_contact(
    cur: PgCursor,
    *,
    organization_id: str,
    phone: str,
    name: str | None = None,
) -> tuple[str, bool]:
    """Resolve a contact by phone, creating it when missing.

    Contacts typed in by hand may be stored in display form
    ("+55 (11) 99999-9999"), so that form is tried after the canonical one.
    New contacts always get the canonical phone.

    Args:
        cur: Database cursor (must be inside a transaction).
        organization_id: Organization UUID.
        phone: Canonical phone ("+<digits>").
        name: Display name for a new contact. Defaults to the phone.

    Returns:
        Tuple of (contact_id, created).
    """
    candidates = [phone]
    formatted = format_br_phone(phone)
    if formatted != phone:
        candidates.append(formatted)

    for candidate in candidates:
        cur.execute(
            """
            SELECT id FROM contacts
            WHERE organization_id = %s AND phone = %s
            LIMIT 1
            """,
            (organization_id, candidate),
        )
        row = cur.fetchone()
        if row is not None:
            return str(row[0]), False

    cur.execute(
        """
        INSERT INTO contacts (organization_id, phone, name, status)
        VALUES (%s, %s, %s, 'open')
        RETURNING id
        """,
        (organization_id, phone, name or phone),
    )
    return str(cur.fetchone()[0]), True
