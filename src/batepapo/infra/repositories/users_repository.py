"""Users and organization membership lookups.

Uses raw SQL with psycopg2 (no ORM).
"""

from psycopg2.extensions import cursor as PgCursor


def get_user_by_subject(cur: PgCursor, external_subject: str) -> tuple | None:
    """Fetch (id, external_subject, email, name) for an OIDC subject."""
    cur.execute(
        "SELECT id, external_subject, email, name FROM users WHERE external_subject = %s",
        (external_subject,),
    )
    return cur.fetchone()


def get_member_role(cur: PgCursor, *, user_id: str, organization_id: str) -> str | None:
    """Role of a user in an organization, None when not a member."""
    cur.execute(
        """
        SELECT role FROM organization_members
        WHERE user_id = %s AND organization_id = %s
        """,
        (user_id, organization_id),
    )
    row = cur.fetchone()
    return row[0] if row else None


def list_memberships(cur: PgCursor, *, user_id: str) -> list[dict]:
    """Organizations a user belongs to, with role, ordered by organization name."""
    cur.execute(
        """
        SELECT o.id, o.name, m.role
        FROM organization_members m
        JOIN organizations o ON o.id = m.organization_id
        WHERE m.user_id = %s
        ORDER BY o.name
        """,
        (user_id,),
    )
    return [
        {"organization_id": str(row[0]), "name": row[1], "role": row[2]}
        for row in cur.fetchall()
    ]
