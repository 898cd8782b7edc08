"""Messages repository - chat history per contact.

Uses raw SQL with psycopg2 (no ORM).

Status lifecycle:
- outbound: sending -> sent | failed
- inbound: received
"""

from psycopg2.extensions import cursor as PgCursor


def insert_message(
    cur: PgCursor,
    *,
    organization_id: str,
    contact_id: str,
    sender_type: str,
    status: str,
    body: str | None = None,
    sender_id: str | None = None,
    media_url: str | None = None,
    media_type: str | None = None,
    whatsapp_id: str | None = None,
) -> str:
    """Insert a chat message.

    Args:
        cur: Database cursor (within transaction).
        organization_id: Organization UUID.
        contact_id: Contact UUID.
        sender_type: 'user' (sent by the CRM side) or 'contact'.
        status: sending, sent, failed or received.
        body: Message text.
        sender_id: User UUID for messages typed by a team member.
        media_url: Media URL for image/audio/document messages.
        media_type: image, audio, document.
        whatsapp_id: Gateway message id, when known.

    Returns:
        The generated message ID.
    """
    cur.execute(
        """
        INSERT INTO messages (
            organization_id, contact_id, sender_type, sender_id,
            body, media_url, media_type, status, whatsapp_id
        )
        VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
        RETURNING id
        """,
        (
            organization_id,
            contact_id,
            sender_type,
            sender_id,
            body,
            media_url,
            media_type,
            status,
            whatsapp_id,
        ),
    )
    return str(cur.fetchone()[0])


def update_message_status(
    cur: PgCursor,
    *,
    message_id: str,
    status: str,
    whatsapp_id: str | None = None,
) -> None:
    """Update delivery status (and gateway id, if provided) of a message."""
    cur.execute(
        """
        UPDATE messages
        SET status = %s, whatsapp_id = COALESCE(%s, whatsapp_id)
        WHERE id = %s
        """,
        (status, whatsapp_id, message_id),
    )
