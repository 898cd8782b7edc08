"""Campaign queue repository - per-contact campaign deliveries.

Uses raw SQL with psycopg2 (no ORM).
"""

from dataclasses import dataclass

from psycopg2.extensions import cursor as PgCursor


@dataclass(frozen=True)
class QueueItem:
    """Pending campaign delivery joined with its campaign template."""

    id: str
    organization_id: str
    campaign_id: str
    contact_id: str
    attempt_count: int
    message_template: str


def fetch_pending(cur: PgCursor, *, limit: int) -> list[QueueItem]:
    """Fetch up to `limit` pending queue items, oldest first."""
    cur.execute(
        """
        SELECT q.id, q.organization_id, q.campaign_id, q.contact_id,
               q.attempt_count, c.message_template
        FROM campaign_queue q
        JOIN campaigns c ON c.id = q.campaign_id
        WHERE q.status = 'pending'
        ORDER BY q.created_at
        LIMIT %s
        """,
        (limit,),
    )
    return [
        QueueItem(
            id=str(row[0]),
            organization_id=str(row[1]),
            campaign_id=str(row[2]),
            contact_id=str(row[3]),
            attempt_count=row[4],
            message_template=row[5],
        )
        for row in cur.fetchall()
    ]


def mark_sent(cur: PgCursor, *, item_id: str) -> None:
    cur.execute(
        """
        UPDATE campaign_queue
        SET status = 'sent', next_attempt_at = NULL
        WHERE id = %s
        """,
        (item_id,),
    )


def mark_failed(cur: PgCursor, *, item_id: str, attempt_count: int) -> None:
    cur.execute(
        """
        UPDATE campaign_queue
        SET status = 'failed', attempt_count = %s
        WHERE id = %s
        """,
        (attempt_count, item_id),
    )
