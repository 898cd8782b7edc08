"""Status reconciliation between the stored instance row and the gateway.

Pure logic: no I/O, the clock is passed in. The gateway is the source of
truth for connection state; the stored row only caches it.
"""

from dataclasses import dataclass
from datetime import datetime

from batepapo.gateway.models import GatewayStatus


@dataclass(frozen=True)
class InstanceState:
    """The reconcilable part of a stored instance row."""

    status: str
    phone_number: str | None
    last_connected_at: datetime | None = None


def has_diverged(stored: InstanceState, observed: GatewayStatus) -> bool:
    """True iff the status differs, or the phone the row should carry differs.

    Only a connected instance carries a phone number.
    """
    if observed.status != stored.status:
        return True
    if observed.status != "connected":
        return stored.phone_number is not None
    return bool(observed.phone) and observed.phone != stored.phone_number


def reconcile(
    stored: InstanceState,
    observed: GatewayStatus,
    *,
    now: datetime,
) -> tuple[InstanceState, bool]:
    """Compute the state to persist after observing the gateway.

    Args:
        stored: Current stored state.
        observed: Status reported by the gateway.
        now: Timestamp used when the instance transitions into `connected`.

    Returns:
        Tuple of (new_state, changed). When changed is False, new_state is
        `stored` and nothing needs writing. Reconciling new_state against the
        same observation again always yields changed=False.
    """
    if not has_diverged(stored, observed):
        return stored, False

    last_connected_at = stored.last_connected_at
    if observed.status == "connected" and stored.status != "connected":
        last_connected_at = now

    return (
        InstanceState(
            status=observed.status,
            phone_number=observed.phone if observed.status == "connected" else None,
            last_connected_at=last_connected_at,
        ),
        True,
    )
