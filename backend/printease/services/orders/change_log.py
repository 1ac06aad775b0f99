"""Coarse per-order action log, kept alongside the field-level audit log."""

from datetime import datetime, timezone
from typing import Any

from printease.schemas.orders import ChangeLogEntry, Order


class ChangeAction:
    ORDER_ACCEPTED = "order_accepted"
    ORDER_REJECTED = "order_rejected"
    STATUS_UPDATED = "status_updated"
    ETA_UPDATED = "eta_updated"
    DEALER_REASSIGNED = "dealer_reassigned"
    ETA_OVERRIDDEN = "eta_overridden"
    PRICING_OVERRIDDEN = "pricing_overridden"
    PAYMENT_RECORDED = "payment_recorded"
    BATCH_LINKED = "batch_linked"


def add_change_log(
    order: Order,
    action: str,
    previous_state: dict[str, Any],
    role: str,
) -> ChangeLogEntry:
    """Append one entry to an in-memory order; the caller persists it."""
    entry = ChangeLogEntry(
        timestamp=datetime.now(timezone.utc),
        role=role,
        action=action,
        previous_state=previous_state,
    )
    order.change_log.append(entry)
    return entry
