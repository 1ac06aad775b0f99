"""
Field-level audit log attached to each order.

Every mutating lifecycle operation snapshots the audited fields before and
after the change, diffs them with ``create_changes`` and appends a single
``AuditEntry``. An operation that changes nothing appends nothing.
"""

from datetime import datetime, timezone
from typing import Any, Iterable, Optional

from printease.core.ids import timestamped_id
from printease.core.logging import get_logger
from printease.schemas.orders import AuditChange, AuditEntry, Order
from printease.services.orders.store import OrderStore

logger = get_logger(__name__)

# field -> {"previous": ..., "current": ...}
Changes = dict[str, dict[str, Any]]


def create_changes(
    previous: dict[str, Any],
    current: dict[str, Any],
    fields_to_track: Optional[Iterable[str]] = None,
) -> Changes:
    """
    Diff two snapshots.

    Args:
        previous: Snapshot taken before the mutation
        current: Snapshot taken after the mutation
        fields_to_track: Fields to compare; defaults to every key of ``current``

    Returns:
        Mapping of each differing field to its previous and current value
    """
    fields = list(fields_to_track) if fields_to_track else list(current.keys())
    changes: Changes = {}
    for field in fields:
        before = previous.get(field)
        after = current.get(field)
        if before != after:
            changes[field] = {"previous": before, "current": after}
    return changes


def add_audit_log(
    order: Order,
    role: str,
    user_id: Optional[str],
    changes: Changes,
    reason: str = "",
) -> Optional[AuditEntry]:
    """
    Append an audit entry to an in-memory order.

    The caller persists the order. Returns None, without appending, when
    ``changes`` is empty.
    """
    if not changes:
        return None

    entry = AuditEntry(
        id=timestamped_id("audit"),
        timestamp=datetime.now(timezone.utc),
        role=role,
        user_id=user_id,
        changed_fields=list(changes.keys()),
        changes=[
            AuditChange(field=field, previous=values["previous"], current=values["current"])
            for field, values in changes.items()
        ],
        reason=reason,
    )
    order.audit_log.append(entry)
    return entry


class AuditLog:
    """Read and append access to order audit logs through the order store."""

    def __init__(self, store: OrderStore):
        self.store = store

    async def record(
        self,
        order_id: str,
        role: str,
        user_id: Optional[str],
        changes: Changes,
        reason: str = "",
    ) -> Optional[AuditEntry]:
        """
        Append an entry to a stored order and persist it.

        Raises:
            OrderNotFoundError: If the order does not exist
        """
        async with self.store.lock(order_id):
            order = await self.store.get_order(order_id)
            entry = add_audit_log(order, role, user_id, changes, reason)
            if entry is None:
                return None
            order.updated_at = entry.timestamp
            await self.store.save_order(order)

        logger.info(
            "Audit entry recorded",
            order_id=order_id,
            role=role,
            changed_fields=entry.changed_fields,
        )
        return entry

    async def get_audit_log(self, order_id: str) -> list[AuditEntry]:
        order = await self.store.get_order(order_id)
        return list(order.audit_log)

    async def get_audit_log_by_field(self, order_id: str, field: str) -> list[AuditEntry]:
        return [
            entry
            for entry in await self.get_audit_log(order_id)
            if field in entry.changed_fields
        ]

    async def get_audit_log_by_role(self, order_id: str, role: str) -> list[AuditEntry]:
        return [entry for entry in await self.get_audit_log(order_id) if entry.role == role]
