"""
Order batches: several orders checked out together and tracked as a group.

Each order keeps its own status and ETA; the batch only links them through
``batchId``/``batchIndex`` and records the combined cost.
"""

from collections import Counter
from typing import Optional

from printease.core.errors import AuthorizationError, OrderValidationError
from printease.core.ids import generate_batch_id
from printease.core.logging import get_logger
from printease.core.timeutils import utcnow
from printease.schemas.auth import Actor
from printease.schemas.batches import Batch, BatchStats
from printease.schemas.orders import Order
from printease.services.orders.audit import add_audit_log, create_changes
from printease.services.orders.change_log import ChangeAction, add_change_log
from printease.services.orders.store import OrderStore

logger = get_logger(__name__)

BATCH_FIELDS = ("batchId", "batchIndex")


def summarize_etas(orders: list[Order]) -> str:
    """Join the orders' ETAs, collapsing relative days to ``Today``/``Tomorrow``."""
    labels = []
    for order in orders:
        if not order.eta:
            continue
        text = order.eta.lower()
        if "today" in text:
            labels.append("Today")
        elif "tomorrow" in text:
            labels.append("Tomorrow")
        else:
            labels.append(order.eta)
    return ", ".join(labels) if labels else "Not set"


class BatchService:
    """Create and inspect order batches."""

    def __init__(self, store: OrderStore):
        self.store = store

    async def create_batch(self, actor: Actor, order_ids: list[str]) -> Batch:
        """
        Group existing orders into a new batch.

        Orders are linked in the order given; ``batchIndex`` is the position
        in ``order_ids``.

        Raises:
            OrderValidationError: If no order ids are given or one is repeated
            OrderNotFoundError: If an order does not exist
            AuthorizationError: If a customer batches someone else's order
        """
        if not order_ids:
            raise OrderValidationError("A batch needs at least one order")
        if len(set(order_ids)) != len(order_ids):
            raise OrderValidationError("A batch cannot contain an order twice", order_ids=order_ids)
        if not (actor.is_customer or actor.is_admin):
            raise AuthorizationError("Only customers and admins can create batches", role=actor.role.value)

        orders = [await self.store.get_order(order_id) for order_id in order_ids]
        owners = {order.user_id for order in orders}
        if actor.is_customer and owners != {actor.user_id}:
            raise AuthorizationError(
                "Customers can only batch their own orders",
                user_id=actor.user_id,
            )

        now = utcnow()
        batch = Batch(
            id=generate_batch_id(),
            user_id=orders[0].user_id if len(owners) == 1 else None,
            orders=list(order_ids),
            status="pending",
            total_cost=sum(order.cost or 0 for order in orders),
            total_orders=len(orders),
            created_at=now,
            updated_at=now,
        )
        await self.store.save_batch(batch)

        for index, order_id in enumerate(order_ids):
            async with self.store.lock(order_id):
                order = await self.store.get_order(order_id)
                before = {"batchId": order.batch_id, "batchIndex": order.batch_index}
                order.batch_id = batch.id
                order.batch_index = index
                after = {"batchId": order.batch_id, "batchIndex": order.batch_index}
                add_change_log(order, ChangeAction.BATCH_LINKED, before, actor.role.value)
                add_audit_log(
                    order,
                    actor.role.value,
                    actor.user_id,
                    create_changes(before, after, BATCH_FIELDS),
                    reason=f"Added to batch {batch.id}",
                )
                order.updated_at = now
                await self.store.save_order(order)

        logger.info(
            "Batch created",
            batch_id=batch.id,
            total_orders=batch.total_orders,
            total_cost=batch.total_cost,
        )
        return batch

    async def get_batch(self, batch_id: str) -> Batch:
        return await self.store.get_batch(batch_id)

    async def get_batch_orders(self, batch_id: str) -> list[Order]:
        """Orders linked to a batch, in batch order."""
        orders = [order for order in await self.store.get_orders() if order.batch_id == batch_id]
        return sorted(orders, key=lambda order: order.batch_index or 0)

    async def get_user_batches(self, user_id: str) -> list[Batch]:
        """Batches containing at least one order of ``user_id``."""
        orders = await self.store.get_orders()
        batch_ids = {order.batch_id for order in orders if order.user_id == user_id and order.batch_id}
        return [batch for batch in await self.store.get_batches() if batch.id in batch_ids]

    async def update_batch_status(
        self,
        batch_id: str,
        status: str,
        actor: Optional[Actor] = None,
    ) -> Batch:
        """
        Raises:
            BatchNotFoundError: If the batch does not exist
            AuthorizationError: If a customer updates someone else's batch
        """
        batch = await self.store.get_batch(batch_id)
        if actor is not None and not actor.is_admin and batch.user_id != actor.user_id:
            raise AuthorizationError("Not allowed to update this batch", batch_id=batch_id)

        batch.status = status
        batch.updated_at = utcnow()
        await self.store.save_batch(batch)
        logger.info("Batch status updated", batch_id=batch_id, status=status)
        return batch

    async def get_batch_stats(self, batch_id: str) -> BatchStats:
        await self.store.get_batch(batch_id)
        orders = await self.get_batch_orders(batch_id)
        return BatchStats(
            total_orders=len(orders),
            total_cost=sum(order.cost or 0 for order in orders),
            by_status=dict(Counter(order.status_key.value for order in orders)),
            average_eta=summarize_etas(orders),
        )
