"""
Order lifecycle engine orchestrating status changes, overrides and payments.

Every state-changing operation runs the same sequence under the per-order
lock: load the order, snapshot the audited fields, mutate, append status
history / change log / audit entry, then write the order back in a single
upsert. Notifications are published only after that write succeeds, and a
notification failure never undoes it.
"""

import math
from typing import Callable, Iterable, Optional, Union

from printease.core.errors import (
    AuthorizationError,
    InvalidTransitionError,
    NotFoundError,
    OrderValidationError,
    PrintEaseError,
)
from printease.core.ids import generate_order_id
from printease.core.logging import get_logger, log_performance
from printease.core.timeutils import utcnow
from printease.schemas.auth import Actor, Role
from printease.schemas.dealers import DealerStatus
from printease.schemas.notifications import NotificationEvent
from printease.schemas.orders import (
    AUDITED_FIELDS,
    AuditEntry,
    ChangeLogEntry,
    Order,
    OrderDraft,
    StatusHistoryEntry,
    format_price,
)
from printease.services.notifications.bus import NotificationBus
from printease.services.notifications.types import NotificationType
from printease.services.orders.access import (
    can_view_order,
    is_assigned_dealer,
    require_order_access,
)
from printease.services.orders.audit import add_audit_log, create_changes
from printease.services.orders.change_log import ChangeAction, add_change_log
from printease.services.orders.enums import OrderStatus, PaymentStatus
from printease.services.orders.state_machine import OrderStateMachine
from printease.services.orders.store import OrderStore
from printease.services.orders.views import filter_orders

logger = get_logger(__name__)

# Returns the notifications to publish once the mutation is committed.
Mutation = Callable[[Order], list[NotificationEvent]]
Authorization = Callable[[Order], None]

STATUS_MESSAGES: dict[OrderStatus, str] = {
    OrderStatus.DEALER_ACCEPTED: "Your order {order_id} has been accepted by the dealer.",
    OrderStatus.PRINTING_STARTED: "Printing has started for your order {order_id}.",
    OrderStatus.PRINTING_COMPLETED: "Printing is complete for your order {order_id}.",
    OrderStatus.READY_FOR_PICKUP: "Your order {order_id} is ready for pickup!",
    OrderStatus.OUT_FOR_DELIVERY: "Your order {order_id} is out for delivery.",
    OrderStatus.DELIVERED: "Your order {order_id} has been delivered.",
    OrderStatus.REJECTED: "Your order {order_id} has been rejected.",
    OrderStatus.CANCELLED: "Your order {order_id} has been cancelled.",
}


def _label_matches(label: str, target: OrderStatus) -> bool:
    """True when a caller-supplied label names ``target``, legacy labels included."""
    text = label.strip().lower()
    if text in (target.display_name.lower(), target.value):
        return True
    try:
        return OrderStatus.from_string(text) == target
    except ValueError:
        return False


def _is_valid_cost(cost: Union[int, float, None]) -> bool:
    if cost is None or isinstance(cost, bool):
        return False
    return math.isfinite(cost) and cost > 0


class OrderLifecycleEngine:
    """
    Role-gated operations over the order lifecycle.

    Attributes:
        store: Order store used for every read and write
        bus: Notification bus receiving post-commit events
        state_machine: Transition rules and status side effects
    """

    def __init__(
        self,
        store: OrderStore,
        bus: NotificationBus,
        state_machine: Optional[OrderStateMachine] = None,
    ):
        self.store = store
        self.bus = bus
        self.state_machine = state_machine or OrderStateMachine()

    # Checkout

    async def place_order(self, actor: Actor, draft: OrderDraft) -> Order:
        """
        Create a pending order from a checkout draft.

        Customers always order for themselves; admins must name the customer.

        Raises:
            AuthorizationError: If the actor may not place orders
            OrderValidationError: If the draft names no customer or an unavailable dealer
            DealerNotFoundError: If the chosen dealer does not exist
        """
        self._require_role(actor, "place_order", Role.CUSTOMER, Role.ADMIN)

        if actor.is_customer:
            user_id = actor.user_id
        elif draft.user_id:
            user_id = draft.user_id
        else:
            raise OrderValidationError("Admin checkout must name the customer")

        dealer_name = draft.dealer
        if draft.dealer_id:
            dealer = await self.store.get_dealer(draft.dealer_id)
            if dealer.status != DealerStatus.APPROVED:
                raise OrderValidationError(
                    f"Dealer {dealer.name} is not accepting orders",
                    dealer_id=dealer.id,
                    dealer_status=dealer.status.value,
                )
            dealer_name = dealer_name or dealer.name

        now = utcnow()
        order = Order(
            id=generate_order_id(now),
            user_id=user_id,
            dealer_id=draft.dealer_id,
            dealer=dealer_name,
            title=draft.title,
            file_metadata=draft.file_metadata,
            print_options=draft.print_options,
            date=now,
            created_at=now,
            batch_id=draft.batch_id,
            batch_index=draft.batch_index,
            eta=draft.eta,
            cost=draft.cost,
            price=format_price(draft.cost),
            payment_method=draft.payment_method,
            status_history=[
                StatusHistoryEntry(
                    status=OrderStatus.PENDING.display_name,
                    status_key=OrderStatus.PENDING,
                    label=OrderStatus.PENDING.display_name,
                    timestamp=now,
                )
            ],
        )
        await self.store.create_order(order)
        await self._remember_last_order(user_id, order.id)

        if order.dealer_user_id:
            await self._publish_all([
                NotificationEvent(
                    type=NotificationType.ORDER_ASSIGNED,
                    message=f"New order {order.id} has been placed with you.",
                    user_id=order.dealer_user_id,
                    order_id=order.id,
                )
            ])
        return order

    # Dealer operations

    async def accept_order(self, actor: Actor, order_id: str) -> Order:
        """
        Accept a pending order.

        Raises:
            InvalidTransitionError: If the order is not pending
        """

        def mutate(order: Order) -> list[NotificationEvent]:
            self.state_machine.apply_transition(order, OrderStatus.DEALER_ACCEPTED)
            return [
                NotificationEvent(
                    type=NotificationType.ORDER_ACCEPTED,
                    message=f"Your order {order.id} has been accepted by the dealer.",
                    user_id=order.user_id,
                    order_id=order.id,
                )
            ]

        return await self._commit(
            actor,
            order_id,
            mutate,
            reason="Order accepted by dealer",
            action=ChangeAction.ORDER_ACCEPTED,
            previous_fields=("status", "statusKey"),
            authorize=lambda order: self._require_order_dealer(actor, order, "accept_order"),
        )

    async def reject_order(self, actor: Actor, order_id: str, reason: str) -> Order:
        """
        Reject a pending order with a mandatory reason.

        Raises:
            OrderValidationError: If the reason is blank
            InvalidTransitionError: If the order is not pending
        """
        if not reason or not reason.strip():
            raise OrderValidationError("A rejection reason is required", order_id=order_id)
        reason = reason.strip()

        def mutate(order: Order) -> list[NotificationEvent]:
            self.state_machine.apply_transition(order, OrderStatus.REJECTED, reason=reason)
            return [
                NotificationEvent(
                    type=NotificationType.ORDER_REJECTED,
                    message=f"Your order {order.id} has been rejected. Reason: {reason}",
                    user_id=order.user_id,
                    order_id=order.id,
                    data={"reason": reason},
                )
            ]

        return await self._commit(
            actor,
            order_id,
            mutate,
            reason=f"Order rejected: {reason}",
            action=ChangeAction.ORDER_REJECTED,
            previous_fields=("status", "statusKey"),
            authorize=lambda order: self._require_order_dealer(actor, order, "reject_order"),
        )

    async def update_order_status(
        self,
        actor: Actor,
        order_id: str,
        status: Optional[str],
        status_key: str,
    ) -> Order:
        """
        Move an order one step forward.

        Args:
            actor: Assigned dealer or admin
            order_id: Order to update
            status: Human label; must match ``status_key`` when given
            status_key: Target status key (legacy keys accepted)

        Raises:
            OrderValidationError: If the key is unknown or the label contradicts it
            InvalidTransitionError: If the move is not a forward step
        """
        target = self._parse_status(status_key, status)
        return await self._transition(
            actor,
            order_id,
            target,
            operation="update_order_status",
            status_label=status.strip() if status else None,
        )

    async def cancel_order(self, actor: Actor, order_id: str) -> Order:
        """
        Cancel an order.

        Admins may cancel any non-terminal order; customers only their own
        order while it is still pending.
        """

        def authorize(order: Order) -> None:
            if actor.is_admin:
                return
            if actor.is_customer and order.user_id == actor.user_id:
                if order.status_key != OrderStatus.PENDING:
                    raise InvalidTransitionError(
                        "Orders can only be cancelled by the customer while pending",
                        current_state=order.status_key.value,
                        target_state=OrderStatus.CANCELLED.value,
                        order_id=order.id,
                    )
                return
            raise AuthorizationError(
                "Not allowed to cancel this order",
                order_id=order.id,
                role=actor.role.value,
            )

        return await self._transition(
            actor,
            order_id,
            OrderStatus.CANCELLED,
            operation="cancel_order",
            authorize=authorize,
        )

    async def update_order_eta(self, actor: Actor, order_id: str, new_eta: str) -> Order:
        """
        Replace the free-text ETA of an order.

        Raises:
            OrderValidationError: If the ETA is blank
        """
        new_eta = self._require_text(new_eta, "ETA", order_id)

        def mutate(order: Order) -> list[NotificationEvent]:
            self._require_open(order, "update the ETA of")
            order.eta = new_eta
            order.eta_updated_at = utcnow()
            return [
                NotificationEvent(
                    type=NotificationType.ETA_UPDATED,
                    message=f"ETA updated for order {order.id}: {new_eta}",
                    user_id=order.user_id,
                    order_id=order.id,
                    data={"eta": new_eta},
                )
            ]

        return await self._commit(
            actor,
            order_id,
            mutate,
            reason="ETA updated by dealer",
            action=ChangeAction.ETA_UPDATED,
            previous_fields=("eta",),
            authorize=lambda order: self._require_order_dealer(
                actor, order, "update_order_eta", allow_admin=False
            ),
        )

    # Admin overrides

    async def admin_reassign_dealer(
        self,
        actor: Actor,
        order_id: str,
        dealer_id: str,
        dealer_name: str,
    ) -> Order:
        """
        Hand an order to another dealer.

        Notifies the customer and the new dealer.

        Raises:
            DealerNotFoundError: If the dealer does not exist
            InvalidTransitionError: If the order is already closed
        """
        self._require_role(actor, "admin_reassign_dealer", Role.ADMIN)
        dealer_id = str(dealer_id)
        dealer_name = self._require_text(dealer_name, "Dealer name", order_id)
        await self.store.get_dealer(dealer_id)

        def mutate(order: Order) -> list[NotificationEvent]:
            self._require_open(order, "reassign")
            order.dealer = dealer_name
            order.dealer_id = dealer_id
            order.dealer_reassigned_at = utcnow()
            return [
                NotificationEvent(
                    type=NotificationType.ORDER_DEALER_REASSIGNED,
                    message=f"Your order {order.id} has been reassigned to {dealer_name}.",
                    user_id=order.user_id,
                    order_id=order.id,
                    data={"dealerId": dealer_id, "dealer": dealer_name},
                ),
                NotificationEvent(
                    type=NotificationType.ORDER_ASSIGNED,
                    message=f"Order {order.id} has been assigned to you.",
                    user_id=order.dealer_user_id,
                    order_id=order.id,
                ),
            ]

        return await self._commit(
            actor,
            order_id,
            mutate,
            reason="Admin override: Dealer reassigned",
            action=ChangeAction.DEALER_REASSIGNED,
            previous_fields=("dealer", "dealerId"),
        )

    async def admin_override_eta(self, actor: Actor, order_id: str, new_eta: str) -> Order:
        """
        Force a new ETA on an order and flag it as overridden.

        Raises:
            OrderValidationError: If the ETA is blank
        """
        self._require_role(actor, "admin_override_eta", Role.ADMIN)
        new_eta = self._require_text(new_eta, "ETA", order_id)

        def mutate(order: Order) -> list[NotificationEvent]:
            order.eta = new_eta
            order.eta_overridden = True
            order.eta_overridden_at = utcnow()
            message = f"ETA for order {order.id} has been updated to {new_eta}."
            return self._customer_and_dealer_events(
                order,
                NotificationType.ORDER_ETA_OVERRIDDEN,
                customer_message=message,
                dealer_message=message,
                data={"eta": new_eta},
            )

        return await self._commit(
            actor,
            order_id,
            mutate,
            reason="Admin override: ETA changed",
            action=ChangeAction.ETA_OVERRIDDEN,
            previous_fields=("eta", "etaOverridden"),
        )

    async def admin_override_pricing(
        self,
        actor: Actor,
        order_id: str,
        new_cost: Union[int, float],
        reason: Optional[str] = None,
    ) -> Order:
        """
        Force a new cost on an order.

        Raises:
            OrderValidationError: If the cost is not positive
        """
        self._require_role(actor, "admin_override_pricing", Role.ADMIN)
        if not _is_valid_cost(new_cost):
            raise OrderValidationError(
                "Override price must be a positive finite amount",
                order_id=order_id,
                new_cost=new_cost,
            )
        reason = (reason or "").strip()
        price = format_price(new_cost)

        def mutate(order: Order) -> list[NotificationEvent]:
            order.cost = new_cost
            order.price = price
            order.pricing_overridden = True
            order.pricing_override_reason = reason
            order.pricing_overridden_at = utcnow()
            customer_message = f"Pricing for order {order.id} has been updated to {price}."
            if reason:
                customer_message = f"{customer_message[:-1]}. Reason: {reason}"
            return self._customer_and_dealer_events(
                order,
                NotificationType.ORDER_PRICING_OVERRIDDEN,
                customer_message=customer_message,
                dealer_message=f"Pricing for order {order.id} has been updated to {price}.",
                data={"newCost": new_cost},
            )

        return await self._commit(
            actor,
            order_id,
            mutate,
            reason=reason or "Admin override: Pricing changed",
            action=ChangeAction.PRICING_OVERRIDDEN,
            previous_fields=("cost", "price", "pricingOverridden"),
        )

    # Payments

    async def record_payment(
        self,
        actor: Actor,
        order_id: str,
        success: bool,
        transaction_id: Optional[str] = None,
    ) -> Order:
        """
        Record the outcome reported by the payment gateway.

        Raises:
            InvalidTransitionError: If the order is already paid or closed
        """

        def authorize(order: Order) -> None:
            if actor.is_admin or (actor.is_customer and order.user_id == actor.user_id):
                return
            raise AuthorizationError(
                "Not allowed to record payments for this order",
                order_id=order.id,
                role=actor.role.value,
            )

        def mutate(order: Order) -> list[NotificationEvent]:
            if order.payment_status not in (PaymentStatus.PENDING, PaymentStatus.FAILED):
                raise InvalidTransitionError(
                    f"Order {order.id} payment is already {order.payment_status.value}",
                    current_state=order.payment_status.value,
                    order_id=order.id,
                )
            if order.status_key in (OrderStatus.REJECTED, OrderStatus.CANCELLED):
                raise InvalidTransitionError(
                    f"Order {order.id} is {order.status_key.value}",
                    current_state=order.status_key.value,
                    order_id=order.id,
                )

            if success:
                order.payment_status = PaymentStatus.PAID
                order.payment_date = utcnow()
                order.transaction_id = transaction_id
                return [
                    NotificationEvent(
                        type=NotificationType.PAYMENT_SUCCESS,
                        message=f"Your payment of {format_price(order.cost)} was processed successfully.",
                        user_id=order.user_id,
                        order_id=order.id,
                        data={"transactionId": transaction_id},
                    )
                ]

            order.payment_status = PaymentStatus.FAILED
            return [
                NotificationEvent(
                    type=NotificationType.PAYMENT_FAILED,
                    message="Your payment could not be processed. Please try again.",
                    user_id=order.user_id,
                    order_id=order.id,
                )
            ]

        return await self._commit(
            actor,
            order_id,
            mutate,
            reason="Payment succeeded" if success else "Payment failed",
            action=ChangeAction.PAYMENT_RECORDED,
            previous_fields=("paymentStatus",),
            authorize=authorize,
        )

    # Reads

    async def get_order(self, actor: Actor, order_id: str) -> Order:
        """
        Read one order the actor is allowed to see.

        Raises:
            OrderNotFoundError: If the order does not exist
            AuthorizationError: If the order belongs to someone else
        """
        order = await self.store.get_order(order_id)
        require_order_access(actor, order)
        return order

    async def list_orders(self, actor: Actor, status_key: Optional[str] = None) -> list[Order]:
        """
        List the orders visible to the actor, newest first.

        ``status_key`` filters by canonical key; ``"all"`` or None keeps everything.
        """
        orders = [order for order in await self.store.get_orders() if can_view_order(actor, order)]
        if status_key and status_key != "all":
            orders = filter_orders(orders, self._parse_status(status_key).value)
        return sorted(
            orders,
            key=lambda order: order.placed_at.timestamp() if order.placed_at else 0.0,
            reverse=True,
        )

    async def get_audit_log(
        self,
        actor: Actor,
        order_id: str,
        field: Optional[str] = None,
    ) -> list[AuditEntry]:
        order = await self.get_order(actor, order_id)
        if field:
            return [entry for entry in order.audit_log if field in entry.changed_fields]
        return list(order.audit_log)

    async def get_change_log(self, actor: Actor, order_id: str) -> list[ChangeLogEntry]:
        order = await self.get_order(actor, order_id)
        return list(order.change_log)

    # Internals

    async def _transition(
        self,
        actor: Actor,
        order_id: str,
        target: OrderStatus,
        operation: str,
        authorize: Optional[Authorization] = None,
        status_label: Optional[str] = None,
    ) -> Order:
        def mutate(order: Order) -> list[NotificationEvent]:
            self.state_machine.apply_transition(order, target, status_label=status_label)
            events = [
                NotificationEvent(
                    type=NotificationType.ORDER_STATUS_UPDATE,
                    message=STATUS_MESSAGES[target].format(order_id=order.id),
                    user_id=order.user_id,
                    order_id=order.id,
                    data={"status": target.display_name, "statusKey": target.value},
                )
            ]
            if actor.is_customer and order.dealer_user_id:
                events.append(
                    NotificationEvent(
                        type=NotificationType.ORDER_STATUS_UPDATE,
                        message=f"Order {order.id} was cancelled by the customer.",
                        user_id=order.dealer_user_id,
                        order_id=order.id,
                        data={"status": target.display_name, "statusKey": target.value},
                    )
                )
            return events

        return await self._commit(
            actor,
            order_id,
            mutate,
            reason=f"Status updated to {target.display_name}",
            action=ChangeAction.STATUS_UPDATED,
            previous_fields=("status", "statusKey"),
            authorize=authorize or (lambda order: self._require_order_dealer(actor, order, operation)),
        )

    async def _commit(
        self,
        actor: Actor,
        order_id: str,
        mutate: Mutation,
        reason: str,
        action: str,
        previous_fields: Iterable[str],
        authorize: Optional[Authorization] = None,
    ) -> Order:
        with log_performance(logger, action, order_id=order_id):
            async with self.store.lock(order_id):
                order = await self.store.get_order(order_id)
                if authorize is not None:
                    authorize(order)

                before = order.audit_snapshot()
                events = mutate(order)
                after = order.audit_snapshot()

                add_change_log(
                    order,
                    action,
                    {field: before[field] for field in previous_fields},
                    actor.role.value,
                )
                changes = create_changes(before, after, AUDITED_FIELDS)
                add_audit_log(order, actor.role.value, actor.user_id, changes, reason)
                order.updated_at = utcnow()
                await self.store.save_order(order)

        logger.info(
            "Order updated",
            order_id=order_id,
            action=action,
            changed_fields=list(changes),
            status_key=order.status_key.value,
        )
        await self._publish_all(events)
        return order

    async def _publish_all(self, events: list[NotificationEvent]) -> None:
        for event in events:
            try:
                await self.bus.publish(event)
            except PrintEaseError as e:
                logger.error(
                    "Failed to publish order notification",
                    order_id=event.order_id,
                    user_id=event.user_id,
                    notification_type=event.type.value,
                    error=e.message,
                )
                # Don't raise - notification failure shouldn't undo the commit

    async def _remember_last_order(self, user_id: str, order_id: str) -> None:
        try:
            user = await self.store.get_user(user_id)
        except NotFoundError:
            return
        user.last_order_id = order_id
        await self.store.save_user(user)

    @staticmethod
    def _customer_and_dealer_events(
        order: Order,
        notification_type: NotificationType,
        customer_message: str,
        dealer_message: str,
        data: dict,
    ) -> list[NotificationEvent]:
        events = [
            NotificationEvent(
                type=notification_type,
                message=customer_message,
                user_id=order.user_id,
                order_id=order.id,
                data=data,
            )
        ]
        if order.dealer_user_id:
            events.append(
                NotificationEvent(
                    type=notification_type,
                    message=dealer_message,
                    user_id=order.dealer_user_id,
                    order_id=order.id,
                    data=data,
                )
            )
        return events

    @staticmethod
    def _parse_status(status_key: str, status: Optional[str] = None) -> OrderStatus:
        try:
            target = OrderStatus.from_string(status_key)
        except ValueError as e:
            raise OrderValidationError(str(e), status_key=status_key) from e

        if status and not _label_matches(status, target):
            raise OrderValidationError(
                f"Status label {status!r} does not match status key {target.value}",
                status=status,
                status_key=target.value,
            )
        return target

    @staticmethod
    def _require_text(value: Optional[str], name: str, order_id: str) -> str:
        if value is None or not value.strip():
            raise OrderValidationError(f"{name} is required", order_id=order_id)
        return value.strip()

    @staticmethod
    def _require_open(order: Order, verb: str) -> None:
        if order.status_key.is_terminal():
            raise InvalidTransitionError(
                f"Cannot {verb} order {order.id} once it is {order.status_key.value}",
                current_state=order.status_key.value,
                order_id=order.id,
            )

    @staticmethod
    def _require_role(actor: Actor, operation: str, *roles: Role) -> None:
        if actor.role not in roles:
            raise AuthorizationError(
                f"Role {actor.role.value} may not {operation}",
                operation=operation,
                role=actor.role.value,
                required_roles=[role.value for role in roles],
            )

    @staticmethod
    def _require_order_dealer(
        actor: Actor,
        order: Order,
        operation: str,
        allow_admin: bool = True,
    ) -> None:
        if (allow_admin and actor.is_admin) or is_assigned_dealer(actor, order):
            return
        raise AuthorizationError(
            "Only the dealer assigned to this order may do that",
            operation=operation,
            order_id=order.id,
            role=actor.role.value,
        )
