"""Order state machine implementation with transition validation.

This module implements the OrderStateMachine class which validates status
transitions against the transition table, runs transition guards, and
applies a transition to an in-memory order: label and key, status history,
and the status-specific side effects (timestamps, COD settlement).
Persistence is the caller's job.
"""

from datetime import datetime
from typing import Any, Callable, Dict, Optional, Set

from printease.core.errors import InvalidTransitionError, OrderValidationError
from printease.core.logging import get_logger
from printease.core.timeutils import as_utc, utcnow
from printease.schemas.orders import Order, StatusHistoryEntry
from printease.services.orders.enums import (
    OrderStatus,
    PaymentStatus,
    get_allowed_order_transitions,
    validate_order_status_transition,
)

logger = get_logger(__name__)

COD_PAYMENT_METHOD = "COD"

Guard = Callable[[Order, Optional[str]], bool]
SideEffect = Callable[[Order, datetime, Optional[str]], None]


class OrderStateMachine:
    """State machine for managing order lifecycle transitions.

    Handles order status transitions with validation, guards, and side
    effects. Strictly forward-only: no stage skipping and no moving back.
    """

    def __init__(self) -> None:
        self._transition_guards: Dict[
            tuple[OrderStatus, OrderStatus], Guard
        ] = self._initialize_guards()
        self._side_effects: Dict[OrderStatus, SideEffect] = self._initialize_side_effects()

    def _initialize_guards(self) -> Dict[tuple[OrderStatus, OrderStatus], Guard]:
        """Initialize transition guard functions.

        Returns:
            Dictionary mapping state transitions to guard functions
        """
        return {
            (OrderStatus.PENDING, OrderStatus.REJECTED): self._guard_rejection_reason,
        }

    def _initialize_side_effects(self) -> Dict[OrderStatus, SideEffect]:
        """Initialize side effect handlers keyed by target state."""
        return {
            OrderStatus.DEALER_ACCEPTED: self._effect_accepted,
            OrderStatus.REJECTED: self._effect_rejected,
            OrderStatus.PRINTING_STARTED: self._effect_printing_started,
            OrderStatus.PRINTING_COMPLETED: self._effect_printing_completed,
            OrderStatus.READY_FOR_PICKUP: self._effect_ready,
            OrderStatus.OUT_FOR_DELIVERY: self._effect_out_for_delivery,
            OrderStatus.DELIVERED: self._effect_delivered,
            OrderStatus.CANCELLED: self._effect_cancelled,
        }

    def validate_transition(
        self,
        order: Order,
        target_status: OrderStatus,
        reason: Optional[str] = None,
    ) -> bool:
        """Validate if transition to target status is allowed.

        Args:
            order: Order to validate
            target_status: Desired target status
            reason: Reason supplied with the transition

        Returns:
            True if transition is valid

        Raises:
            InvalidTransitionError: If the transition table forbids the move
            OrderValidationError: If a transition guard rejects the input
        """
        current_status = order.status_key

        if not validate_order_status_transition(current_status, target_status):
            allowed = get_allowed_order_transitions(current_status)
            raise InvalidTransitionError(
                f"Cannot move order {order.id} from {current_status.value} to "
                f"{target_status.value}",
                current_state=current_status.value,
                target_state=target_status.value,
                allowed=[s.value for s in allowed],
                order_id=order.id,
            )

        guard = self._transition_guards.get((current_status, target_status))
        if guard is not None and not guard(order, reason):
            raise OrderValidationError(
                f"Transition guard failed for {current_status.value} -> "
                f"{target_status.value}",
                order_id=order.id,
                current_state=current_status.value,
                target_state=target_status.value,
                guard_failed=True,
            )

        logger.debug(
            "State transition validated",
            order_id=order.id,
            transition=f"{current_status.value}->{target_status.value}",
        )
        return True

    def apply_transition(
        self,
        order: Order,
        target_status: OrderStatus,
        status_label: Optional[str] = None,
        reason: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> StatusHistoryEntry:
        """Apply a validated transition to an in-memory order.

        Args:
            order: Order to transition
            target_status: Target status
            status_label: Human label to store; defaults to the canonical label
            reason: Reason supplied with the transition
            now: Transition time

        Returns:
            The status history entry appended to the order
        """
        self.validate_transition(order, target_status, reason)

        timestamp = self._history_timestamp(order, now or utcnow())
        old_status = order.status_key
        label = status_label or target_status.display_name

        order.status = label
        order.status_key = target_status
        order.updated_at = timestamp

        entry = StatusHistoryEntry(
            status=label,
            status_key=target_status,
            label=target_status.display_name,
            timestamp=timestamp,
        )
        order.status_history.append(entry)

        side_effect = self._side_effects.get(target_status)
        if side_effect is not None:
            side_effect(order, timestamp, reason)

        logger.info(
            "State transition applied",
            order_id=order.id,
            transition=f"{old_status.value}->{target_status.value}",
        )
        return entry

    def get_allowed_transitions(self, order: Order) -> Set[OrderStatus]:
        return get_allowed_order_transitions(order.status_key)

    def can_cancel(self, order: Order) -> bool:
        return order.status_key.can_cancel()

    @staticmethod
    def _history_timestamp(order: Order, now: datetime) -> datetime:
        # History must never go back in time, even if the clock does.
        now = as_utc(now)
        if order.status_history:
            last = as_utc(order.status_history[-1].timestamp)
            if last > now:
                return last
        return now

    # Transition Guards

    def _guard_rejection_reason(self, order: Order, reason: Optional[str]) -> bool:
        """A rejection must say why."""
        return bool(reason and reason.strip())

    # Side Effects

    def _effect_accepted(self, order: Order, now: datetime, reason: Any) -> None:
        order.accepted_at = now

    def _effect_rejected(self, order: Order, now: datetime, reason: Optional[str]) -> None:
        order.rejected_at = now
        order.rejection_reason = reason.strip() if reason else reason

    def _effect_printing_started(self, order: Order, now: datetime, reason: Any) -> None:
        order.printing_started_at = now

    def _effect_printing_completed(self, order: Order, now: datetime, reason: Any) -> None:
        order.printing_completed_at = now

    def _effect_ready(self, order: Order, now: datetime, reason: Any) -> None:
        order.ready_at = now

    def _effect_out_for_delivery(self, order: Order, now: datetime, reason: Any) -> None:
        order.out_for_delivery_at = now

    def _effect_delivered(self, order: Order, now: datetime, reason: Any) -> None:
        """Stamp delivery and settle cash-on-delivery payments."""
        order.delivered_at = now

        if (
            order.payment_method == COD_PAYMENT_METHOD
            and order.payment_status == PaymentStatus.PENDING
        ):
            order.payment_status = PaymentStatus.PAID
            order.payment_date = now
            logger.info(
                "COD payment settled on delivery",
                order_id=order.id,
                cost=order.cost,
            )

    def _effect_cancelled(self, order: Order, now: datetime, reason: Any) -> None:
        order.cancelled_at = now
