"""
Test suite for OrderLifecycleEngine.

Tests run the engine against the in-memory document store and a started
notification bus, and check the committed order, its audit and change logs
and the notifications published after each commit.
"""

import asyncio
from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest

from printease.core.errors import (
    AuthorizationError,
    DealerNotFoundError,
    InvalidTransitionError,
    OrderNotFoundError,
    OrderValidationError,
    StorageError,
)
from printease.schemas.auth import Actor
from printease.schemas.notifications import Notification
from printease.schemas.orders import AUDITED_FIELDS, OrderDraft
from printease.services.notifications.bus import NotificationBus
from printease.services.notifications.types import NotificationType
from printease.services.orders.enums import OrderStatus, PaymentStatus
from printease.services.orders.lifecycle import OrderLifecycleEngine
from printease.services.orders.store import OrderStore

FORWARD_PATH = [
    ("Dealer Accepted", "dealer-accepted"),
    ("Printing Started", "printing-started"),
    ("Printing Completed", "printing-completed"),
    ("Ready for Pickup", "ready-for-pickup"),
    ("Delivered", "delivered"),
]


async def drive_to(engine: OrderLifecycleEngine, actor: Actor, order_id: str, final: str):
    for status, status_key in FORWARD_PATH:
        order = await engine.update_order_status(actor, order_id, status, status_key)
        if status_key == final:
            return order
    raise AssertionError(f"{final} is not on the forward path")


# ============================================================================
# End-to-End Scenarios
# ============================================================================


class TestAcceptScenario:
    """Accepting a freshly placed order."""

    async def test_accept_pending_order(
        self,
        engine: OrderLifecycleEngine,
        make_order,
        dealer: Actor,
        received: list[Notification],
    ):
        await make_order("PE-1", user_id="U1")

        order = await engine.accept_order(dealer, "PE-1")

        assert order.status_key == OrderStatus.DEALER_ACCEPTED
        assert len(order.audit_log) == 1
        entry = order.audit_log[0]
        assert set(entry.changed_fields) == {"status", "statusKey"}
        assert entry.change_for("status").previous == "Pending"
        assert entry.change_for("status").current == "Dealer Accepted"
        assert entry.change_for("statusKey").previous == "pending"
        assert entry.change_for("statusKey").current == "dealer-accepted"
        assert entry.role == "dealer"
        assert entry.user_id == "dealer_1"

        assert len(received) == 1
        assert received[0].type == NotificationType.ORDER_ACCEPTED
        assert received[0].user_id == "U1"
        assert received[0].order_id == "PE-1"

    async def test_accept_is_persisted(
        self, engine: OrderLifecycleEngine, store: OrderStore, make_order, dealer: Actor
    ):
        await make_order("PE-1")
        await engine.accept_order(dealer, "PE-1")

        stored = await store.get_order("PE-1")
        assert stored.status == "Dealer Accepted"
        assert stored.accepted_at is not None
        assert [entry.action for entry in stored.change_log] == ["order_accepted"]
        assert stored.change_log[0].previous_state == {"status": "Pending", "statusKey": "pending"}

    async def test_accept_twice_rejected(
        self, engine: OrderLifecycleEngine, store: OrderStore, make_order, dealer: Actor
    ):
        await make_order("PE-1")
        await engine.accept_order(dealer, "PE-1")

        with pytest.raises(InvalidTransitionError):
            await engine.accept_order(dealer, "PE-1")

        stored = await store.get_order("PE-1")
        assert len(stored.audit_log) == 1
        assert len(stored.status_history) == 2

    async def test_accept_unknown_order(self, engine: OrderLifecycleEngine, dealer: Actor):
        with pytest.raises(OrderNotFoundError):
            await engine.accept_order(dealer, "PE-404")

    async def test_other_dealer_cannot_accept(
        self, engine: OrderLifecycleEngine, make_order, other_dealer: Actor
    ):
        await make_order("PE-1", dealer_id="1")

        with pytest.raises(AuthorizationError):
            await engine.accept_order(other_dealer, "PE-1")

    async def test_customer_cannot_accept(
        self, engine: OrderLifecycleEngine, make_order, customer: Actor
    ):
        await make_order("PE-1")

        with pytest.raises(AuthorizationError):
            await engine.accept_order(customer, "PE-1")


class TestPricingOverrideScenario:
    """Admin pricing override."""

    async def test_override_pricing(
        self,
        engine: OrderLifecycleEngine,
        make_order,
        admin: Actor,
        received: list[Notification],
    ):
        await make_order("PE-1", user_id="U1", dealer_id="1", cost=250)

        order = await engine.admin_override_pricing(admin, "PE-1", 999, "manual discount")

        assert order.cost == 999
        assert order.price == "₹999"
        assert order.pricing_overridden is True
        assert order.pricing_override_reason == "manual discount"
        assert order.pricing_overridden_at is not None

        assert len(received) == 2
        assert {n.user_id for n in received} == {"U1", "dealer_1"}
        assert all(n.type == NotificationType.ORDER_PRICING_OVERRIDDEN for n in received)
        customer_note = next(n for n in received if n.user_id == "U1")
        assert customer_note.message == (
            "Pricing for order PE-1 has been updated to ₹999. Reason: manual discount"
        )

    async def test_override_without_dealer_notifies_customer_only(
        self,
        engine: OrderLifecycleEngine,
        make_order,
        admin: Actor,
        received: list[Notification],
    ):
        await make_order("PE-1", dealer_id=None)

        await engine.admin_override_pricing(admin, "PE-1", 120)

        assert [n.user_id for n in received] == ["U1"]
        assert received[0].message == "Pricing for order PE-1 has been updated to ₹120."

    @pytest.mark.parametrize("new_cost", [0, -5, None])
    async def test_non_positive_price_rejected(
        self, engine: OrderLifecycleEngine, store: OrderStore, make_order, admin: Actor, new_cost
    ):
        await make_order("PE-1")

        with pytest.raises(OrderValidationError):
            await engine.admin_override_pricing(admin, "PE-1", new_cost, "oops")

        assert (await store.get_order("PE-1")).audit_log == []

    @pytest.mark.parametrize("new_cost", [float("inf"), float("-inf"), float("nan")])
    async def test_non_finite_price_rejected(
        self,
        engine: OrderLifecycleEngine,
        store: OrderStore,
        make_order,
        admin: Actor,
        received: list[Notification],
        new_cost,
    ):
        await make_order("PE-1", cost=100)

        with pytest.raises(OrderValidationError):
            await engine.admin_override_pricing(admin, "PE-1", new_cost, "oops")

        stored = await store.get_order("PE-1")
        assert stored.cost == 100
        assert stored.pricing_overridden is False
        assert stored.audit_log == []
        assert received == []

    async def test_dealer_cannot_override_pricing(
        self, engine: OrderLifecycleEngine, make_order, dealer: Actor
    ):
        await make_order("PE-1")

        with pytest.raises(AuthorizationError):
            await engine.admin_override_pricing(dealer, "PE-1", 999)


# ============================================================================
# Status Updates
# ============================================================================


class TestStatusUpdates:
    """Forward-only status updates."""

    async def test_history_tracks_every_step(
        self, engine: OrderLifecycleEngine, make_order, dealer: Actor
    ):
        await make_order("PE-1")

        for status, status_key in FORWARD_PATH:
            order = await engine.update_order_status(dealer, "PE-1", status, status_key)
            assert order.status_history[-1].status_key == order.status_key
            assert order.status_key.value == status_key

        assert len(order.status_history) == len(FORWARD_PATH) + 1
        assert len(order.audit_log) == len(FORWARD_PATH)

    async def test_legacy_key_normalized_on_write(
        self, engine: OrderLifecycleEngine, make_order, dealer: Actor
    ):
        await make_order("PE-1")

        order = await engine.update_order_status(dealer, "PE-1", None, "processing")

        assert order.status_key == OrderStatus.DEALER_ACCEPTED
        assert order.status == "Dealer Accepted"

    async def test_legacy_label_and_key_pairs_accepted(
        self, engine: OrderLifecycleEngine, store: OrderStore, make_order, dealer: Actor
    ):
        await make_order("PE-1")

        order = await engine.update_order_status(dealer, "PE-1", "Processing", "processing")
        assert order.status_key == OrderStatus.DEALER_ACCEPTED

        await engine.update_order_status(dealer, "PE-1", "Printing Started", "printing-started")
        await engine.update_order_status(dealer, "PE-1", "Printing Completed", "printing-completed")
        order = await engine.update_order_status(dealer, "PE-1", "Ready", "ready")
        assert order.status_key == OrderStatus.READY_FOR_PICKUP

        order = await engine.update_order_status(dealer, "PE-1", "Completed", "completed")
        assert order.status_key == OrderStatus.DELIVERED

        stored = await store.get_order("PE-1")
        assert [(e.status, e.status_key) for e in stored.status_history] == [
            ("Pending", OrderStatus.PENDING),
            ("Processing", OrderStatus.DEALER_ACCEPTED),
            ("Printing Started", OrderStatus.PRINTING_STARTED),
            ("Printing Completed", OrderStatus.PRINTING_COMPLETED),
            ("Ready", OrderStatus.READY_FOR_PICKUP),
            ("Completed", OrderStatus.DELIVERED),
        ]

    async def test_caller_label_is_kept(
        self, engine: OrderLifecycleEngine, make_order, dealer: Actor
    ):
        await make_order("PE-1")

        order = await engine.update_order_status(dealer, "PE-1", "  dealer accepted ", "dealer-accepted")

        assert order.status == "dealer accepted"
        assert order.status_history[-1].status == "dealer accepted"
        assert order.status_history[-1].label == "Dealer Accepted"
        assert order.status_key == OrderStatus.DEALER_ACCEPTED

    async def test_skipping_a_stage_rejected(
        self, engine: OrderLifecycleEngine, make_order, dealer: Actor
    ):
        await make_order("PE-1")

        with pytest.raises(InvalidTransitionError):
            await engine.update_order_status(dealer, "PE-1", "Printing Started", "printing-started")

    async def test_unknown_key_rejected(
        self, engine: OrderLifecycleEngine, make_order, dealer: Actor
    ):
        await make_order("PE-1")

        with pytest.raises(OrderValidationError):
            await engine.update_order_status(dealer, "PE-1", None, "shipped")

    async def test_mismatched_label_rejected(
        self, engine: OrderLifecycleEngine, make_order, dealer: Actor
    ):
        await make_order("PE-1")

        with pytest.raises(OrderValidationError):
            await engine.update_order_status(dealer, "PE-1", "Delivered", "dealer-accepted")

    async def test_status_notification(
        self,
        engine: OrderLifecycleEngine,
        make_order,
        dealer: Actor,
        received: list[Notification],
    ):
        await make_order("PE-1", status_key=OrderStatus.PRINTING_COMPLETED)

        await engine.update_order_status(dealer, "PE-1", "Ready for Pickup", "ready-for-pickup")

        assert len(received) == 1
        assert received[0].type == NotificationType.ORDER_STATUS_UPDATE
        assert received[0].message == "Your order PE-1 is ready for pickup!"
        assert received[0].data == {"status": "Ready for Pickup", "statusKey": "ready-for-pickup"}

    async def test_cod_settled_on_delivery(
        self, engine: OrderLifecycleEngine, make_order, dealer: Actor
    ):
        await make_order("PE-1", payment_method="COD")

        order = await drive_to(engine, dealer, "PE-1", "delivered")

        assert order.payment_status == PaymentStatus.PAID
        assert order.payment_date is not None
        delivery_entry = order.audit_log[-1]
        assert set(delivery_entry.changed_fields) == {"status", "statusKey", "paymentStatus"}

    async def test_admin_may_update_status(
        self, engine: OrderLifecycleEngine, make_order, admin: Actor
    ):
        await make_order("PE-1")

        order = await engine.update_order_status(admin, "PE-1", None, "dealer-accepted")

        assert order.audit_log[-1].role == "admin"


class TestRejectAndCancel:
    """Rejection and cancellation."""

    async def test_reject_requires_reason(
        self, engine: OrderLifecycleEngine, store: OrderStore, make_order, dealer: Actor
    ):
        await make_order("PE-1")

        with pytest.raises(OrderValidationError):
            await engine.reject_order(dealer, "PE-1", "   ")

        assert (await store.get_order("PE-1")).status_key == OrderStatus.PENDING

    async def test_reject_records_reason(
        self,
        engine: OrderLifecycleEngine,
        make_order,
        dealer: Actor,
        received: list[Notification],
    ):
        await make_order("PE-1")

        order = await engine.reject_order(dealer, "PE-1", "out of paper")

        assert order.status_key == OrderStatus.REJECTED
        assert order.rejection_reason == "out of paper"
        assert "rejectionReason" in order.audit_log[-1].changed_fields
        assert order.audit_log[-1].reason == "Order rejected: out of paper"
        assert received[0].type == NotificationType.ORDER_REJECTED
        assert received[0].data == {"reason": "out of paper"}

    async def test_customer_cancels_pending_order(
        self,
        engine: OrderLifecycleEngine,
        make_order,
        customer: Actor,
        received: list[Notification],
    ):
        await make_order("PE-1")

        order = await engine.cancel_order(customer, "PE-1")

        assert order.status_key == OrderStatus.CANCELLED
        assert order.status_history[-1].status_key == OrderStatus.CANCELLED
        assert {n.user_id for n in received} == {"U1", "dealer_1"}

    async def test_customer_cannot_cancel_accepted_order(
        self, engine: OrderLifecycleEngine, make_order, customer: Actor
    ):
        await make_order("PE-1", status_key=OrderStatus.DEALER_ACCEPTED)

        with pytest.raises(InvalidTransitionError):
            await engine.cancel_order(customer, "PE-1")

    async def test_customer_cannot_cancel_others_order(
        self, engine: OrderLifecycleEngine, make_order, other_customer: Actor
    ):
        await make_order("PE-1", user_id="U1")

        with pytest.raises(AuthorizationError):
            await engine.cancel_order(other_customer, "PE-1")

    async def test_dealer_cannot_cancel(
        self, engine: OrderLifecycleEngine, make_order, dealer: Actor
    ):
        await make_order("PE-1")

        with pytest.raises(AuthorizationError):
            await engine.cancel_order(dealer, "PE-1")

    async def test_admin_cancels_in_progress_order(
        self, engine: OrderLifecycleEngine, make_order, admin: Actor
    ):
        await make_order("PE-1", status_key=OrderStatus.PRINTING_STARTED)

        order = await engine.cancel_order(admin, "PE-1")

        assert order.cancelled_at is not None

    async def test_cancelled_order_cannot_be_cancelled_again(
        self, engine: OrderLifecycleEngine, make_order, admin: Actor
    ):
        await make_order("PE-1", status_key=OrderStatus.CANCELLED)

        with pytest.raises(InvalidTransitionError):
            await engine.cancel_order(admin, "PE-1")


# ============================================================================
# ETA and Admin Overrides
# ============================================================================


class TestEtaUpdates:
    """Dealer ETA updates and admin ETA overrides."""

    async def test_dealer_updates_eta(
        self,
        engine: OrderLifecycleEngine,
        make_order,
        dealer: Actor,
        received: list[Notification],
    ):
        await make_order("PE-1", eta="Today, 5 PM")

        order = await engine.update_order_eta(dealer, "PE-1", " Tomorrow, 11 AM ")

        assert order.eta == "Tomorrow, 11 AM"
        assert order.eta_updated_at is not None
        assert order.audit_log[-1].changed_fields == ["eta"]
        assert received[0].type == NotificationType.ETA_UPDATED
        assert received[0].message == "ETA updated for order PE-1: Tomorrow, 11 AM"

    async def test_blank_eta_rejected(
        self, engine: OrderLifecycleEngine, make_order, dealer: Actor
    ):
        await make_order("PE-1")

        with pytest.raises(OrderValidationError):
            await engine.update_order_eta(dealer, "PE-1", "")

    async def test_admin_uses_override_not_dealer_update(
        self, engine: OrderLifecycleEngine, make_order, admin: Actor
    ):
        await make_order("PE-1")

        with pytest.raises(AuthorizationError):
            await engine.update_order_eta(admin, "PE-1", "Today")

    async def test_eta_locked_after_delivery(
        self, engine: OrderLifecycleEngine, make_order, dealer: Actor
    ):
        await make_order("PE-1", status_key=OrderStatus.DELIVERED)

        with pytest.raises(InvalidTransitionError):
            await engine.update_order_eta(dealer, "PE-1", "Today")

    async def test_admin_overrides_eta(
        self,
        engine: OrderLifecycleEngine,
        make_order,
        admin: Actor,
        received: list[Notification],
    ):
        await make_order("PE-1", eta="45 mins")

        order = await engine.admin_override_eta(admin, "PE-1", "Today, 6 PM")

        assert order.eta == "Today, 6 PM"
        assert order.eta_overridden is True
        assert set(order.audit_log[-1].changed_fields) == {"eta", "etaOverridden"}
        assert order.audit_log[-1].reason == "Admin override: ETA changed"
        assert {n.user_id for n in received} == {"U1", "dealer_1"}


class TestDealerReassignment:
    """Admin dealer reassignment."""

    async def test_reassignment_notifies_customer_and_new_dealer(
        self,
        engine: OrderLifecycleEngine,
        make_order,
        admin: Actor,
        received: list[Notification],
    ):
        await make_order("PE-1", user_id="U1", dealer_id="1")

        order = await engine.admin_reassign_dealer(admin, "PE-1", "2", "Express Xerox")

        assert order.dealer_id == "2"
        assert order.dealer == "Express Xerox"
        assert set(order.audit_log[-1].changed_fields) == {"dealer", "dealerId"}
        assert len(received) == 2
        assert {n.user_id for n in received} == {"U1", "dealer_2"}
        assert {n.type for n in received} == {
            NotificationType.ORDER_DEALER_REASSIGNED,
            NotificationType.ORDER_ASSIGNED,
        }

    async def test_numeric_dealer_id_accepted(
        self, engine: OrderLifecycleEngine, make_order, admin: Actor
    ):
        await make_order("PE-1")

        order = await engine.admin_reassign_dealer(admin, "PE-1", 3, "Print Studio 9")

        assert order.dealer_id == "3"

    async def test_unknown_dealer_rejected(
        self, engine: OrderLifecycleEngine, make_order, admin: Actor
    ):
        await make_order("PE-1")

        with pytest.raises(DealerNotFoundError):
            await engine.admin_reassign_dealer(admin, "PE-1", "99", "Nobody")

    async def test_closed_order_cannot_be_reassigned(
        self, engine: OrderLifecycleEngine, make_order, admin: Actor
    ):
        await make_order("PE-1", status_key=OrderStatus.REJECTED)

        with pytest.raises(InvalidTransitionError):
            await engine.admin_reassign_dealer(admin, "PE-1", "2", "Express Xerox")


# ============================================================================
# Audit Completeness
# ============================================================================


class TestAuditCompleteness:
    """Every mutation appends exactly one entry listing exactly the changed fields."""

    async def test_each_operation_records_its_diff(
        self,
        engine: OrderLifecycleEngine,
        store: OrderStore,
        make_order,
        dealer: Actor,
        admin: Actor,
    ):
        await make_order("PE-1", payment_method="COD", eta="45 mins")

        operations = [
            lambda: engine.accept_order(dealer, "PE-1"),
            lambda: engine.update_order_eta(dealer, "PE-1", "Today, 4 PM"),
            lambda: engine.admin_override_eta(admin, "PE-1", "Today, 7 PM"),
            lambda: engine.admin_override_pricing(admin, "PE-1", 400, "rush"),
            lambda: engine.admin_reassign_dealer(admin, "PE-1", "2", "Express Xerox"),
            lambda: engine.update_order_status(admin, "PE-1", None, "printing-started"),
        ]

        for operation in operations:
            before = (await store.get_order("PE-1")).audit_snapshot()
            count = len((await store.get_order("PE-1")).audit_log)

            await operation()

            order = await store.get_order("PE-1")
            after = order.audit_snapshot()
            differing = {field for field in AUDITED_FIELDS if before[field] != after[field]}
            assert len(order.audit_log) == count + 1
            assert set(order.audit_log[-1].changed_fields) == differing

    async def test_unchanged_eta_override_records_nothing(
        self, engine: OrderLifecycleEngine, make_order, admin: Actor
    ):
        await make_order("PE-1")
        await engine.admin_override_eta(admin, "PE-1", "Today")

        order = await engine.admin_override_eta(admin, "PE-1", "Today")

        assert len(order.audit_log) == 1
        assert len(order.change_log) == 2

    async def test_audit_log_filtered_by_field(
        self, engine: OrderLifecycleEngine, make_order, dealer: Actor, admin: Actor
    ):
        await make_order("PE-1")
        await engine.accept_order(dealer, "PE-1")
        await engine.admin_override_pricing(admin, "PE-1", 500)

        entries = await engine.get_audit_log(admin, "PE-1", field="price")

        assert len(entries) == 1
        assert entries[0].change_for("price").current == "₹500"
        assert len(await engine.get_audit_log(dealer, "PE-1")) == 2

    async def test_change_log_read(
        self, engine: OrderLifecycleEngine, make_order, dealer: Actor, customer: Actor
    ):
        await make_order("PE-1")
        await engine.accept_order(dealer, "PE-1")

        entries = await engine.get_change_log(customer, "PE-1")

        assert [entry.action for entry in entries] == ["order_accepted"]
        assert entries[0].role == "dealer"


# ============================================================================
# Payments
# ============================================================================


class TestPayments:
    """Payment gateway outcomes."""

    async def test_successful_payment(
        self,
        engine: OrderLifecycleEngine,
        make_order,
        customer: Actor,
        received: list[Notification],
    ):
        await make_order("PE-1", cost=250, payment_method="UPI")

        order = await engine.record_payment(customer, "PE-1", True, "txn_123")

        assert order.payment_status == PaymentStatus.PAID
        assert order.transaction_id == "txn_123"
        assert order.payment_date is not None
        assert received[0].type == NotificationType.PAYMENT_SUCCESS
        assert "₹250" in received[0].message

    async def test_failed_payment_can_be_retried(
        self, engine: OrderLifecycleEngine, make_order, customer: Actor
    ):
        await make_order("PE-1")

        failed = await engine.record_payment(customer, "PE-1", False)
        assert failed.payment_status == PaymentStatus.FAILED

        paid = await engine.record_payment(customer, "PE-1", True, "txn_2")
        assert paid.payment_status == PaymentStatus.PAID

    async def test_paid_order_cannot_be_paid_again(
        self, engine: OrderLifecycleEngine, make_order, customer: Actor
    ):
        await make_order("PE-1", payment_status=PaymentStatus.PAID)

        with pytest.raises(InvalidTransitionError):
            await engine.record_payment(customer, "PE-1", True, "txn_3")

    async def test_cancelled_order_cannot_be_paid(
        self, engine: OrderLifecycleEngine, make_order, customer: Actor
    ):
        await make_order("PE-1", status_key=OrderStatus.CANCELLED)

        with pytest.raises(InvalidTransitionError):
            await engine.record_payment(customer, "PE-1", True)

    async def test_dealer_cannot_record_payment(
        self, engine: OrderLifecycleEngine, make_order, dealer: Actor
    ):
        await make_order("PE-1")

        with pytest.raises(AuthorizationError):
            await engine.record_payment(dealer, "PE-1", True)


# ============================================================================
# Checkout and Reads
# ============================================================================


class TestPlaceOrder:
    """Checkout."""

    async def test_customer_places_order(
        self,
        engine: OrderLifecycleEngine,
        customer: Actor,
        received: list[Notification],
    ):
        draft = OrderDraft(title="Thesis", dealer_id="1", cost=120.5, payment_method="COD")

        order = await engine.place_order(customer, draft)

        assert order.id.startswith("PE-")
        assert order.user_id == "U1"
        assert order.dealer == "PixelPrint Hub"
        assert order.price == "₹120.5"
        assert order.status_key == OrderStatus.PENDING
        assert len(order.status_history) == 1
        assert received[0].type == NotificationType.ORDER_ASSIGNED
        assert received[0].user_id == "dealer_1"

    async def test_customer_cannot_order_for_someone_else(
        self, engine: OrderLifecycleEngine, customer: Actor
    ):
        order = await engine.place_order(customer, OrderDraft(user_id="U2", cost=10))

        assert order.user_id == "U1"

    async def test_admin_must_name_customer(self, engine: OrderLifecycleEngine, admin: Actor):
        with pytest.raises(OrderValidationError):
            await engine.place_order(admin, OrderDraft(cost=10))

    async def test_unapproved_dealer_rejected(
        self, engine: OrderLifecycleEngine, customer: Actor
    ):
        with pytest.raises(OrderValidationError):
            await engine.place_order(customer, OrderDraft(dealer_id="5", cost=10))

    async def test_last_order_remembered_for_known_user(
        self, engine: OrderLifecycleEngine, store: OrderStore
    ):
        seeded = Actor(user_id="user_1", role="customer")

        order = await engine.place_order(seeded, OrderDraft(cost=10))

        assert (await store.get_user("user_1")).last_order_id == order.id

    async def test_dealer_cannot_place_orders(self, engine: OrderLifecycleEngine, dealer: Actor):
        with pytest.raises(AuthorizationError):
            await engine.place_order(dealer, OrderDraft(cost=10))


class TestReads:
    """Role-filtered reads."""

    async def test_list_orders_by_role(
        self,
        engine: OrderLifecycleEngine,
        make_order,
        customer: Actor,
        dealer: Actor,
        other_dealer: Actor,
        admin: Actor,
    ):
        await make_order("PE-1", user_id="U1", dealer_id="1")
        await make_order("PE-2", user_id="U2", dealer_id="1")
        await make_order("PE-3", user_id="U1", dealer_id="2")

        assert {o.id for o in await engine.list_orders(customer)} == {"PE-1", "PE-3"}
        assert {o.id for o in await engine.list_orders(dealer)} == {"PE-1", "PE-2"}
        assert {o.id for o in await engine.list_orders(other_dealer)} == {"PE-3"}
        assert len(await engine.list_orders(admin)) == 3

    async def test_list_orders_newest_first_and_filtered(
        self, engine: OrderLifecycleEngine, make_order, admin: Actor
    ):
        await make_order("PE-old", placed_at=datetime(2024, 1, 1, tzinfo=timezone.utc))
        await make_order(
            "PE-new",
            placed_at=datetime(2024, 6, 1, tzinfo=timezone.utc),
            status_key=OrderStatus.DELIVERED,
        )

        assert [o.id for o in await engine.list_orders(admin)] == ["PE-new", "PE-old"]
        assert [o.id for o in await engine.list_orders(admin, "completed")] == ["PE-new"]
        assert len(await engine.list_orders(admin, "all")) == 2

    async def test_get_order_of_another_customer_forbidden(
        self, engine: OrderLifecycleEngine, make_order, other_customer: Actor
    ):
        await make_order("PE-1", user_id="U1")

        with pytest.raises(AuthorizationError):
            await engine.get_order(other_customer, "PE-1")


# ============================================================================
# Notification Failures
# ============================================================================


class TestNotificationFailure:
    """A failing bus never undoes a committed mutation."""

    async def test_commit_survives_publish_failure(
        self,
        engine: OrderLifecycleEngine,
        store: OrderStore,
        bus: NotificationBus,
        make_order,
        dealer: Actor,
        monkeypatch: pytest.MonkeyPatch,
    ):
        await make_order("PE-1")
        monkeypatch.setattr(
            bus, "publish", AsyncMock(side_effect=StorageError("notifications down"))
        )

        order = await engine.accept_order(dealer, "PE-1")

        assert order.status_key == OrderStatus.DEALER_ACCEPTED
        assert (await store.get_order("PE-1")).status_key == OrderStatus.DEALER_ACCEPTED
        bus.publish.assert_awaited_once()


# ============================================================================
# Per-order Locks
# ============================================================================


class TestOrderLocks:
    """The per-order lock table only holds orders in use."""

    async def test_released_after_commit(
        self, engine: OrderLifecycleEngine, store: OrderStore, make_order, dealer: Actor
    ):
        await make_order("PE-1")

        await engine.accept_order(dealer, "PE-1")

        assert store.active_locks == 0

    async def test_released_after_unknown_order(
        self, engine: OrderLifecycleEngine, store: OrderStore, dealer: Actor, admin: Actor
    ):
        for order_id in ("PE-404", "PE-405", "PE-406"):
            with pytest.raises(OrderNotFoundError):
                await engine.accept_order(dealer, order_id)
            with pytest.raises(OrderNotFoundError):
                await engine.admin_override_eta(admin, order_id, "Tomorrow")

        assert store.active_locks == 0

    async def test_released_after_failed_mutation(
        self, engine: OrderLifecycleEngine, store: OrderStore, make_order, dealer: Actor
    ):
        await make_order("PE-1")

        with pytest.raises(InvalidTransitionError):
            await engine.update_order_status(dealer, "PE-1", None, "delivered")

        assert store.active_locks == 0

    async def test_concurrent_updates_serialized_then_released(
        self, engine: OrderLifecycleEngine, store: OrderStore, make_order, dealer: Actor
    ):
        await make_order("PE-1")

        results = await asyncio.gather(
            engine.accept_order(dealer, "PE-1"),
            engine.accept_order(dealer, "PE-1"),
            return_exceptions=True,
        )

        assert sum(isinstance(r, InvalidTransitionError) for r in results) == 1
        assert len((await store.get_order("PE-1")).audit_log) == 1
        assert store.active_locks == 0
