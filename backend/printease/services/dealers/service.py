"""
Dealer management: application review, profile upkeep and announcements.

Approval and rejection notify the dealer through the notification bus
under the ``dealer_<id>`` user id used by every dealer-facing notification.
"""

from typing import Any, Optional

from printease.core.errors import AuthorizationError, PrintEaseError
from printease.core.logging import get_logger
from printease.core.timeutils import utcnow
from printease.schemas.auth import Actor
from printease.schemas.dealers import (
    Dealer,
    DealerInfoUpdate,
    DealerServices,
    DealerStatus,
    DeliveryPreferences,
    DeliveryPreferencesUpdate,
)
from printease.schemas.notifications import Notification, NotificationEvent
from printease.services.notifications.bus import NotificationBus
from printease.services.notifications.types import NotificationType
from printease.services.orders.store import OrderStore

logger = get_logger(__name__)


class DealerService:
    """
    Service for dealer lifecycle and profile operations.

    Admins review applications and broadcast announcements; dealers edit
    their own profile, services and delivery preferences.
    """

    def __init__(self, store: OrderStore, bus: NotificationBus):
        self.store = store
        self.bus = bus

    async def list_dealers(self, status: Optional[DealerStatus] = None) -> list[Dealer]:
        dealers = await self.store.get_dealers()
        if status is not None:
            dealers = [dealer for dealer in dealers if dealer.status == status]
        return dealers

    async def get_dealer(self, dealer_id: str) -> Dealer:
        return await self.store.get_dealer(dealer_id)

    async def approve_dealer(self, actor: Actor, dealer_id: str) -> Dealer:
        """
        Approve a dealer application.

        Raises:
            AuthorizationError: If the actor is not an admin
            DealerNotFoundError: If the dealer does not exist
        """
        self._require_admin(actor, "approve dealers")
        dealer = await self.store.get_dealer(dealer_id)
        dealer.status = DealerStatus.APPROVED
        dealer.approved_at = utcnow()
        dealer.rejection_reason = None
        dealer.updated_at = dealer.approved_at
        await self.store.save_dealer(dealer)

        logger.info("Dealer approved", dealer_id=dealer.id, dealer_name=dealer.name)
        await self._notify(
            NotificationEvent(
                type=NotificationType.DEALER_ACCEPTED,
                title="Dealer Application Approved",
                message=f"Congratulations! Your dealer application for {dealer.name} has been approved.",
                user_id=dealer.user_id,
            )
        )
        return dealer

    async def reject_dealer(
        self,
        actor: Actor,
        dealer_id: str,
        reason: Optional[str] = None,
    ) -> Dealer:
        """
        Reject a dealer application.

        Raises:
            AuthorizationError: If the actor is not an admin
            DealerNotFoundError: If the dealer does not exist
        """
        self._require_admin(actor, "reject dealers")
        dealer = await self.store.get_dealer(dealer_id)
        dealer.status = DealerStatus.REJECTED
        dealer.rejected_at = utcnow()
        dealer.rejection_reason = reason
        dealer.updated_at = dealer.rejected_at
        await self.store.save_dealer(dealer)

        logger.info("Dealer rejected", dealer_id=dealer.id, reason=reason)
        await self._notify(
            NotificationEvent(
                type=NotificationType.DEALER_REJECTED,
                title="Dealer Application Rejected",
                message=(
                    f"Your dealer application for {dealer.name} has been rejected. "
                    "Please contact support for more information."
                ),
                user_id=dealer.user_id,
                data={"reason": reason} if reason else {},
            )
        )
        return dealer

    async def update_dealer_services(
        self,
        actor: Actor,
        dealer_id: str,
        services: dict[str, Any],
    ) -> Dealer:
        """Merge service flags into the dealer's offering."""
        dealer = await self._editable_dealer(actor, dealer_id)
        merged = {**dealer.services.to_document(), **services}
        dealer.services = DealerServices.model_validate(merged)
        dealer.updated_at = utcnow()
        return await self.store.save_dealer(dealer)

    async def update_dealer_info(
        self,
        actor: Actor,
        dealer_id: str,
        updates: DealerInfoUpdate,
    ) -> Dealer:
        dealer = await self._editable_dealer(actor, dealer_id)
        for field, value in updates.model_dump(exclude_unset=True).items():
            setattr(dealer, field, value)
        dealer.updated_at = utcnow()
        await self.store.save_dealer(dealer)
        logger.info("Dealer profile updated", dealer_id=dealer.id)
        return dealer

    async def get_delivery_preferences(self, dealer_id: str) -> DeliveryPreferences:
        dealer = await self.store.get_dealer(dealer_id)
        return dealer.delivery_preferences or DeliveryPreferences()

    async def update_delivery_preferences(
        self,
        actor: Actor,
        dealer_id: str,
        updates: DeliveryPreferencesUpdate,
    ) -> DeliveryPreferences:
        dealer = await self._editable_dealer(actor, dealer_id)
        current = dealer.delivery_preferences or DeliveryPreferences()
        dealer.delivery_preferences = current.model_copy(
            update=updates.model_dump(exclude_unset=True, exclude_none=True)
        )
        dealer.updated_at = utcnow()
        await self.store.save_dealer(dealer)
        return dealer.delivery_preferences

    async def broadcast_announcement(self, actor: Actor, title: str, message: str) -> Notification:
        """
        Publish an announcement to every user.

        Unlike dealer review notifications, a failed publish is raised to
        the caller since the announcement is the whole operation.
        """
        self._require_admin(actor, "broadcast announcements")
        notification = await self.bus.publish(
            NotificationEvent(
                type=NotificationType.ADMIN_ANNOUNCEMENT,
                title=title,
                message=message,
                user_id=None,
            )
        )
        logger.info("Announcement broadcast", notification_id=notification.id)
        return notification

    async def _editable_dealer(self, actor: Actor, dealer_id: str) -> Dealer:
        dealer_id = str(dealer_id)
        if not (actor.is_admin or (actor.is_dealer and actor.dealer_id == dealer_id)):
            raise AuthorizationError(
                "Dealers can only edit their own profile",
                dealer_id=dealer_id,
                role=actor.role.value,
            )
        return await self.store.get_dealer(dealer_id)

    @staticmethod
    def _require_admin(actor: Actor, operation: str) -> None:
        if not actor.is_admin:
            raise AuthorizationError(
                f"Only admins can {operation}",
                role=actor.role.value,
            )

    async def _notify(self, event: NotificationEvent) -> None:
        try:
            await self.bus.publish(event)
        except PrintEaseError as e:
            logger.error(
                "Failed to publish dealer notification",
                user_id=event.user_id,
                notification_type=event.type.value,
                error=e.message,
            )
