"""Notification type taxonomy and default titles."""

from enum import Enum
from typing import Dict


class NotificationType(str, Enum):
    """Notification types consumed by the customer, dealer and admin UIs."""

    ORDER_ACCEPTED = "order_accepted"
    ORDER_REJECTED = "order_rejected"
    ORDER_STATUS_UPDATE = "order_status_update"
    ORDER_DEALER_REASSIGNED = "order_dealer_reassigned"
    ORDER_ASSIGNED = "order_assigned"
    ORDER_ETA_OVERRIDDEN = "order_eta_overridden"
    ORDER_PRICING_OVERRIDDEN = "order_pricing_overridden"
    ETA_UPDATED = "eta_updated"
    PAYMENT_SUCCESS = "payment_success"
    PAYMENT_FAILED = "payment_failed"
    DEALER_ACCEPTED = "dealer_accepted"
    DEALER_REJECTED = "dealer_rejected"
    ADMIN_ANNOUNCEMENT = "admin_announcement"
    NEW_MESSAGE = "new_message"

    @property
    def default_title(self) -> str:
        return DEFAULT_TITLES[self]


DEFAULT_TITLES: Dict[NotificationType, str] = {
    NotificationType.ORDER_ACCEPTED: "Order Accepted",
    NotificationType.ORDER_REJECTED: "Order Rejected",
    NotificationType.ORDER_STATUS_UPDATE: "Order Status Updated",
    NotificationType.ORDER_DEALER_REASSIGNED: "Dealer Reassigned",
    NotificationType.ORDER_ASSIGNED: "New Order Assigned",
    NotificationType.ORDER_ETA_OVERRIDDEN: "ETA Updated by Admin",
    NotificationType.ORDER_PRICING_OVERRIDDEN: "Pricing Updated by Admin",
    NotificationType.ETA_UPDATED: "ETA Updated",
    NotificationType.PAYMENT_SUCCESS: "Payment Successful",
    NotificationType.PAYMENT_FAILED: "Payment Failed",
    NotificationType.DEALER_ACCEPTED: "Dealer Application Accepted",
    NotificationType.DEALER_REJECTED: "Dealer Application Rejected",
    NotificationType.ADMIN_ANNOUNCEMENT: "Admin Announcement",
    NotificationType.NEW_MESSAGE: "New Message",
}


class EnvelopeType(str, Enum):
    """Kinds of change broadcast between bus instances."""

    NOTIFICATION = "notification"
    NOTIFICATION_READ = "notification_read"
    NOTIFICATIONS_ALL_READ = "notifications_all_read"
    NOTIFICATION_DELETED = "notification_deleted"
    NOTIFICATIONS_CLEARED = "notifications_cleared"
