"""Message templates for dispatch notifications."""


class NotificationTemplates:
    """Titles and message bodies for emitted notifications."""

    DELIVERY_ASSIGNED_TITLE = "New Delivery Assigned"
    DELIVERY_ASSIGNED_MESSAGE = "Order #{order_number} has been assigned to you"

    DELIVERY_STATUS_CHANGED_TITLE = "Delivery Status Updated"
    DELIVERY_STATUS_CHANGED_MESSAGE = (
        "Order #{order_number} delivery status: {previous_status} -> {status}"
    )

    RATE_LIMITED_MESSAGE = "Too many requests, please wait {seconds} seconds"

    BULK_ASSIGN_SUMMARY = (
        "Bulk assignment completed: {assigned} assigned, {updated} updated, {failed} failed"
    )

    DEFAULT_REASSIGN_REASON = "Reassigned by admin"
    INITIAL_ASSIGNMENT_REASON = "Initial assignment"
