"""Utility modules."""

from delivery_dispatch.utils.logging import setup_logging
from delivery_dispatch.utils.templates import NotificationTemplates

__all__ = ["setup_logging", "NotificationTemplates"]
