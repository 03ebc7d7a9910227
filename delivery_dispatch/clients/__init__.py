"""Clients for remote services."""

from delivery_dispatch.clients.delivery_api import DeliveryBackend, DeliveryServiceClient

__all__ = ["DeliveryBackend", "DeliveryServiceClient"]
