"""CRM integration -- adapter interface, REST client, payload schemas and messaging."""

from src.ordersync.crm.adapter import CRMAdapter
from src.ordersync.crm.client import CRMClient
from src.ordersync.crm.messaging import CRMMessenger, ForwardedMessage

__all__ = ["CRMAdapter", "CRMClient", "CRMMessenger", "ForwardedMessage"]
