"""WhatsApp bridge adapter."""

from commsync.infrastructure.providers.whatsapp.client import WhatsAppBridgeAdapter

__all__ = ["WhatsAppBridgeAdapter"]
