"""Provider adapters and the registry that wires them up."""

from __future__ import annotations

from loguru import logger

from commsync.application.ports.credential_vault import CredentialVault
from commsync.domain.models import ProviderType
from commsync.infrastructure.providers.discord import DiscordAdapter
from commsync.infrastructure.providers.gmail import GmailAdapter
from commsync.infrastructure.providers.imap import ImapAdapter
from commsync.infrastructure.providers.registry import AdapterRegistry
from commsync.infrastructure.providers.sms import BulkVSAdapter, JustCallAdapter
from commsync.infrastructure.providers.whatsapp import WhatsAppBridgeAdapter
from commsync.infrastructure.settings import Settings
from commsync.infrastructure.sqlite.message_state import LocalMessageState
from commsync.infrastructure.sqlite.sms_inbox import SmsInbox


def build_registry(
    settings: Settings,
    vault: CredentialVault,
    inbox: SmsInbox,
    state: LocalMessageState,
) -> AdapterRegistry:
    """Register every provider family the configuration supports."""
    common = {
        "timeout": settings.http_timeout,
        "connection_test_timeout": settings.connection_test_timeout,
    }
    registry = AdapterRegistry()
    registry.register(ProviderType.IMAP, ImapAdapter(vault, **common))
    registry.register(ProviderType.GMAIL, GmailAdapter(vault, settings.gmail_api_base, **common))
    registry.register(ProviderType.DISCORD, DiscordAdapter(vault, settings.discord_api_base, state, **common))
    registry.register(
        ProviderType.SMS_A, JustCallAdapter(vault, settings.justcall_api_base, state, **common)
    )
    registry.register(
        ProviderType.SMS_B, BulkVSAdapter(vault, settings.bulkvs_api_base, inbox, **common)
    )

    if settings.unipile_base_url and settings.unipile_access_token:
        registry.register(
            ProviderType.WHATSAPP,
            WhatsAppBridgeAdapter(
                vault,
                settings.unipile_base_url,
                settings.unipile_access_token.get_secret_value(),
                state,
                **common,
            ),
        )
    else:
        logger.warning("UNIPILE_DSN/UNIPILE_ACCESS_TOKEN not set, WhatsApp accounts will be skipped")

    return registry


__all__ = ["AdapterRegistry", "build_registry"]
