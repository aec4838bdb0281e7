"""SMS carrier adapters."""

from commsync.infrastructure.providers.sms.bulkvs import BulkVSAdapter
from commsync.infrastructure.providers.sms.justcall import JustCallAdapter

__all__ = ["BulkVSAdapter", "JustCallAdapter"]
