"""Chat relay -- polls the chat provider and forwards text messages to the CRM.

Provides ChatProviderClient (rate-limited, retrying reads), RelayState
(watermarks, backoff deadline, resume cursor), WatermarkStore (Redis
persistence) and ChatRelay (the per-tick loop).
"""

from src.ordersync.chat.client import ChatAPIError, ChatProviderClient
from src.ordersync.chat.relay import ChatRelay, RelayReport
from src.ordersync.chat.state import RelayState
from src.ordersync.chat.watermarks import WatermarkStore

__all__ = [
    "ChatAPIError",
    "ChatProviderClient",
    "ChatRelay",
    "RelayReport",
    "RelayState",
    "WatermarkStore",
]
