from execution.alert_dispatcher import AlertDispatcher
from execution.rpc_pool import ConnectivityFault, RpcEndpointPool
from execution.telegram_client import AlertDeliveryError, TelegramClient
from execution.thresholds import InvalidThresholdError, ThresholdManager

__all__ = [
    "AlertDeliveryError",
    "AlertDispatcher",
    "ConnectivityFault",
    "InvalidThresholdError",
    "RpcEndpointPool",
    "TelegramClient",
    "ThresholdManager",
]
