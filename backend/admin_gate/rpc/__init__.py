from .invoker import (
    APPLICATION_FALLBACK_MESSAGE,
    TRANSPORT_FALLBACK_MESSAGE,
    RemoteInvoker,
    unwrap_response,
)
from .transport import HttpxTransport, RpcResponse, Transport, TransportFailure

__all__ = [
    "APPLICATION_FALLBACK_MESSAGE",
    "TRANSPORT_FALLBACK_MESSAGE",
    "HttpxTransport",
    "RemoteInvoker",
    "RpcResponse",
    "Transport",
    "TransportFailure",
    "unwrap_response",
]
