"""iorpc - Python implementation

Call the functions of a peer across any message channel as if they were local,
including passing callables that the peer can call back later.
"""

from iorpc.config import IorpcConfig
from iorpc.error import ErrorCode, RemoteError, RpcError
from iorpc.wire import (
    THROW_ERROR,
    UNBIND,
    Packet,
    parse_packet,
    serialize_packet,
)
from iorpc.registry import PendingCall, PendingRegistry
from iorpc.codec import FORBIDDEN_KEYS, ArgumentCodec
from iorpc.types import CallContext, LocalApi
from iorpc.stubs import RemoteApi, RemoteCallback
from iorpc.session import Iorpc, IorpcPair, IorpcSession, create_iorpc, pair
from iorpc.ws_session import (
    WebSocketChannel,
    WebSocketIorpcClient,
    handle_websocket_rpc,
)

__version__ = "0.1.0"

__all__ = [
    # Sessions
    "IorpcSession",
    "Iorpc",
    "IorpcPair",
    "create_iorpc",
    "pair",
    # Calling surface
    "RemoteApi",
    "RemoteCallback",
    "CallContext",
    "LocalApi",
    # Errors
    "RpcError",
    "RemoteError",
    "ErrorCode",
    # Configuration (Pydantic model)
    "IorpcConfig",
    # Wire format
    "Packet",
    "THROW_ERROR",
    "UNBIND",
    "parse_packet",
    "serialize_packet",
    # Internals exposed for hosts and tests
    "PendingCall",
    "PendingRegistry",
    "ArgumentCodec",
    "FORBIDDEN_KEYS",
    # WebSocket channel
    "WebSocketChannel",
    "WebSocketIorpcClient",
    "handle_websocket_rpc",
]
