"""WalletRouter - multi-chain wallet routing over JSON-RPC

This package routes wallet method calls from one calling application to many
chain-specific wallet endpoints, with session management, pluggable
permissions and per-method payload serialization.
"""

from walletrouter.config import (
    LocalTransportConfig,
    ProviderConfig,
    ProxyConfig,
    RouterConfig,
    SessionStoreConfig,
)
from walletrouter.error import (
    ErrorCode,
    JsonRpcError,
    RequestTimeoutError,
    RouterError,
    TransportError,
)
from walletrouter.local_transport import (
    LocalTransport,
    create_local_transport,
    create_local_transport_pair,
)
from walletrouter.middleware import MiddlewarePipeline
from walletrouter.node import JsonRpcNode
from walletrouter.operation import OperationBuilder
from walletrouter.permissions import (
    AllowAskDenyManager,
    AllowAskDenyState,
    PermissivePermissionManager,
)
from walletrouter.provider import WalletRouterProvider
from walletrouter.proxy import JsonRpcProxy
from walletrouter.router import WalletRouter
from walletrouter.serialization import (
    MethodSerializer,
    ProviderSerializerRegistry,
    SerializedData,
    Serializer,
)
from walletrouter.session_store import (
    MemorySessionStore,
    SessionStore,
    SqliteSessionStore,
    session_key,
)
from walletrouter.types import (
    ChainId,
    ChainPermissions,
    HumanReadableChainPermissions,
    MethodCall,
    PermissionManager,
    RouterContext,
    Session,
    Transport,
)

__version__ = "0.1.0"

__all__ = [
    # Core
    "WalletRouter",
    "WalletRouterProvider",
    "JsonRpcNode",
    "JsonRpcProxy",
    "OperationBuilder",
    "MiddlewarePipeline",
    # Types
    "ChainId",
    "ChainPermissions",
    "HumanReadableChainPermissions",
    "MethodCall",
    "PermissionManager",
    "RouterContext",
    "Session",
    "Transport",
    # Errors
    "ErrorCode",
    "JsonRpcError",
    "RequestTimeoutError",
    "RouterError",
    "TransportError",
    # Configuration
    "LocalTransportConfig",
    "ProviderConfig",
    "ProxyConfig",
    "RouterConfig",
    "SessionStoreConfig",
    # Permissions
    "AllowAskDenyManager",
    "AllowAskDenyState",
    "PermissivePermissionManager",
    # Sessions
    "MemorySessionStore",
    "SessionStore",
    "SqliteSessionStore",
    "session_key",
    # Serialization
    "MethodSerializer",
    "ProviderSerializerRegistry",
    "SerializedData",
    "Serializer",
    # Transports
    "LocalTransport",
    "create_local_transport",
    "create_local_transport_pair",
]
