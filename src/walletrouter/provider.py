"""Client-side counterpart of ``WalletRouter``."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from typing import Any

from walletrouter.config import ProviderConfig
from walletrouter.error import RouterError
from walletrouter.node import JsonRpcNode
from walletrouter.operation import OperationBuilder
from walletrouter.serialization import MethodSerializer, ProviderSerializerRegistry
from walletrouter.types import (
    ChainId,
    ChainPermissions,
    HumanReadableChainPermissions,
    MethodCall,
    Transport,
)

logger = logging.getLogger(__name__)


def _as_call(call: MethodCall | Mapping[str, Any]) -> MethodCall:
    if isinstance(call, MethodCall):
        return call
    try:
        return MethodCall.from_dict(call)
    except ValueError as e:
        raise RouterError.invalid_request(str(e)) from e


class WalletRouterProvider(JsonRpcNode):
    """Talk to a ``WalletRouter`` over ``transport``.

    The provider holds the current session id. Methods that need a session
    fail locally with ``invalidSession`` before any round trip when there is
    none. ``wm_call`` and ``wm_bulkCall`` payloads go through the serializer
    registry, keyed by the wallet method name.

    Example:
        ```python
        provider = WalletRouterProvider(transport)
        await provider.connect({"eip155:1": ["eth_accounts", "eth_sendTransaction"]})
        accounts = await provider.call("eip155:1", MethodCall("eth_accounts"))

        balance, block = await (
            provider.chain("eip155:1")
            .call("eth_getBalance", [address, "latest"])
            .call("eth_blockNumber")
            .execute()
        )
        ```
    """

    def __init__(self, transport: Transport, config: ProviderConfig | None = None) -> None:
        super().__init__(transport)
        self.config = config or ProviderConfig()
        self.serializers = ProviderSerializerRegistry()
        self._session_id: str | None = None
        self.on("wm_sessionTerminated", self._on_session_terminated)

    @property
    def session_id(self) -> str | None:
        return self._session_id

    def _timeout(self, timeout: float | None) -> float | None:
        return timeout if timeout is not None else self.config.default_timeout

    def _require_session(self) -> str:
        if self._session_id is None:
            raise RouterError.invalid_session("Not connected")
        return self._session_id

    def _on_session_terminated(self, params: Any) -> None:
        if isinstance(params, dict) and params.get("sessionId") == self._session_id:
            logger.info("Session %s terminated by router: %s", self._session_id, params.get("reason"))
            self._session_id = None

    def register_method_serializer(self, method: str, serializer: MethodSerializer) -> None:
        self.serializers.register(method, serializer)

    def chain(self, chain_id: ChainId) -> OperationBuilder[()]:
        """Start an operation builder bound to ``chain_id``."""
        return OperationBuilder(chain_id, self)

    # -------------------------------------------------------------------------
    # Session lifecycle
    # -------------------------------------------------------------------------

    async def connect(
        self, permissions: ChainPermissions, timeout: float | None = None
    ) -> dict[str, Any]:
        """Open a session; returns ``{"sessionId", "permissions"}``."""
        result = await self.call_method(
            "wm_connect", {"permissions": permissions}, self._timeout(timeout)
        )
        self._session_id = result["sessionId"]
        logger.info("Connected with session %s", self._session_id)
        return result

    async def reconnect(self, session_id: str, timeout: float | None = None) -> dict[str, Any]:
        """Resume ``session_id``.

        A ``status: False`` answer is returned as is and the local session id
        is left untouched; an error clears it.
        """
        try:
            result = await self.call_method(
                "wm_reconnect", {"sessionId": session_id}, self._timeout(timeout)
            )
        except Exception:
            self._session_id = None
            raise

        if result.get("status"):
            self._session_id = session_id
        return result

    async def disconnect(self, timeout: float | None = None) -> None:
        """End the current session.

        A router that is already gone counts as disconnected. The local
        session id is always cleared.
        """
        session_id = self._require_session()
        try:
            await self.call_method("wm_disconnect", {"sessionId": session_id}, self._timeout(timeout))
        except ConnectionError as e:
            logger.debug("Router unreachable during disconnect: %s", e)
        finally:
            self._session_id = None

    # -------------------------------------------------------------------------
    # Permissions
    # -------------------------------------------------------------------------

    async def get_permissions(
        self, chain_ids: list[ChainId] | None = None, timeout: float | None = None
    ) -> HumanReadableChainPermissions:
        """Return the current grants; empty when not connected."""
        if self._session_id is None:
            return {}
        params: dict[str, Any] = {"sessionId": self._session_id}
        if chain_ids is not None:
            params["chainIds"] = chain_ids
        return await self.call_method("wm_getPermissions", params, self._timeout(timeout))

    async def update_permissions(
        self, permissions: ChainPermissions, timeout: float | None = None
    ) -> HumanReadableChainPermissions:
        session_id = self._require_session()
        return await self.call_method(
            "wm_updatePermissions",
            {"sessionId": session_id, "permissions": permissions},
            self._timeout(timeout),
        )

    async def get_supported_methods(
        self, chain_ids: list[ChainId] | None = None, timeout: float | None = None
    ) -> dict[str, list[str]]:
        params: dict[str, Any] = {}
        if chain_ids:
            params["chainIds"] = chain_ids
        if self._session_id is not None:
            params["sessionId"] = self._session_id
        return await self.call_method("wm_getSupportedMethods", params, self._timeout(timeout))

    # -------------------------------------------------------------------------
    # Wallet calls
    # -------------------------------------------------------------------------

    async def call(
        self,
        chain_id: ChainId,
        call: MethodCall | Mapping[str, Any],
        timeout: float | None = None,
    ) -> Any:
        """Invoke one wallet method on ``chain_id`` and return its result."""
        session_id = self._require_session()
        call = _as_call(call)
        serialized = await self.serializers.serialize_call(call)
        result = await self.call_method(
            "wm_call",
            {"chainId": chain_id, "sessionId": session_id, "call": serialized.to_dict()},
            self._timeout(timeout),
        )
        return await self.serializers.deserialize_result(call.method, result)

    async def bulk_call(
        self,
        chain_id: ChainId,
        calls: Iterable[MethodCall | Mapping[str, Any]],
        timeout: float | None = None,
    ) -> list[Any]:
        """Invoke several wallet methods in order; results keep call order."""
        session_id = self._require_session()
        calls = [_as_call(call) for call in calls]
        serialized = [await self.serializers.serialize_call(call) for call in calls]
        results = await self.call_method(
            "wm_bulkCall",
            {
                "chainId": chain_id,
                "sessionId": session_id,
                "calls": [call.to_dict() for call in serialized],
            },
            self._timeout(timeout),
        )
        return [
            await self.serializers.deserialize_result(call.method, result)
            for call, result in zip(calls, results)
        ]
