"""Multi-chain wallet router.

The router is the server side of the protocol. It accepts ``wm_*`` requests
from one calling application, authenticates them against the session store,
authorizes them through the permission manager and forwards wallet calls to
the proxy registered for the requested chain.

Request flow:
1. transport-context middleware binds ``context.origin``
2. session middleware resolves ``sessionId`` to a stored ``Session``
3. permission middleware asks the permission manager
4. the registered ``wm_*`` handler runs
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Mapping
from functools import partial
from typing import Any

from walletrouter.config import RouterConfig
from walletrouter.error import ErrorCode, RouterError
from walletrouter.middleware import (
    create_permissions_middleware,
    create_session_middleware,
    create_transport_context_middleware,
)
from walletrouter.node import JsonRpcNode
from walletrouter.proxy import JsonRpcProxy
from walletrouter.session_store import SessionStore, session_key
from walletrouter.types import (
    ChainId,
    HumanReadableChainPermissions,
    Message,
    MethodCall,
    PermissionManager,
    RouterContext,
    Session,
    Transport,
    sanitize_permissions,
)

logger = logging.getLogger(__name__)

WALLET_NOTIFICATION_EVENT = "wm_walletNotification"


def _params(params: Any) -> dict[str, Any]:
    return params if isinstance(params, dict) else {}


def _method_call(value: Any) -> MethodCall:
    if not isinstance(value, dict):
        raise RouterError.invalid_request("Invalid method call")
    try:
        return MethodCall.from_dict(value)
    except ValueError as e:
        raise RouterError.invalid_request(str(e)) from e


class WalletRouter(JsonRpcNode):
    """Route wallet calls from one application to many chain endpoints.

    Example:
        ```python
        router = WalletRouter(
            client_transport,
            {"eip155:1": ethereum_transport, "solana:mainnet": solana_transport},
            AllowAskDenyManager(approve, ask),
            MemorySessionStore(),
        )
        await router.add_wallet("eip155:137", polygon_transport)
        ```

    The caller's origin comes from the client transport only; a ``_context``
    member sent by the caller is never trusted.
    """

    accept_context_origin = False

    def __init__(
        self,
        transport: Transport,
        wallets: Mapping[ChainId, Transport],
        permission_manager: PermissionManager,
        session_store: SessionStore,
        config: RouterConfig | None = None,
    ) -> None:
        super().__init__(transport)
        self.config = config or RouterConfig()
        self.session_store = session_store
        self.permission_manager = permission_manager

        self._proxies: dict[ChainId, JsonRpcProxy] = {}
        for chain_id, wallet_transport in wallets.items():
            self._proxies[chain_id] = self._create_proxy(chain_id, wallet_transport)

        self.add_middleware(create_transport_context_middleware(transport))
        self.add_middleware(create_session_middleware(session_store))
        self.add_middleware(create_permissions_middleware(permission_manager.check_permissions))

        self.register_method("wm_connect", self.connect)
        self.register_method("wm_reconnect", self.reconnect)
        self.register_method("wm_disconnect", self.disconnect)
        self.register_method("wm_getPermissions", self.get_permissions)
        self.register_method("wm_updatePermissions", self.update_permissions)
        self.register_method("wm_call", self.call)
        self.register_method("wm_bulkCall", self.bulk_call)
        self.register_method("wm_getSupportedMethods", self.get_supported_methods)

    # -------------------------------------------------------------------------
    # Wallet registry
    # -------------------------------------------------------------------------

    def _create_proxy(self, chain_id: ChainId, transport: Transport) -> JsonRpcProxy:
        return JsonRpcProxy(
            transport,
            chain_id,
            self.config.proxy_config(),
            on_notification=partial(self._on_wallet_notification, chain_id),
        )

    @property
    def chain_ids(self) -> list[ChainId]:
        return list(self._proxies)

    def validate_chain(self, chain_id: ChainId) -> JsonRpcProxy:
        """Return the proxy for ``chain_id`` or raise ``unknownChain``."""
        proxy = self._proxies.get(chain_id)
        if proxy is None:
            raise RouterError.unknown_chain(f"Unknown chain: {chain_id}")
        return proxy

    async def add_wallet(self, chain_id: ChainId, transport: Transport) -> None:
        """Register a wallet transport for ``chain_id``.

        Raises:
            RouterError: ``invalidRequest`` if the chain is already registered
        """
        if chain_id in self._proxies:
            raise RouterError.invalid_request(f"Chain {chain_id} already exists")

        self._proxies[chain_id] = self._create_proxy(chain_id, transport)
        logger.info("Wallet added for chain %s", chain_id)
        await self._emit_safely("wm_walletAvailabilityChanged", {"chainId": chain_id, "available": True})

    async def remove_wallet(self, chain_id: ChainId) -> None:
        """Close and unregister the wallet for ``chain_id``.

        Raises:
            RouterError: ``unknownChain`` if the chain is not registered
        """
        proxy = self._proxies.get(chain_id)
        if proxy is None:
            raise RouterError.unknown_chain(f"Unknown chain: {chain_id}")

        proxy.close()
        del self._proxies[chain_id]
        logger.info("Wallet removed for chain %s", chain_id)
        await self._emit_safely("wm_walletAvailabilityChanged", {"chainId": chain_id, "available": False})

    async def _on_wallet_notification(self, chain_id: ChainId, message: Message) -> None:
        name = message.get("method") or message.get("event")
        params = message.get("params")
        await self.dispatch_local(
            WALLET_NOTIFICATION_EVENT, {"chainId": chain_id, "method": name, "params": params}
        )
        await self._emit_safely(name, params)

    def on_wallet_notification(self, handler: Any) -> Any:
        """Listen for notifications raised by any wallet transport.

        The handler receives ``{"chainId", "method", "params"}``.
        """
        return self.on(WALLET_NOTIFICATION_EVENT, handler)

    async def _emit_safely(self, event: str, params: Any) -> None:
        try:
            await self.emit(event, params)
        except Exception as e:
            logger.warning("Failed to emit %s: %s", event, e)

    # -------------------------------------------------------------------------
    # Session lifecycle
    # -------------------------------------------------------------------------

    async def connect(self, context: RouterContext, params: Any) -> dict[str, Any]:
        """Handle ``wm_connect``: create a session for the requested permissions."""
        origin = context.origin
        if not origin:
            raise RouterError.invalid_request("Unknown origin")

        permissions = sanitize_permissions(_params(params).get("permissions"))
        if not permissions:
            raise RouterError.invalid_request("No chains specified")

        session = Session(id=str(uuid.uuid4()), origin=origin, permissions=permissions)
        context.session = session

        approved = await self.permission_manager.approve_permissions(context, permissions)

        # The requested map is kept on the record for later reconnection
        await self.session_store.set(session_key(origin, session.id), session)
        logger.info("Session %s created for %s", session.id, origin)

        return {"sessionId": session.id, "permissions": approved}

    async def reconnect(self, context: RouterContext, params: Any) -> dict[str, Any]:
        """Handle ``wm_reconnect``.

        An unknown or expired session is reported as ``status: False`` rather
        than an error.
        """
        origin = context.origin
        if not origin:
            raise RouterError.invalid_request("Unknown origin")

        session_id = _params(params).get("sessionId")
        session = await self.session_store.validate_and_refresh(session_key(origin, session_id))
        if session is None:
            return {"status": False, "permissions": {}}

        context.session = session
        permissions = await self.permission_manager.get_permissions(context)
        return {"status": True, "permissions": permissions}

    async def disconnect(self, context: RouterContext, params: Any) -> bool:
        """Handle ``wm_disconnect``: end the session in ``context``."""
        session = context.session
        if session is None:
            raise RouterError.invalid_session()

        await self._terminate_session(context, session, "User disconnected")
        return True

    async def _terminate_session(self, context: RouterContext, session: Session, reason: str) -> None:
        """End ``session``.

        Permission cleanup and the termination notice are best effort; a
        failure to delete the store record propagates.
        """
        cleanup = getattr(self.permission_manager, "cleanup", None)
        if cleanup is not None:
            try:
                await cleanup(context, session.id)
            except Exception as e:
                logger.warning("Permission cleanup failed for session %s: %s", session.id, e)

        await self._emit_safely("wm_sessionTerminated", {"sessionId": session.id, "reason": reason})

        await self.session_store.delete(session_key(session.origin, session.id))
        logger.info("Session %s terminated: %s", session.id, reason)

    async def revoke_session(self, session_id: str, reason: str = "Session revoked by wallet") -> bool:
        """Terminate a session from the wallet side.

        The store record is deleted even if notifying the application fails.
        Returns False when no stored session has this id.

        Raises:
            Exception: Whatever the session store raised while deleting
        """
        for stored in (await self.session_store.get_all()).values():
            if stored.id == session_id:
                session = stored
                break
        else:
            return False

        context = RouterContext(origin=session.origin, session=session)
        await self._terminate_session(context, session, reason)
        return True

    async def revoke_all_sessions(self, reason: str = "All sessions revoked by wallet") -> int:
        """Revoke every stored session; returns how many were revoked.

        A session that fails to revoke is logged and skipped.
        """
        revoked = 0
        for session in list((await self.session_store.get_all()).values()):
            try:
                if await self.revoke_session(session.id, reason):
                    revoked += 1
            except Exception as e:
                logger.warning("Failed to revoke session %s: %s", session.id, e)
        return revoked

    # -------------------------------------------------------------------------
    # Permissions
    # -------------------------------------------------------------------------

    async def get_permissions(self, context: RouterContext, params: Any) -> HumanReadableChainPermissions:
        """Handle ``wm_getPermissions``."""
        if context.session is None:
            raise RouterError.invalid_session()
        chain_ids = _params(params).get("chainIds")
        return await self.permission_manager.get_permissions(context, chain_ids)

    async def update_permissions(self, context: RouterContext, params: Any) -> HumanReadableChainPermissions:
        """Handle ``wm_updatePermissions``.

        The approved grant stays with the permission manager. The session
        record is re-saved as it is; its requested map is not changed.
        """
        session = context.session
        if session is None:
            raise RouterError.invalid_session()

        requested = sanitize_permissions(_params(params).get("permissions"))
        approved = await self.permission_manager.approve_permissions(context, requested)

        await self.session_store.set(session_key(session.origin, session.id), session)

        return approved

    # -------------------------------------------------------------------------
    # Wallet calls
    # -------------------------------------------------------------------------

    async def _call(self, proxy: JsonRpcProxy, call: MethodCall, origin: str | None = None) -> Any:
        """Forward one call through ``proxy`` and interpret the response.

        Raises:
            RouterError: ``walletError`` if the wallet answered with an error,
                ``walletNotAvailable`` for transport failures and malformed
                responses
        """
        request: Message = {"jsonrpc": "2.0", "method": call.method, "id": str(uuid.uuid4())}
        if call.params is not None:
            request["params"] = call.params
        try:
            response = await proxy.forward(request, {"origin": origin} if origin else None)
        except RouterError:
            raise
        except Exception as e:
            raise RouterError.wallet_not_available(str(e) or type(e).__name__) from e

        if isinstance(response, dict):
            if "result" in response:
                return response["result"]
            error = response.get("error")
            if isinstance(error, dict):
                message = error.get("message", "Unknown error")
                if error.get("data") is not None:
                    raise RouterError.wallet_error({"message": message, "data": error["data"]})
                raise RouterError.wallet_error(message)

        raise RouterError.wallet_not_available("Invalid response from wallet")

    async def call(self, context: RouterContext, params: Any) -> Any:
        """Handle ``wm_call``."""
        params = _params(params)
        proxy = self.validate_chain(params.get("chainId"))
        return await self._call(proxy, _method_call(params.get("call")), context.origin)

    async def bulk_call(self, context: RouterContext, params: Any) -> list[Any]:
        """Handle ``wm_bulkCall``: run the calls one after another.

        Calls are strictly sequential because later calls may depend on the
        side effects of earlier ones.

        Raises:
            RouterError: ``partialFailure`` carrying the results completed
                before the failing call, or ``walletNotAvailable`` if the
                first call failed
        """
        params = _params(params)
        proxy = self.validate_chain(params.get("chainId"))
        raw_calls = params.get("calls")
        if not isinstance(raw_calls, list):
            raise RouterError.invalid_request("calls must be a list")
        calls = [_method_call(raw) for raw in raw_calls]

        responses: list[Any] = []
        try:
            for call in calls:
                responses.append(await self._call(proxy, call, context.origin))
        except Exception as e:
            if responses:
                detail = e.to_dict() if isinstance(e, RouterError) else str(e)
                raise RouterError.partial_failure(responses, detail) from e
            raise RouterError.wallet_not_available(str(e)) from e
        return responses

    async def get_supported_methods(self, context: RouterContext, params: Any) -> dict[str, list[str]]:
        """Handle ``wm_getSupportedMethods``.

        Without chain ids the router's own methods are reported under the
        ``router`` key. A wallet that errors on discovery reports no methods.
        """
        chain_ids = _params(params).get("chainIds")
        if not chain_ids:
            return {"router": list(self.config.supported_methods)}
        if not isinstance(chain_ids, list):
            raise RouterError.invalid_request("chainIds must be a list")

        result: dict[str, list[str]] = {}
        for chain_id in chain_ids:
            proxy = self.validate_chain(chain_id)
            try:
                response = await self._call(proxy, MethodCall("wm_getSupportedMethods"), context.origin)
            except RouterError as e:
                if e.error_code is ErrorCode.WALLET_ERROR:
                    result[chain_id] = []
                    continue
                raise
            result[chain_id] = list(response) if isinstance(response, list) else []
        return result

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def close(self) -> None:
        """Close every wallet proxy, then the node."""
        for chain_id, proxy in self._proxies.items():
            try:
                proxy.close()
            except Exception as e:
                logger.warning("Failed to close proxy for chain %s: %s", chain_id, e)
        self._proxies.clear()
        await super().close()
