"""Per-chain forwarding proxy.

The proxy does not interpret messages: it sends a raw JSON-RPC envelope to the
wallet transport and hands back the raw response envelope with the same id.
Anything else the wallet sends (events, notifications) goes to the
``on_notification`` callback.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from walletrouter.config import ProxyConfig
from walletrouter.error import RequestTimeoutError, TransportError
from walletrouter.types import ChainId, Message, Transport

logger = logging.getLogger(__name__)

NotificationHandler = Callable[[Message], Any]


class JsonRpcProxy:
    """Forward raw JSON-RPC messages to one wallet transport.

    Example:
        ```python
        proxy = JsonRpcProxy(wallet_transport, "eip155:1")
        response = await proxy.forward(
            {"jsonrpc": "2.0", "method": "eth_accounts", "id": "1"}
        )
        ```
    """

    def __init__(
        self,
        transport: Transport,
        chain_id: ChainId,
        config: ProxyConfig | None = None,
        on_notification: NotificationHandler | None = None,
    ) -> None:
        self.transport = transport
        self.chain_id = chain_id
        self.config = config or ProxyConfig()
        self.on_notification = on_notification
        self._pending: dict[Any, asyncio.Future[Message]] = {}
        self._closed = False
        transport.on_message(self._handle_message)
        self._log("Proxy initialized (timeout=%s)", self.config.timeout)

    def _log(self, msg: str, *args: Any) -> None:
        if self.config.debug:
            logger.debug("[%s] " + msg, self.chain_id, *args)

    @property
    def closed(self) -> bool:
        return self._closed

    async def forward(self, message: Message, context: dict[str, Any] | None = None) -> Message | None:
        """Send ``message`` to the wallet.

        ``context``, when given, travels as the envelope's ``_context`` member
        (for example ``{"origin": ...}``); ``message`` itself is not modified.

        Requests (messages with an ``id``) wait for the matching response and
        return it verbatim. Notifications return None as soon as they are sent.

        Raises:
            TransportError: The proxy is closed
            RequestTimeoutError: No response within the configured timeout
        """
        if self._closed:
            raise TransportError("Proxy is closed")

        if context is not None:
            message = {**message, "_context": context}

        request_id = message.get("id")
        if request_id is None:
            self._log("Forwarding notification %s", message.get("method"))
            await self.transport.send(message)
            return None

        future: asyncio.Future[Message] = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        self._log("Forwarding request %s (id=%s)", message.get("method"), request_id)
        try:
            await self.transport.send(message)
            if self.config.timeout is None:
                return await future
            try:
                return await asyncio.wait_for(future, self.config.timeout)
            except asyncio.TimeoutError:
                self._log("Request %s timed out", request_id)
                raise RequestTimeoutError(self.config.timeout, message.get("method")) from None
        finally:
            self._pending.pop(request_id, None)

    async def _handle_message(self, message: Any) -> None:
        if not isinstance(message, dict):
            self._log("Ignoring non-object message %r", message)
            return

        is_response = "id" in message and ("result" in message or "error" in message)
        if is_response:
            future = self._pending.get(message["id"])
            if future is None or future.done():
                self._log("Ignoring response with unknown id %r", message.get("id"))
                return
            future.set_result(message)
            return

        if "method" in message or "event" in message:
            self._log("Received notification %s", message.get("method") or message.get("event"))
            if self.on_notification is not None:
                result = self.on_notification(message)
                if asyncio.iscoroutine(result):
                    await result
            return

        self._log("Ignoring unroutable message %r", message)

    def close(self) -> None:
        """Fail every pending request and stop forwarding. Idempotent."""
        if self._closed:
            return
        self._closed = True
        for future in self._pending.values():
            if not future.done():
                future.set_exception(TransportError("Proxy closed"))
        self._pending.clear()
        self._log("Proxy closed")
