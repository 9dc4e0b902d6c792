"""In-process transport for connecting nodes without any network I/O.

Delivery is always deferred to a later event loop iteration so callers see
the same asynchrony they would over a real transport.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any

from walletrouter.config import LocalTransportConfig
from walletrouter.error import TransportError
from walletrouter.types import Message, MessageHandler

logger = logging.getLogger(__name__)


class LocalTransport:
    """Transport whose ``send`` delivers straight into a connected peer.

    The peer is either another ``LocalTransport`` (see
    ``create_local_transport_pair``) or anything with a ``receive_message``
    method, such as a ``JsonRpcNode``.

    Handler errors are logged by default. With ``throw_on_error`` they are
    re-raised: from ``send`` when the peer's receive fails, and from the
    dispatch task (and ``drain()``) when the local handler fails.
    """

    def __init__(self, config: LocalTransportConfig | None = None) -> None:
        self.config = config or LocalTransportConfig()
        self._remote: Any = None
        self._handler: MessageHandler | None = None
        self._tasks: set[asyncio.Task[None]] = set()
        self._errors: list[BaseException] = []
        self._closed = False

    @property
    def origin(self) -> str | None:
        return self.config.origin

    @property
    def closed(self) -> bool:
        return self._closed

    def connect_to(self, remote: Any) -> None:
        """Connect (or with None, disconnect) the peer that receives our sends."""
        self._remote = remote

    def on_message(self, handler: MessageHandler) -> None:
        self._handler = handler

    async def send(self, message: Message) -> None:
        """Deliver ``message`` to the peer on the next loop iteration.

        Raises:
            TransportError: No peer is connected or the transport is closed
        """
        if self._closed:
            raise TransportError("LocalTransport: Transport is closed")
        if self._remote is None:
            raise TransportError("LocalTransport: No remote node connected")

        await asyncio.sleep(0)

        remote = self._remote
        if remote is None:
            # Disconnected while the message was in flight
            return

        try:
            receive = getattr(remote, "receive", None) or remote.receive_message
            result = receive(message)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            if self.config.throw_on_error:
                raise
            logger.warning("LocalTransport: Error in receiveMessage: %s", e, exc_info=True)

    def receive(self, message: Message) -> None:
        """Schedule dispatch of ``message`` to the registered handler."""
        if self._closed:
            return
        task = asyncio.get_running_loop().create_task(self._dispatch(message))
        self._tasks.add(task)
        task.add_done_callback(self._on_dispatch_done)

    def _on_dispatch_done(self, task: asyncio.Task[None]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            # Strict mode only; surfaced through the loop's exception handler
            self._errors.append(error)
            task.get_loop().call_exception_handler({
                "message": "LocalTransport: Error in message handler",
                "exception": error,
                "task": task,
            })

    async def _dispatch(self, message: Message) -> None:
        await asyncio.sleep(0)
        handler = self._handler
        if handler is None:
            return
        try:
            result = handler(message)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            if self.config.throw_on_error:
                raise
            logger.warning("LocalTransport: Error in message handler: %s", e, exc_info=True)

    async def drain(self) -> None:
        """Wait until every scheduled dispatch has finished.

        In strict mode the first handler error since the last drain is
        re-raised here.
        """
        while pending := [task for task in self._tasks if not task.done()]:
            await asyncio.wait(pending)
        if self._errors:
            error = self._errors[0]
            self._errors.clear()
            raise error

    def close(self) -> None:
        self._closed = True
        self._remote = None
        self._handler = None


def create_local_transport_pair(
    config_a: LocalTransportConfig | None = None,
    config_b: LocalTransportConfig | None = None,
) -> tuple[LocalTransport, LocalTransport]:
    """Create two cross-wired transports.

    Example:
        ```python
        router_side, wallet_side = create_local_transport_pair()
        wallet = JsonRpcNode(wallet_side)
        router = WalletRouter(client_transport, {"x:1": router_side}, ...)
        ```
    """
    a = LocalTransport(config_a)
    b = LocalTransport(config_b)
    a.connect_to(b)
    b.connect_to(a)
    return a, b


def create_local_transport(node: Any, config: LocalTransportConfig | None = None) -> LocalTransport:
    """Create a transport whose sends are delivered to an existing node."""
    transport = LocalTransport(config)
    transport.connect_to(node)
    return transport
