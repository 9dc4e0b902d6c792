"""Bidirectional JSON-RPC 2.0 node.

A node owns one transport and plays both roles over it:

1. Requests it receives run through a middleware pipeline and then the
   registered method handler; the result or error goes back as a response.
2. Requests it sends (``call_method``) are tracked by id until the matching
   response arrives or the caller's timeout expires.
3. Events (``{"jsonrpc": "2.0", "event": ..., "params": ...}``) are fire-and-
   forget in both directions.

``WalletRouter`` and ``WalletRouterProvider`` are both nodes. A wallet
implementation can be a plain node with its methods registered.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import uuid
from collections.abc import Awaitable, Callable
from functools import partial
from typing import Any

from walletrouter.error import (
    INVALID_REQUEST,
    METHOD_NOT_FOUND,
    PARSE_ERROR,
    JsonRpcError,
    RequestTimeoutError,
    RouterError,
    TransportError,
)
from walletrouter.middleware import Middleware, MiddlewarePipeline
from walletrouter.types import Message, RouterContext, Transport

logger = logging.getLogger(__name__)

MethodHandler = Callable[[RouterContext, Any], Awaitable[Any]]
EventHandler = Callable[[Any], Any]


class JsonRpcNode:
    """A JSON-RPC peer bound to one transport.

    Example:
        ```python
        wallet = JsonRpcNode(transport)

        async def echo(context, params):
            return params[0]

        wallet.register_method("echo", echo)
        ```
    """

    # Inbound `_context.origin` seeds `context.origin`; off for nodes that face
    # untrusted callers.
    accept_context_origin = True

    def __init__(self, transport: Transport) -> None:
        self.transport = transport
        self._methods: dict[str, MethodHandler] = {}
        self._pending: dict[str, asyncio.Future[Any]] = {}
        self._event_handlers: dict[str, list[EventHandler]] = {}
        self._pipeline = MiddlewarePipeline(self._dispatch)
        self._closed = False
        transport.on_message(self._on_transport_message)

    # -------------------------------------------------------------------------
    # Registration
    # -------------------------------------------------------------------------

    def register_method(self, name: str, handler: MethodHandler) -> None:
        """Register the async handler ``handler(context, params)`` for ``name``."""
        self._methods[name] = handler

    def get_registered_methods(self) -> list[str]:
        return list(self._methods)

    def add_middleware(self, middleware: Middleware) -> Callable[[], None]:
        """Append a middleware; returns a callable that removes it."""
        return self._pipeline.add(middleware)

    def on(self, event: str, handler: EventHandler) -> Callable[[], None]:
        """Listen for ``event``; returns a callable that removes the listener."""
        self._event_handlers.setdefault(event, []).append(handler)
        return partial(self._off, event, handler)

    def _off(self, event: str, handler: EventHandler) -> None:
        handlers = self._event_handlers.get(event)
        if handlers and handler in handlers:
            handlers.remove(handler)

    # -------------------------------------------------------------------------
    # Outgoing
    # -------------------------------------------------------------------------

    async def call_method(self, method: str, params: Any = None, timeout: float | None = None) -> Any:
        """Call ``method`` on the peer and return its result.

        Raises:
            RouterError: The peer answered with a router error code
            JsonRpcError: The peer answered with any other error
            RequestTimeoutError: No answer within ``timeout`` seconds
        """
        if self._closed:
            raise TransportError("Node closed")

        request_id = str(uuid.uuid4())
        request: Message = {"jsonrpc": "2.0", "method": method, "id": request_id}
        if params is not None:
            request["params"] = params

        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        try:
            await self.transport.send(request)
            if timeout is None:
                return await future
            try:
                return await asyncio.wait_for(future, timeout)
            except asyncio.TimeoutError:
                raise RequestTimeoutError(timeout, method) from None
        finally:
            self._pending.pop(request_id, None)

    async def notify(self, method: str, params: Any = None) -> None:
        """Send a request without an id; no response is expected."""
        message: Message = {"jsonrpc": "2.0", "method": method}
        if params is not None:
            message["params"] = params
        await self.transport.send(message)

    async def emit(self, event: str, params: Any = None) -> None:
        """Send an event to the peer."""
        await self.transport.send({"jsonrpc": "2.0", "event": event, "params": params})

    async def dispatch_local(self, event: str, params: Any = None) -> None:
        """Deliver an event to this node's own listeners."""
        for handler in list(self._event_handlers.get(event, ())):
            try:
                result = handler(params)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Error in %s event handler", event)

    # -------------------------------------------------------------------------
    # Incoming
    # -------------------------------------------------------------------------

    async def _on_transport_message(self, message: Any) -> None:
        try:
            await self.receive_message(message)
        except Exception:
            logger.exception("Error handling message")

    async def receive_message(self, message: Any) -> None:
        """Validate and route one message received from the transport."""
        if self._closed:
            return

        if not isinstance(message, dict):
            logger.error("Invalid message received: %r", message)
            await self._send_error(None, JsonRpcError(PARSE_ERROR, "Parse error"))
            return

        if message.get("jsonrpc") != "2.0":
            logger.error("Invalid message received: %r", message)
            await self._send_error(message.get("id"), JsonRpcError(INVALID_REQUEST, "Invalid Request"))
            return

        if isinstance(message.get("method"), str):
            await self._handle_request(message)
        elif isinstance(message.get("event"), str):
            await self.dispatch_local(message["event"], message.get("params"))
        elif "id" in message:
            self._handle_response(message)
        else:
            logger.warning("Unroutable message: %r", message)

    def create_context(self, request: Message) -> RouterContext:
        """Build the per-request context.

        The request's ``_context`` side-channel is exposed as
        ``context.extra["_context"]``. Its origin seeds ``context.origin`` only
        when ``accept_context_origin`` is set.
        """
        context = RouterContext()
        meta = request.pop("_context", None)
        if isinstance(meta, dict):
            context.extra["_context"] = meta
            origin = meta.get("origin")
            if self.accept_context_origin and isinstance(origin, str) and origin:
                context.origin = origin
        return context

    async def _handle_request(self, request: Message) -> None:
        request_id = request.get("id")
        context = self.create_context(request)
        try:
            result = await self._pipeline.execute(context, request)
        except JsonRpcError as e:
            if request_id is not None:
                await self._send_error(request_id, e)
            return
        except Exception as e:
            logger.exception("Unhandled error in %s", request.get("method"))
            if request_id is not None:
                await self._send_error(request_id, RouterError.unknown_error(str(e)))
            return

        if request_id is not None:
            await self.transport.send({"jsonrpc": "2.0", "result": result, "id": request_id})

    async def _dispatch(self, context: RouterContext, request: Message) -> Any:
        method = request["method"]
        handler = self._methods.get(method)
        if handler is None:
            raise JsonRpcError(METHOD_NOT_FOUND, "Method not found", method)
        return await handler(context, request.get("params"))

    def _handle_response(self, response: Message) -> None:
        future = self._pending.get(response.get("id"))
        if future is None or future.done():
            logger.debug("Ignoring response for unknown request %r", response.get("id"))
            return

        error = response.get("error")
        if isinstance(error, dict):
            future.set_exception(
                RouterError.from_wire(
                    error.get("code", -32603), error.get("message", "Unknown error"), error.get("data")
                )
            )
        else:
            future.set_result(response.get("result"))

    async def _send_error(self, request_id: Any, error: JsonRpcError) -> None:
        await self.transport.send({"jsonrpc": "2.0", "error": error.to_dict(), "id": request_id})

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    @property
    def closed(self) -> bool:
        return self._closed

    async def close(self) -> None:
        """Drop listeners and middleware and fail every pending request.

        The transport itself is left open.
        """
        self._closed = True
        self._event_handlers.clear()
        self._pipeline.clear()
        for future in self._pending.values():
            if not future.done():
                future.set_exception(TransportError("Node closed"))
        self._pending.clear()
