"""Request interceptors for the router.

A middleware is an async callable ``(context, request, next_)``. It either
raises to abort the request or awaits ``next_()`` and returns (optionally
post-processing) its result. ``MiddlewarePipeline`` composes the list
right-to-left around a final handler, so the first middleware added runs first.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from functools import partial
from typing import Any

from walletrouter.error import RouterError
from walletrouter.session_store import SessionStore, session_key
from walletrouter.types import Message, RouterContext, Transport

logger = logging.getLogger(__name__)

NextFunc = Callable[[], Awaitable[Any]]
Middleware = Callable[[Any, Message, NextFunc], Awaitable[Any]]
FinalHandler = Callable[[Any, Message], Awaitable[Any]]
PermissionCheck = Callable[[RouterContext, Message], Awaitable[bool]]

# Methods that need no session at all
SESSION_FREE_METHODS = frozenset({"wm_getSupportedMethods"})


class MiddlewarePipeline:
    """Ordered list of middleware wrapped around a final handler."""

    def __init__(self, final_handler: FinalHandler) -> None:
        self._final_handler = final_handler
        self._middleware: list[Middleware] = []

    def add(self, middleware: Middleware) -> Callable[[], None]:
        """Append a middleware and return a callable that removes it."""
        self._middleware.append(middleware)
        return partial(self.remove, middleware)

    def remove(self, middleware: Middleware) -> None:
        if middleware in self._middleware:
            self._middleware.remove(middleware)

    def clear(self) -> None:
        self._middleware.clear()

    def __len__(self) -> int:
        return len(self._middleware)

    async def execute(self, context: Any, request: Message) -> Any:
        """Run the request through every middleware and the final handler."""

        async def call_final() -> Any:
            return await self._final_handler(context, request)

        chain: NextFunc = call_final
        for middleware in reversed(list(self._middleware)):
            chain = _bind(middleware, context, request, chain)
        return await chain()


def _bind(middleware: Middleware, context: Any, request: Message, next_: NextFunc) -> NextFunc:
    async def run() -> Any:
        return await middleware(context, request, next_)

    return run


def _session_id(request: Message) -> str | None:
    params = request.get("params")
    if isinstance(params, dict):
        session_id = params.get("sessionId")
        if isinstance(session_id, str) and session_id:
            return session_id
    return None


def create_transport_context_middleware(transport: Transport) -> Middleware:
    """Bind ``context.origin`` from the transport's ``origin`` attribute.

    Nothing the caller sends is consulted. A transport without an origin
    leaves ``context.origin`` unset.
    """

    async def transport_context_middleware(
        context: RouterContext, request: Message, next_: NextFunc
    ) -> Any:
        context.origin = getattr(transport, "origin", None) or None
        return await next_()

    return transport_context_middleware


def create_session_middleware(store: SessionStore) -> Middleware:
    """Resolve the request's session id to a stored session.

    ``wm_connect`` must not carry a session id. ``wm_reconnect`` must carry one
    but validates it itself. Everything else needs a session that exists.
    """

    async def session_middleware(context: RouterContext, request: Message, next_: NextFunc) -> Any:
        method = request.get("method")
        session_id = _session_id(request)

        if method == "wm_connect":
            if session_id is not None:
                raise RouterError.invalid_request("Session ID not allowed for wm_connect")
            return await next_()

        if method in SESSION_FREE_METHODS:
            return await next_()

        if session_id is None:
            raise RouterError.invalid_session("Missing session ID")

        if method == "wm_reconnect":
            return await next_()

        session = None
        if context.origin:
            session = await store.validate_and_refresh(session_key(context.origin, session_id))

        if session is None:
            # Origin detection can disagree between the client and the
            # transport, so fall back to matching on the session id alone.
            suffix = f"_{session_id}"
            for key, stored in (await store.get_all()).items():
                if key.endswith(suffix) and stored.id == session_id:
                    logger.warning(
                        "Session %s resolved by id scan; request origin %r, stored origin %r",
                        session_id,
                        context.origin,
                        stored.origin,
                    )
                    session = await store.validate_and_refresh(key)
                    if session is not None:
                        context.origin = session.origin
                    break

        if session is None:
            raise RouterError.invalid_session()

        context.session = session
        return await next_()

    return session_middleware


def create_permissions_middleware(check_permissions: PermissionCheck) -> Middleware:
    """Deny the request unless the permission callback approves it."""

    async def permissions_middleware(context: RouterContext, request: Message, next_: NextFunc) -> Any:
        try:
            allowed = await check_permissions(context, request)
        except Exception as e:
            logger.warning("Permission check failed for %s: %s", request.get("method"), e)
            raise RouterError.insufficient_permissions(str(e)) from e
        if not allowed:
            raise RouterError.insufficient_permissions()
        return await next_()

    return permissions_middleware
