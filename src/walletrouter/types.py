"""Core type definitions for the wallet router protocol."""

from __future__ import annotations

import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Callable, Protocol, TypedDict, runtime_checkable

ChainId = str
ChainPermissions = dict[ChainId, list[str]]
Message = dict[str, Any]
MessageHandler = Callable[[Message], Any]


class PermissionDescription(TypedDict, total=False):
    allowed: bool
    shortDescription: str
    longDescription: str


HumanReadableChainPermissions = dict[ChainId, dict[str, PermissionDescription]]


@dataclass(frozen=True, slots=True)
class MethodCall:
    """A single named wallet method invocation."""

    method: str
    params: Any = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"method": self.method}
        if self.params is not None:
            data["params"] = self.params
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> MethodCall:
        method = data.get("method")
        if not isinstance(method, str) or not method:
            raise ValueError(f"Invalid method call: {data!r}")
        return cls(method=method, params=data.get("params"))


@dataclass(slots=True)
class Session:
    """An authenticated binding between an origin and its requested permissions.

    Only plain data lives here; the record is what durable stores persist.
    """

    id: str
    origin: str
    created_at: float = field(default_factory=time.time)
    permissions: ChainPermissions | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "origin": self.origin,
            "createdAt": self.created_at,
        }
        if self.permissions is not None:
            data["permissions"] = {chain: list(methods) for chain, methods in self.permissions.items()}
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Session:
        permissions = data.get("permissions")
        return cls(
            id=data["id"],
            origin=data["origin"],
            created_at=data.get("createdAt", 0.0),
            permissions=sanitize_permissions(permissions) if permissions is not None else None,
        )


@dataclass(slots=True)
class RouterContext:
    """Per-request state threaded through the middleware pipeline.

    ``origin`` is bound by the transport-context middleware and ``session`` by
    the session middleware once the request's session id resolves.
    """

    origin: str | None = None
    session: Session | None = None
    extra: dict[str, Any] = field(default_factory=dict)


@runtime_checkable
class Transport(Protocol):
    """Interface for a bidirectional message transport.

    Transports may also expose an ``origin`` attribute naming the peer's
    origin and a ``close()`` method.
    """

    async def send(self, message: Message) -> None:
        """Send a message to the peer."""
        ...

    def on_message(self, handler: MessageHandler) -> None:
        """Register the handler for messages received from the peer."""
        ...


class PermissionManager(Protocol):
    """Pluggable authorizer consulted by the router.

    An optional ``async cleanup(context, session_id)`` is called when a
    session ends.
    """

    async def approve_permissions(
        self, context: RouterContext, permissions: ChainPermissions
    ) -> HumanReadableChainPermissions:
        ...

    async def check_permissions(self, context: RouterContext, request: Message) -> bool:
        ...

    async def get_permissions(
        self, context: RouterContext, chain_ids: list[ChainId] | None = None
    ) -> HumanReadableChainPermissions:
        ...


def sanitize_permissions(value: Any) -> ChainPermissions:
    """Normalize a requested permission map.

    Non-string chain ids, non-list method collections and blank or non-string
    method names are dropped, as are chains left with no methods. Anything that
    is not a mapping yields an empty dict.
    """
    if not isinstance(value, Mapping):
        return {}

    result: ChainPermissions = {}
    for chain_id, methods in value.items():
        if not isinstance(chain_id, str) or not chain_id.strip():
            continue
        if not isinstance(methods, (list, tuple)):
            continue
        valid = [m for m in methods if isinstance(m, str) and m.strip()]
        if valid:
            result[chain_id] = valid
    return result
