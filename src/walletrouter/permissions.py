"""Permission manager implementations.

The router only depends on the ``PermissionManager`` protocol; these are two
ready-made strategies behind it.
"""

from __future__ import annotations

import inspect
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any, Union

from walletrouter.types import (
    ChainId,
    ChainPermissions,
    HumanReadableChainPermissions,
    Message,
    RouterContext,
)

ApproveCallback = Callable[
    [RouterContext, ChainPermissions],
    Union[HumanReadableChainPermissions, Awaitable[HumanReadableChainPermissions]],
]
AskCallback = Callable[[RouterContext, Message], Union[bool, Awaitable[bool]]]


async def _resolve(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


class PermissivePermissionManager:
    """Approve everything that is requested.

    Useful for trusted embeddings and tests. Grants are remembered per session
    so ``get_permissions`` can describe them.
    """

    def __init__(self) -> None:
        self._grants: dict[str, ChainPermissions] = {}

    @staticmethod
    def _describe(permissions: ChainPermissions) -> HumanReadableChainPermissions:
        return {
            chain_id: {method: {"allowed": True, "shortDescription": "allow"} for method in methods}
            for chain_id, methods in permissions.items()
        }

    async def approve_permissions(
        self, context: RouterContext, permissions: ChainPermissions
    ) -> HumanReadableChainPermissions:
        if context.session is not None:
            granted = self._grants.setdefault(context.session.id, {})
            for chain_id, methods in permissions.items():
                existing = granted.setdefault(chain_id, [])
                existing.extend(m for m in methods if m not in existing)
        return self._describe(permissions)

    async def check_permissions(self, context: RouterContext, request: Message) -> bool:
        return True

    async def get_permissions(
        self, context: RouterContext, chain_ids: list[ChainId] | None = None
    ) -> HumanReadableChainPermissions:
        if context.session is None:
            return {}
        granted = self._grants.get(context.session.id, {})
        if chain_ids is not None:
            granted = {c: m for c, m in granted.items() if c in chain_ids}
        return self._describe(granted)

    async def cleanup(self, context: RouterContext, session_id: str) -> None:
        self._grants.pop(session_id, None)


class AllowAskDenyState(str, Enum):
    """Per-method permission state."""

    ALLOW = "allow"
    DENY = "deny"
    ASK = "ask"


class AllowAskDenyManager:
    """Three-state permission model.

    - ALLOW: calls pass without prompting
    - DENY: calls are rejected without prompting
    - ASK: ``ask_callback`` decides each call

    Single calls to a method with no recorded state are denied. Bulk calls are
    all-or-nothing: any DENY rejects the batch, any ASK or unknown method asks
    once for the whole batch.

    Example:
        ```python
        manager = AllowAskDenyManager(
            approve_callback=show_connect_dialog,
            ask_callback=lambda ctx, req: prompt_user(req["method"]),
            initial_state={
                "eip155:1": {
                    "eth_accounts": AllowAskDenyState.ALLOW,
                    "eth_sendTransaction": AllowAskDenyState.ASK,
                    "personal_sign": AllowAskDenyState.DENY,
                },
            },
        )
        ```
    """

    def __init__(
        self,
        approve_callback: ApproveCallback,
        ask_callback: AskCallback | None = None,
        initial_state: dict[ChainId, dict[str, AllowAskDenyState]] | None = None,
    ) -> None:
        self._approve = approve_callback
        self._ask = ask_callback
        self._permissions: dict[ChainId, dict[str, AllowAskDenyState]] = {
            chain_id: dict(methods) for chain_id, methods in (initial_state or {}).items()
        }

    def set_permission(self, chain_id: ChainId, method: str, state: AllowAskDenyState) -> None:
        self._permissions.setdefault(chain_id, {})[method] = AllowAskDenyState(state)

    def get_state(self, chain_id: ChainId, method: str) -> AllowAskDenyState | None:
        return self._permissions.get(chain_id, {}).get(method)

    async def approve_permissions(
        self, context: RouterContext, permissions: ChainPermissions
    ) -> HumanReadableChainPermissions:
        return await _resolve(self._approve(context, permissions))

    async def get_permissions(
        self, context: RouterContext, chain_ids: list[ChainId] | None = None
    ) -> HumanReadableChainPermissions:
        if context.session is None or not context.origin:
            return {}

        selected = chain_ids if chain_ids is not None else list(self._permissions)
        result: HumanReadableChainPermissions = {}
        for chain_id in selected:
            methods = self._permissions.get(chain_id)
            if not methods:
                continue
            result[chain_id] = {
                method: {
                    "allowed": state in (AllowAskDenyState.ALLOW, AllowAskDenyState.ASK),
                    "shortDescription": state.value,
                }
                for method, state in methods.items()
            }
        return result

    async def check_permissions(self, context: RouterContext, request: Message) -> bool:
        method = request.get("method")
        if method == "wm_call":
            return await self.check_call_permissions(context, request)
        if method == "wm_bulkCall":
            return await self.check_bulk_call_permissions(context, request)
        return True

    async def check_call_permissions(self, context: RouterContext, request: Message) -> bool:
        params = request.get("params") or {}
        chain_id = params.get("chainId")
        call = params.get("call")
        if not chain_id or not isinstance(call, dict):
            return False

        state = self.get_state(chain_id, call.get("method"))
        if state is AllowAskDenyState.ALLOW:
            return True
        if state is AllowAskDenyState.ASK:
            return await self._ask_user(context, request)
        return False

    async def check_bulk_call_permissions(self, context: RouterContext, request: Message) -> bool:
        params = request.get("params") or {}
        chain_id = params.get("chainId")
        calls = params.get("calls")
        if not chain_id or not isinstance(calls, list):
            return False

        methods = {call.get("method") for call in calls if isinstance(call, dict)}
        if not methods:
            return False

        states = [self.get_state(chain_id, method) for method in methods]
        if AllowAskDenyState.DENY in states:
            return False
        if any(state is None or state is AllowAskDenyState.ASK for state in states):
            return await self._ask_user(context, request)
        return True

    async def _ask_user(self, context: RouterContext, request: Message) -> bool:
        if self._ask is None:
            return False
        return bool(await _resolve(self._ask(context, request)))
