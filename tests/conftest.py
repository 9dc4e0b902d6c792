"""Pytest configuration for all tests.

Everything runs in-process over ``LocalTransport`` pairs:

    provider <-> client transports <-> router <-> wallet transports <-> wallet nodes
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any

import pytest

from walletrouter import (
    JsonRpcError,
    JsonRpcNode,
    LocalTransportConfig,
    MemorySessionStore,
    PermissivePermissionManager,
    RouterConfig,
    SessionStore,
    WalletRouter,
    WalletRouterProvider,
    create_local_transport_pair,
)

ORIGIN = "https://dapp.example"


def create_wallet_node(transport: Any, chain_id: str = "x:1") -> JsonRpcNode:
    """Create a wallet node with a handful of test methods.

    - echo: returns its first param
    - add: sums its params
    - count: returns how many times it has been called
    - origin: returns the origin the router forwarded
    - fail: answers with a structured wallet error
    - boom: raises an unexpected exception
    - slow: never answers within test timeouts
    """
    wallet = JsonRpcNode(transport)
    calls: list[str] = []

    async def echo(context, params):
        calls.append("echo")
        return params[0] if isinstance(params, list) and params else params

    async def add(context, params):
        calls.append("add")
        return sum(params)

    async def count(context, params):
        calls.append("count")
        return len([c for c in calls if c == "count"])

    async def origin(context, params):
        return context.origin

    async def fail(context, params):
        calls.append("fail")
        raise JsonRpcError(4001, "User rejected the request", {"chainId": chain_id})

    async def boom(context, params):
        raise ValueError("boom")

    async def slow(context, params):
        await asyncio.sleep(1)
        return "late"

    async def supported(context, params):
        return ["echo", "add", "count", "origin", "fail"]

    for name, handler in [
        ("echo", echo),
        ("add", add),
        ("count", count),
        ("origin", origin),
        ("fail", fail),
        ("boom", boom),
        ("slow", slow),
        ("wm_getSupportedMethods", supported),
    ]:
        wallet.register_method(name, handler)

    wallet.calls = calls
    return wallet


@dataclass
class RouterHarness:
    """A router with wallets, a provider and the pieces that connect them."""

    router: WalletRouter
    provider: WalletRouterProvider
    store: SessionStore
    permission_manager: Any
    wallets: dict[str, JsonRpcNode] = field(default_factory=dict)


def create_harness(
    chain_ids: tuple[str, ...] = ("x:1",),
    permission_manager: Any = None,
    store: SessionStore | None = None,
    config: RouterConfig | None = None,
    origin: str | None = ORIGIN,
) -> RouterHarness:
    """Wire a provider to a router serving one wallet node per chain."""
    permission_manager = permission_manager or PermissivePermissionManager()
    store = store or MemorySessionStore()

    wallets: dict[str, JsonRpcNode] = {}
    router_sides = {}
    for chain_id in chain_ids:
        router_side, wallet_side = create_local_transport_pair()
        router_sides[chain_id] = router_side
        wallets[chain_id] = create_wallet_node(wallet_side, chain_id)

    provider_transport, router_transport = create_local_transport_pair(
        config_b=LocalTransportConfig(origin=origin)
    )
    router = WalletRouter(router_transport, router_sides, permission_manager, store, config)
    provider = WalletRouterProvider(provider_transport)

    return RouterHarness(router, provider, store, permission_manager, wallets)


def expect_event(node: JsonRpcNode, event: str) -> asyncio.Future:
    """Return a future resolved with the params of the next ``event`` on ``node``."""
    future = asyncio.get_running_loop().create_future()

    def handler(params):
        if not future.done():
            future.set_result(params)

    remove = node.on(event, handler)
    future.add_done_callback(lambda _: remove())
    return future


@pytest.fixture
def harness() -> RouterHarness:
    return create_harness()
