"""Tests for WalletRouterProvider."""

import asyncio

import pytest

from walletrouter import (
    ErrorCode,
    JsonRpcNode,
    LocalTransport,
    MethodCall,
    MethodSerializer,
    ProviderConfig,
    RequestTimeoutError,
    RouterError,
    WalletRouterProvider,
    create_local_transport_pair,
)
from tests.conftest import create_harness


class HexSerializer:
    """Encodes integers as hex strings inside the serialized envelope."""

    async def serialize(self, method, value):
        return {"serialized": hex(value), "method": method}

    async def deserialize(self, method, data):
        return int(data["serialized"], 16)


def unanswered_provider(config: ProviderConfig | None = None) -> WalletRouterProvider:
    """A provider whose peer never answers."""
    a, b = create_local_transport_pair()
    b.on_message(lambda message: None)
    return WalletRouterProvider(a, config)


@pytest.mark.asyncio
class TestLocalSessionChecks:
    """Methods needing a session fail before any round trip."""

    @pytest.mark.parametrize(
        "invoke",
        [
            lambda p: p.call("x:1", MethodCall("echo")),
            lambda p: p.bulk_call("x:1", [MethodCall("echo")]),
            lambda p: p.update_permissions({"x:1": ["echo"]}),
            lambda p: p.disconnect(),
        ],
    )
    async def test_requires_session(self, invoke):
        """Test that session methods fail locally without a session."""
        provider = WalletRouterProvider(LocalTransport())
        with pytest.raises(RouterError) as exc_info:
            await invoke(provider)
        assert exc_info.value.error_code is ErrorCode.INVALID_SESSION

    async def test_get_permissions_without_session(self):
        """Test get_permissions without a session."""
        provider = WalletRouterProvider(LocalTransport())
        assert await provider.get_permissions() == {}

    async def test_invalid_call_shape(self, harness):
        """Test a call with an invalid shape."""
        await harness.provider.connect({"x:1": ["echo"]})
        with pytest.raises(RouterError) as exc_info:
            await harness.provider.call("x:1", {"params": [1]})
        assert exc_info.value.error_code is ErrorCode.INVALID_REQUEST


@pytest.mark.asyncio
class TestSessionTracking:
    async def test_disconnect_tolerates_missing_router(self, harness):
        """Test disconnecting when the router is gone."""
        await harness.provider.connect({"x:1": ["echo"]})
        harness.provider.transport.close()

        await harness.provider.disconnect()
        assert harness.provider.session_id is None

    async def test_disconnect_clears_session_on_other_errors(self):
        """Test that disconnect clears the session on other errors."""
        harness = create_harness()
        await harness.provider.connect({"x:1": ["echo"]})
        await harness.router.close()

        with pytest.raises(RequestTimeoutError):
            await harness.provider.disconnect(timeout=0.05)
        assert harness.provider.session_id is None

    async def test_reconnect_error_clears_session(self):
        """Test that a reconnect error clears the session."""
        provider = unanswered_provider()
        provider._session_id = "old"
        with pytest.raises(RequestTimeoutError):
            await provider.reconnect("old", timeout=0.05)
        assert provider.session_id is None

    async def test_reconnect_adopts_session(self, harness):
        """Test that a successful reconnect adopts the session."""
        session_id = (await harness.provider.connect({"x:1": ["echo"]}))["sessionId"]
        other = WalletRouterProvider(harness.provider.transport)
        assert other.session_id is None

        result = await other.reconnect(session_id)
        assert result["status"] is True
        assert other.session_id == session_id

    async def test_foreign_termination_ignored(self, harness):
        """Test that termination of another session is ignored."""
        session_id = (await harness.provider.connect({"x:1": ["echo"]}))["sessionId"]
        await harness.provider.dispatch_local("wm_sessionTerminated", {"sessionId": "other"})
        assert harness.provider.session_id == session_id

    async def test_default_timeout(self):
        """Test the provider default timeout."""
        provider = unanswered_provider(ProviderConfig(default_timeout=0.05))
        with pytest.raises(RequestTimeoutError):
            await provider.get_supported_methods()


@pytest.mark.asyncio
class TestSerializers:
    """Serializers run on the provider side only."""

    async def make(self):
        harness = create_harness()
        seen = []
        wallet = harness.wallets["x:1"]

        async def double(context, params):
            seen.append(params)
            value = int(params["serialized"], 16) * 2
            return {"serialized": hex(value), "method": "double"}

        wallet.register_method("double", double)
        harness.provider.register_method_serializer(
            "double", MethodSerializer(params=HexSerializer(), result=HexSerializer())
        )
        await harness.provider.connect({"x:1": ["double", "echo"]})
        return harness, seen

    async def test_call_serializes_params_and_result(self):
        """Test that call serializes params and deserializes the result."""
        harness, seen = await self.make()
        assert await harness.provider.call("x:1", MethodCall("double", 21)) == 42
        assert seen == [{"serialized": "0x15", "method": "double"}]

    async def test_bulk_call_uses_wallet_method_names(self):
        """Test that bulk call serializers are keyed by wallet method."""
        harness, _ = await self.make()
        results = await harness.provider.bulk_call(
            "x:1", [MethodCall("double", 5), MethodCall("echo", ["plain"])]
        )
        assert results == [10, "plain"]


@pytest.mark.asyncio
class TestRouterEvents:
    async def test_events_reach_listeners(self):
        """Test that router events reach provider listeners."""
        a, b = create_local_transport_pair()
        provider = WalletRouterProvider(a)
        router_stub = JsonRpcNode(b)
        received = asyncio.get_running_loop().create_future()
        provider.on("wm_walletAvailabilityChanged", received.set_result)

        await router_stub.emit("wm_walletAvailabilityChanged", {"chainId": "x:1", "available": False})
        assert await asyncio.wait_for(received, 1) == {"chainId": "x:1", "available": False}
