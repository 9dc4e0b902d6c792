"""Tests for the per-chain forwarding proxy."""

import asyncio

import pytest

from walletrouter.config import ProxyConfig
from walletrouter.error import RequestTimeoutError, TransportError
from walletrouter.local_transport import create_local_transport_pair
from walletrouter.proxy import JsonRpcProxy
from tests.conftest import create_wallet_node


def create_proxy(config: ProxyConfig | None = None, on_notification=None):
    router_side, wallet_side = create_local_transport_pair()
    wallet = create_wallet_node(wallet_side)
    proxy = JsonRpcProxy(router_side, "x:1", config, on_notification)
    return proxy, wallet


@pytest.mark.asyncio
class TestForward:
    """Raw envelope forwarding."""

    async def test_returns_raw_response(self):
        """Test that forward returns the raw response."""
        proxy, _ = create_proxy()
        response = await proxy.forward({"jsonrpc": "2.0", "method": "echo", "params": ["hi"], "id": "r1"})
        assert response == {"jsonrpc": "2.0", "result": "hi", "id": "r1"}

    async def test_returns_raw_error_response(self):
        """Test that forward returns the raw error response."""
        proxy, _ = create_proxy()
        response = await proxy.forward({"jsonrpc": "2.0", "method": "fail", "id": "r2"})
        assert response["id"] == "r2"
        assert response["error"]["code"] == 4001
        assert response["error"]["data"] == {"chainId": "x:1"}

    async def test_interleaved_requests_match_by_id(self):
        """Test that interleaved responses are matched by id."""
        proxy, _ = create_proxy()
        responses = await asyncio.gather(
            *(
                proxy.forward({"jsonrpc": "2.0", "method": "echo", "params": [i], "id": f"r{i}"})
                for i in range(10)
            )
        )
        assert [r["result"] for r in responses] == list(range(10))
        assert [r["id"] for r in responses] == [f"r{i}" for i in range(10)]

    async def test_context_reaches_wallet(self):
        """Test the context argument arrives as the wallet's origin and the message is untouched."""
        proxy, _ = create_proxy()
        message = {"jsonrpc": "2.0", "method": "origin", "id": "r3"}
        response = await proxy.forward(message, {"origin": "https://a.example"})
        assert response["result"] == "https://a.example"
        assert "_context" not in message

    async def test_notification_returns_none(self):
        """Test that forwarding a notification returns None."""
        proxy, wallet = create_proxy()
        assert await proxy.forward({"jsonrpc": "2.0", "method": "count"}) is None
        await asyncio.sleep(0.01)
        assert wallet.calls == ["count"]

    async def test_timeout(self):
        """Test a forward that times out."""
        proxy, _ = create_proxy(ProxyConfig(timeout=0.05))
        with pytest.raises(RequestTimeoutError) as exc_info:
            await proxy.forward({"jsonrpc": "2.0", "method": "slow", "id": "r3"})
        assert exc_info.value.timeout == 0.05


@pytest.mark.asyncio
class TestNotifications:
    async def test_wallet_events_reach_callback(self):
        """Test that wallet events reach the notification callback."""
        received = asyncio.get_running_loop().create_future()
        proxy, wallet = create_proxy(on_notification=received.set_result)

        await wallet.emit("accountsChanged", ["0xabc"])
        message = await asyncio.wait_for(received, 1)
        assert message == {"jsonrpc": "2.0", "event": "accountsChanged", "params": ["0xabc"]}

    async def test_async_callback(self):
        """Test an async notification callback."""
        received = []

        async def on_notification(message):
            received.append(message["method"])

        proxy, wallet = create_proxy(on_notification=on_notification)
        await wallet.notify("chainChanged", {"chainId": "0x1"})
        await proxy.transport.drain()
        assert received == ["chainChanged"]

    async def test_unknown_response_ignored(self, caplog):
        """Test that an unknown response is ignored."""
        proxy, _ = create_proxy(ProxyConfig(debug=True))
        with caplog.at_level("DEBUG", logger="walletrouter.proxy"):
            await proxy._handle_message({"jsonrpc": "2.0", "result": 1, "id": "stale"})
        assert "unknown id" in caplog.text


@pytest.mark.asyncio
class TestClose:
    async def test_close_fails_pending(self):
        """Test that close fails pending forwards."""
        proxy, _ = create_proxy()
        task = asyncio.create_task(proxy.forward({"jsonrpc": "2.0", "method": "slow", "id": "r4"}))
        await asyncio.sleep(0.01)

        proxy.close()
        proxy.close()
        with pytest.raises(TransportError):
            await task
        assert proxy.closed

    async def test_forward_after_close(self):
        """Test forwarding on a closed proxy."""
        proxy, _ = create_proxy()
        proxy.close()
        with pytest.raises(TransportError, match="Proxy is closed"):
            await proxy.forward({"jsonrpc": "2.0", "method": "echo", "id": "r5"})
