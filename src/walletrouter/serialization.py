"""Per-method payload serializers applied by the provider.

A wallet method whose params or results are not plain JSON (binary blobs,
big integers, typed objects) can register a ``MethodSerializer``. The provider
runs outgoing params through ``serialize_call`` and incoming results through
``deserialize_result``; the router never sees anything but JSON.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Any, Protocol, TypedDict

from walletrouter.types import MethodCall

logger = logging.getLogger(__name__)


class SerializedData(TypedDict):
    """Envelope produced by a serializer.

    Both fields are required; results without them are never deserialized.
    """

    serialized: str
    method: str


class Serializer(Protocol):
    async def serialize(self, method: str, value: Any) -> SerializedData:
        ...

    async def deserialize(self, method: str, data: SerializedData) -> Any:
        ...


@dataclass(frozen=True, slots=True)
class MethodSerializer:
    """Serializers for one method's params and result; either may be absent."""

    params: Serializer | None = None
    result: Serializer | None = None


def is_serialized_data(value: Any) -> bool:
    """Return True if ``value`` has the serialized envelope shape."""
    return (
        isinstance(value, dict)
        and isinstance(value.get("serialized"), str)
        and isinstance(value.get("method"), str)
    )


class ProviderSerializerRegistry:
    """Method name to ``MethodSerializer`` mapping.

    Example:
        ```python
        registry = ProviderSerializerRegistry()
        registry.register("aztec_sendTx", MethodSerializer(params=tx_codec, result=tx_codec))
        call = await registry.serialize_call(MethodCall("aztec_sendTx", tx))
        ```
    """

    def __init__(self) -> None:
        self._serializers: dict[str, MethodSerializer] = {}

    def register(self, method: str, serializer: MethodSerializer) -> None:
        """Register ``serializer`` for ``method``, replacing any previous one."""
        self._serializers[method] = serializer

    def get(self, method: str) -> MethodSerializer | None:
        return self._serializers.get(method)

    def has(self, method: str) -> bool:
        return method in self._serializers

    async def serialize_call(self, call: MethodCall) -> MethodCall:
        """Return ``call`` with its params serialized.

        The call is returned unchanged when there are no params or no params
        serializer for its method.
        """
        serializer = self._serializers.get(call.method)
        if serializer is None or serializer.params is None or call.params is None:
            return call

        params = await serializer.params.serialize(call.method, call.params)
        logger.debug("Serialized params for %s", call.method)
        return replace(call, params=params)

    async def deserialize_result(self, method: str, result: Any) -> Any:
        """Deserialize ``result`` if it is a serialized envelope.

        Results without the envelope shape pass through untouched, so a value
        that was never serialized is never decoded twice.
        """
        serializer = self._serializers.get(method)
        if serializer is None or serializer.result is None or not is_serialized_data(result):
            return result

        value = await serializer.result.deserialize(method, result)
        logger.debug("Deserialized result for %s", method)
        return value
