"""Fluent builder for calls against one chain."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Generic, TypeVar, TypeVarTuple, get_origin

from walletrouter.error import RouterError
from walletrouter.types import ChainId, MethodCall

if TYPE_CHECKING:
    from walletrouter.provider import WalletRouterProvider

Ts = TypeVarTuple("Ts")
R = TypeVar("R")


class OperationBuilder(Generic[*Ts]):
    """Accumulate wallet calls for one chain and run them together.

    Each ``call`` returns a new builder; the receiver is never modified, so a
    partially built operation can be reused as a prefix.

    The builder's type parameters track the declared result type of every
    queued call. Pass ``result_type`` to declare it; type checkers then see
    ``execute()`` of a multi-call builder as ``tuple[*Ts]``. Declared types
    are also checked at runtime against the returned values, since the wire
    itself carries no type information.

    Example:
        ```python
        op = provider.chain("eip155:1").call("eth_accounts", result_type=list)
        accounts = await op.execute()

        accounts, chain_id = await op.call("eth_chainId", result_type=str).execute()
        ```
    """

    def __init__(
        self,
        chain_id: ChainId,
        provider: WalletRouterProvider,
        calls: tuple[MethodCall, ...] = (),
        result_types: tuple[type | None, ...] = (),
    ) -> None:
        self.chain_id = chain_id
        self.provider = provider
        self._calls = calls
        self._result_types = result_types

    @property
    def calls(self) -> tuple[MethodCall, ...]:
        return self._calls

    def __len__(self) -> int:
        return len(self._calls)

    def call(
        self, method: str, params: Any = None, result_type: type[R] | None = None
    ) -> OperationBuilder[*Ts, R]:
        """Return a new builder with ``method`` appended."""
        return OperationBuilder(
            self.chain_id,
            self.provider,
            (*self._calls, MethodCall(method, params)),
            (*self._result_types, result_type),
        )

    async def execute(self, timeout: float | None = None) -> Any:
        """Run the queued calls.

        A single call returns its bare result. Two or more run as one bulk
        call and return a tuple of results in call order.

        Raises:
            RouterError: ``invalidRequest`` if no calls are queued
            TypeError: A result does not match its declared ``result_type``
        """
        if not self._calls:
            raise RouterError.invalid_request("No operations queued")

        if len(self._calls) == 1:
            result = await self.provider.call(self.chain_id, self._calls[0], timeout)
            self._check(0, result)
            return result

        results = await self.provider.bulk_call(self.chain_id, self._calls, timeout)
        for index, result in enumerate(results):
            self._check(index, result)
        return tuple(results)

    def _check(self, index: int, value: Any) -> None:
        expected = self._result_types[index] if index < len(self._result_types) else None
        if expected is None:
            return
        expected = get_origin(expected) or expected
        if not isinstance(value, expected):
            raise TypeError(
                f"{self._calls[index].method} returned {type(value).__name__}, "
                f"expected {expected.__name__}"
            )
