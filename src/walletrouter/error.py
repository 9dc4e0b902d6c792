"""Error types for the wallet router.

Every error that can cross the wire is a ``JsonRpcError`` carrying a numeric
code, a message and optional structured data. ``RouterError`` narrows this to
the closed set of router failures listed in ``ErrorCode``.
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Closed set of router error names."""

    UNKNOWN_CHAIN = "unknownChain"
    INVALID_SESSION = "invalidSession"
    INSUFFICIENT_PERMISSIONS = "insufficientPermissions"
    METHOD_NOT_SUPPORTED = "methodNotSupported"
    WALLET_NOT_AVAILABLE = "walletNotAvailable"
    PARTIAL_FAILURE = "partialFailure"
    INVALID_REQUEST = "invalidRequest"
    WALLET_ERROR = "walletError"
    DUPLICATE_REQUEST_ID = "duplicateRequestId"
    UNKNOWN_ERROR = "unknownError"


ROUTER_ERRORS: dict[ErrorCode, tuple[int, str]] = {
    ErrorCode.UNKNOWN_CHAIN: (-32000, "Unknown chain ID"),
    ErrorCode.INVALID_SESSION: (-32001, "Invalid or expired session"),
    ErrorCode.INSUFFICIENT_PERMISSIONS: (-32002, "Insufficient permissions for method"),
    ErrorCode.METHOD_NOT_SUPPORTED: (-32003, "Method not supported by chain"),
    ErrorCode.WALLET_NOT_AVAILABLE: (-32004, "Wallet service not available"),
    ErrorCode.PARTIAL_FAILURE: (-32005, "Partial failure in bulk operation"),
    ErrorCode.INVALID_REQUEST: (-32006, "Invalid request parameters"),
    ErrorCode.WALLET_ERROR: (-32007, "Wallet returned an error"),
    ErrorCode.DUPLICATE_REQUEST_ID: (-32008, "Duplicate request ID"),
    ErrorCode.UNKNOWN_ERROR: (-32603, "Unknown error"),
}

_CODES_BY_NUMBER = {number: name for name, (number, _) in ROUTER_ERRORS.items()}

# Standard JSON-RPC 2.0 codes used by the node itself
PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601


class JsonRpcError(Exception):
    """An error with a JSON-RPC error member representation."""

    def __init__(self, code: int, message: str, data: Any = None) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.data = data

    def to_dict(self) -> dict[str, Any]:
        """Return the JSON-RPC ``error`` member for this error."""
        error: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.data is not None:
            error["data"] = self.data
        return error

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code}, message={self.message!r}, data={self.data!r})"


class RequestTimeoutError(JsonRpcError):
    """Raised to a caller whose request was not answered in time."""

    def __init__(self, timeout: float, method: str | None = None) -> None:
        detail = f"Request timeout after {timeout}s"
        if method:
            detail = f"{detail} ({method})"
        super().__init__(-32000, detail, {"timeout": timeout, "method": method})
        self.timeout = timeout


class TransportError(ConnectionError):
    """The remote end of a transport is gone or was never connected."""


class RouterError(JsonRpcError):
    """A typed router failure.

    The message always comes from the error table so callers can branch on
    ``code`` (numeric) or ``error_code`` (name). Details go in ``data``.

    Example:
        ```python
        try:
            await provider.call("eip155:1", MethodCall("eth_accounts"))
        except RouterError as e:
            if e.error_code is ErrorCode.INSUFFICIENT_PERMISSIONS:
                ...
        ```
    """

    def __init__(self, error_code: ErrorCode | str, data: Any = None) -> None:
        error_code = ErrorCode(error_code)
        code, message = ROUTER_ERRORS[error_code]
        super().__init__(code, message, data)
        self.error_code = error_code

    def __str__(self) -> str:
        if isinstance(self.data, str):
            return f"{self.message}: {self.data}"
        return self.message

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, RouterError):
            return NotImplemented
        return self.error_code is other.error_code and self.data == other.data

    __hash__ = Exception.__hash__

    @classmethod
    def from_wire(cls, code: int, message: str, data: Any = None) -> JsonRpcError:
        """Rebuild an error from a received JSON-RPC error member.

        Codes outside the router table come back as a plain ``JsonRpcError``.
        """
        error_code = _CODES_BY_NUMBER.get(code)
        if error_code is None:
            return JsonRpcError(code, message, data)
        return cls(error_code, data)

    @classmethod
    def unknown_chain(cls, data: Any = None) -> RouterError:
        return cls(ErrorCode.UNKNOWN_CHAIN, data)

    @classmethod
    def invalid_session(cls, data: Any = None) -> RouterError:
        return cls(ErrorCode.INVALID_SESSION, data)

    @classmethod
    def insufficient_permissions(cls, data: Any = None) -> RouterError:
        return cls(ErrorCode.INSUFFICIENT_PERMISSIONS, data)

    @classmethod
    def method_not_supported(cls, data: Any = None) -> RouterError:
        return cls(ErrorCode.METHOD_NOT_SUPPORTED, data)

    @classmethod
    def wallet_not_available(cls, data: Any = None) -> RouterError:
        return cls(ErrorCode.WALLET_NOT_AVAILABLE, data)

    @classmethod
    def partial_failure(cls, partial_responses: list[Any], error: Any) -> RouterError:
        return cls(ErrorCode.PARTIAL_FAILURE, {"partialResponses": partial_responses, "error": error})

    @classmethod
    def invalid_request(cls, data: Any = None) -> RouterError:
        return cls(ErrorCode.INVALID_REQUEST, data)

    @classmethod
    def wallet_error(cls, data: Any = None) -> RouterError:
        return cls(ErrorCode.WALLET_ERROR, data)

    @classmethod
    def duplicate_request_id(cls, data: Any = None) -> RouterError:
        return cls(ErrorCode.DUPLICATE_REQUEST_ID, data)

    @classmethod
    def unknown_error(cls, data: Any = None) -> RouterError:
        return cls(ErrorCode.UNKNOWN_ERROR, data)
