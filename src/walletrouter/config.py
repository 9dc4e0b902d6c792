"""Pydantic configuration models for the wallet router.

These models are only used at construction time (router, provider, proxies,
transports, session stores). Per-request values such as ``MethodCall`` and
``Session`` stay plain dataclasses.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, field_validator

ROUTER_METHODS: tuple[str, ...] = (
    "wm_connect",
    "wm_disconnect",
    "wm_getPermissions",
    "wm_updatePermissions",
    "wm_call",
    "wm_bulkCall",
    "wm_getSupportedMethods",
    "wm_reconnect",
)


class ProxyConfig(BaseModel):
    """Configuration applied to every per-chain wallet proxy.

    Attributes:
        timeout: Seconds to wait for a wallet response. None waits forever.
        debug: Log every forwarded message at DEBUG level.
    """

    model_config = ConfigDict(frozen=True)

    timeout: float | None = Field(default=None, gt=0, description="Wallet response timeout in seconds")
    debug: bool = False


class RouterConfig(BaseModel):
    """Configuration for ``WalletRouter``.

    Attributes:
        proxy: Base configuration for the per-chain proxies
        debug: Enable debug logging for the router and all its proxies
        supported_methods: Method list reported under the ``router`` key
    """

    model_config = ConfigDict(frozen=True)

    proxy: ProxyConfig = Field(default_factory=ProxyConfig)
    debug: bool = False
    supported_methods: tuple[str, ...] = ROUTER_METHODS

    @field_validator("supported_methods")
    @classmethod
    def validate_supported_methods(cls, v: tuple[str, ...]) -> tuple[str, ...]:
        if not v:
            raise ValueError("supported_methods cannot be empty")
        return v

    def proxy_config(self) -> ProxyConfig:
        """Return the proxy config with router-level debug applied."""
        if self.debug and not self.proxy.debug:
            return self.proxy.model_copy(update={"debug": True})
        return self.proxy


class ProviderConfig(BaseModel):
    """Configuration for ``WalletRouterProvider``.

    Attributes:
        default_timeout: Timeout in seconds used when a call passes none
    """

    model_config = ConfigDict(frozen=True)

    default_timeout: float | None = Field(default=None, gt=0)


class LocalTransportConfig(BaseModel):
    """Configuration for ``LocalTransport``.

    Attributes:
        throw_on_error: Re-raise handler errors instead of logging them
        origin: Origin reported to the router for messages on this transport
    """

    model_config = ConfigDict(frozen=True)

    throw_on_error: bool = False
    origin: str | None = None

    @field_validator("origin")
    @classmethod
    def validate_origin(cls, v: str | None) -> str | None:
        if v is not None and not v.strip():
            raise ValueError("origin cannot be blank")
        return v


class SessionStoreConfig(BaseModel):
    """Expiry configuration for session stores.

    Attributes:
        lifetime: Session lifetime in seconds. None means sessions never expire.
        refresh_on_access: Extend the lifetime on every successful validation
    """

    model_config = ConfigDict(frozen=True)

    lifetime: float | None = Field(default=None, gt=0)
    refresh_on_access: bool = True
