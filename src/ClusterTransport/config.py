"""
Pydantic v2 Configuration Models for ClusterTransport

Provides strict, typed configuration for the transport subsystems:
- Node specifications (url, id, roles)
- Per-node connection options (TLS, proxy, connection reuse, auth, size caps)
- Top-level TransportConfig as the single immutable snapshot of defaults

All models use extra="forbid" and frozen=True: the snapshot taken at
construction is never mutated by an in-flight request. Validation is eager;
any invalid or conflicting option surfaces as ConfigurationError before the
first byte is sent. Default values live in :mod:`ClusterTransport.policy`.
"""

from __future__ import annotations

import hashlib
import json
from typing import Any, Callable, ClassVar, Dict, FrozenSet, Literal, Optional, Type, TypeVar, Union
from urllib.parse import urlsplit, urlunsplit

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from . import policy
from .errors import ConfigurationError

ModelT = TypeVar("ModelT", bound=BaseModel)

DEFAULT_ROLES = frozenset({"master", "data", "ingest"})


# ============================================================================
# Shared Option Models
# ============================================================================


class TlsOptions(BaseModel):
    """TLS settings for https nodes."""

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid", frozen=True)

    verify: bool = Field(default=True, description="Verify server certificates")
    ca_certs: Optional[str] = Field(
        default=None, description="CA bundle path (defaults to the certifi bundle)"
    )
    client_cert: Optional[str] = Field(default=None, description="Client certificate path")
    client_key: Optional[str] = Field(default=None, description="Client private key path")

    @model_validator(mode="after")
    def _key_requires_cert(self) -> "TlsOptions":
        if self.client_key and not self.client_cert:
            raise ValueError("client_key requires client_cert")
        return self


class ReuseOptions(BaseModel):
    """Manual connection-reuse (keep-alive pool) settings for one node."""

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid", frozen=True)

    max_connections: Optional[int] = Field(default=256, description="Open sockets per node")
    max_keepalive_connections: Optional[int] = Field(
        default=64, description="Idle sockets kept for reuse"
    )
    keepalive_expiry: Optional[float] = Field(default=5.0, description="Idle socket lifetime (s)")

    @field_validator("max_connections", "max_keepalive_connections")
    @classmethod
    def _validate_counts(cls, v: Optional[int]) -> Optional[int]:
        if v is not None and v < 0:
            raise ValueError("connection counts must be >= 0")
        return v


class AuthOptions(BaseModel):
    """Credentials sent with every request to a node."""

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid", frozen=True)

    username: Optional[str] = None
    password: Optional[str] = None
    api_key: Optional[Union[str, tuple[str, str]]] = None
    bearer: Optional[str] = None

    @model_validator(mode="after")
    def _one_scheme(self) -> "AuthOptions":
        schemes = [
            self.username is not None or self.password is not None,
            self.api_key is not None,
            self.bearer is not None,
        ]
        if sum(schemes) > 1:
            raise ValueError("only one of basic, api_key or bearer auth may be configured")
        if self.password is not None and self.username is None:
            raise ValueError("password requires username")
        return self


def _check_node_url(value: str) -> str:
    parts = urlsplit(value)
    if parts.scheme not in ("http", "https") or not parts.hostname:
        raise ValueError(f"invalid node url: {value!r}")
    return value.rstrip("/")


def _redact_userinfo(url: str) -> str:
    parts = urlsplit(url)
    if "@" not in parts.netloc:
        return url
    return urlunsplit(parts._replace(netloc=parts.netloc.rsplit("@", 1)[1]))


ConnectionReuse = Union[ReuseOptions, Literal[False], Callable[..., Any], None]


class NodeSpec(BaseModel):
    """Address and identity of one cluster member."""

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid", frozen=True)

    url: str = Field(description="Base url, e.g. http://localhost:9200")
    id: Optional[str] = Field(default=None, description="Node id (defaults to the url)")
    roles: FrozenSet[str] = Field(default=DEFAULT_ROLES, description="Cluster roles")
    headers: Dict[str, str] = Field(default_factory=dict, description="Node-specific headers")

    @field_validator("url")
    @classmethod
    def _normalize_url(cls, v: str) -> str:
        return _check_node_url(v)

    @property
    def node_id(self) -> str:
        return self.id or _redact_userinfo(self.url)


# ============================================================================
# Connection Options
# ============================================================================


class ConnectionOptions(BaseModel):
    """Per-node transport configuration validated at Connection construction."""

    model_config: ClassVar[ConfigDict] = ConfigDict(
        extra="forbid", frozen=True, arbitrary_types_allowed=True
    )

    url: str
    id: Optional[str] = None
    roles: FrozenSet[str] = DEFAULT_ROLES
    headers: Dict[str, str] = Field(default_factory=dict)
    timeout: Optional[float] = Field(default=policy.REQUEST_TIMEOUT)
    connect_timeout: float = Field(default=policy.CONNECT_TIMEOUT)
    tls: TlsOptions = Field(default_factory=TlsOptions)
    proxy: Optional[str] = None
    connection_reuse: ConnectionReuse = None
    auth: Optional[AuthOptions] = None
    max_response_size: int = Field(default=policy.MAX_RESPONSE_SIZE)
    max_compressed_response_size: int = Field(default=policy.MAX_COMPRESSED_RESPONSE_SIZE)

    @field_validator("url")
    @classmethod
    def _validate_url(cls, v: str) -> str:
        return _check_node_url(v)

    @field_validator("timeout")
    @classmethod
    def _validate_timeout(cls, v: Optional[float]) -> Optional[float]:
        if v is not None and v <= 0:
            raise ValueError("timeout must be > 0")
        return v

    @field_validator("max_response_size", "max_compressed_response_size")
    @classmethod
    def _validate_caps(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("size caps must be > 0")
        return v

    @model_validator(mode="after")
    def _reuse_conflicts_with_proxy(self) -> "ConnectionOptions":
        if self.proxy is not None and self.connection_reuse is not None:
            raise ValueError(
                "connection_reuse and proxy are mutually exclusive; "
                "configure the proxy inside the connection factory instead"
            )
        return self

    @property
    def node_id(self) -> str:
        return self.id or _redact_userinfo(self.url)


# ============================================================================
# Top-level Transport Configuration
# ============================================================================


class TransportConfig(BaseModel):
    """
    Immutable snapshot of transport defaults.

    Taken once at construction; per-request options only ever override these
    values for the duration of a single call.
    """

    model_config: ClassVar[ConfigDict] = ConfigDict(
        extra="forbid", frozen=True, arbitrary_types_allowed=True
    )

    max_retries: int = Field(default=policy.MAX_RETRIES)
    request_timeout: Optional[float] = Field(default=policy.REQUEST_TIMEOUT)
    ping_timeout: float = Field(default=policy.PING_TIMEOUT)
    request_deadline: Optional[float] = Field(default=policy.REQUEST_DEADLINE)
    sniff_interval: Optional[float] = Field(default=policy.SNIFF_INTERVAL)
    sniff_on_start: bool = Field(default=policy.SNIFF_ON_START)
    sniff_on_connection_fault: bool = Field(default=policy.SNIFF_ON_CONNECTION_FAULT)
    sniff_endpoint: str = Field(default=policy.SNIFF_ENDPOINT)
    resurrect_strategy: Literal["ping", "optimistic", "none"] = Field(
        default=policy.RESURRECT_STRATEGY
    )
    resurrect_timeout: float = Field(default=policy.RESURRECT_TIMEOUT)
    resurrect_timeout_cutoff: int = Field(default=policy.RESURRECT_TIMEOUT_CUTOFF)
    compression: bool = False
    suggest_compression: bool = False
    tls: TlsOptions = Field(default_factory=TlsOptions)
    connection_reuse: ConnectionReuse = None
    proxy: Optional[str] = None
    headers: Dict[str, str] = Field(default_factory=dict)
    auth: Optional[AuthOptions] = None
    node_filter: Optional[Callable[..., bool]] = None
    node_selector: Union[Literal["round-robin", "random"], Callable[..., Any]] = Field(
        default=policy.NODE_SELECTOR
    )
    retry_on_status: FrozenSet[int] = Field(default=frozenset(policy.RETRY_ON_STATUS))
    max_response_size: int = Field(default=policy.MAX_RESPONSE_SIZE)
    max_compressed_response_size: int = Field(default=policy.MAX_COMPRESSED_RESPONSE_SIZE)
    name: str = Field(default=policy.CLIENT_NAME)
    opaque_id_prefix: Optional[str] = None
    generate_request_id: Optional[Callable[..., Any]] = None
    context: Any = None

    @field_validator("max_retries", "resurrect_timeout_cutoff")
    @classmethod
    def _validate_non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("must be >= 0")
        return v

    @field_validator(
        "request_timeout", "ping_timeout", "request_deadline", "sniff_interval", "resurrect_timeout"
    )
    @classmethod
    def _validate_durations(cls, v: Optional[float]) -> Optional[float]:
        if v is not None and v <= 0:
            raise ValueError("durations must be > 0")
        return v

    @field_validator("sniff_endpoint")
    @classmethod
    def _validate_endpoint(cls, v: str) -> str:
        if not v.strip("/"):
            raise ValueError("sniff_endpoint must not be empty")
        return v

    @field_validator("retry_on_status")
    @classmethod
    def _validate_statuses(cls, v: FrozenSet[int]) -> FrozenSet[int]:
        invalid = {status for status in v if not 400 <= status <= 599}
        if invalid:
            raise ValueError(f"retry_on_status entries must be 4xx/5xx: {sorted(invalid)}")
        return v

    @model_validator(mode="after")
    def _reuse_conflicts_with_proxy(self) -> "TransportConfig":
        if self.proxy is not None and self.connection_reuse is not None:
            raise ValueError("connection_reuse and proxy are mutually exclusive")
        return self

    @property
    def sniff_enabled(self) -> bool:
        return (
            self.sniff_interval is not None or self.sniff_on_start or self.sniff_on_connection_fault
        )

    def connection_options(self, spec: NodeSpec) -> ConnectionOptions:
        """Derive per-node connection options from the transport defaults."""
        return validate_options(
            ConnectionOptions,
            url=spec.url,
            id=spec.id,
            roles=spec.roles,
            headers=dict(spec.headers),
            timeout=self.request_timeout,
            tls=self.tls,
            proxy=self.proxy,
            connection_reuse=self.connection_reuse,
            auth=self.auth,
            max_response_size=self.max_response_size,
            max_compressed_response_size=self.max_compressed_response_size,
        )

    def config_hash(self) -> str:
        """
        Compute deterministic SHA256 hash of config for reproducibility.

        Returns:
            Hex-encoded SHA256 hash of normalized config JSON.
        """
        normalized = json.dumps(
            self.model_dump(), sort_keys=True, separators=(",", ":"), default=_json_default
        )
        return hashlib.sha256(normalized.encode()).hexdigest()


def _json_default(value: Any) -> Any:
    if isinstance(value, (set, frozenset)):
        return sorted(value, key=repr)
    if callable(value):
        return getattr(value, "__qualname__", repr(value))
    return repr(value)


def validate_options(model: Type[ModelT], /, **values: Any) -> ModelT:
    """Build ``model`` from ``values``, translating validation failures.

    Raises:
        ConfigurationError: If any option is invalid or conflicting.
    """
    try:
        return model(**values)
    except ValidationError as exc:
        details = "; ".join(
            f"{'.'.join(str(part) for part in err['loc']) or model.__name__}: {err['msg']}"
            for err in exc.errors()
        )
        raise ConfigurationError(f"Invalid {model.__name__}: {details}") from exc


def as_node_spec(node: Union[str, NodeSpec, Dict[str, Any]]) -> NodeSpec:
    """Coerce a url, mapping or NodeSpec into a validated NodeSpec."""
    if isinstance(node, NodeSpec):
        return node
    if isinstance(node, str):
        return validate_options(NodeSpec, url=node)
    if isinstance(node, dict):
        return validate_options(NodeSpec, **node)
    raise ConfigurationError(f"Unsupported node specification: {node!r}")


__all__ = [
    "DEFAULT_ROLES",
    "TlsOptions",
    "ReuseOptions",
    "AuthOptions",
    "NodeSpec",
    "ConnectionOptions",
    "TransportConfig",
    "validate_options",
    "as_node_spec",
]
