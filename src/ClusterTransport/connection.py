# === NAVMAP v1 ===
# {
#   "module": "ClusterTransport.connection",
#   "purpose": "Execute one HTTP attempt against one node with bounded resources",
#   "sections": [
#     {"id": "result", "name": "Result", "anchor": "class-result", "kind": "class"},
#     {"id": "requestparams", "name": "RequestParams", "anchor": "class-requestparams", "kind": "class"},
#     {"id": "connection", "name": "Connection", "anchor": "class-connection", "kind": "class"},
#     {"id": "create-ssl-context", "name": "create_ssl_context", "anchor": "function-create-ssl-context", "kind": "function"},
#     {"id": "bodyreader", "name": "_BodyReader", "anchor": "class-bodyreader", "kind": "class"}
#   ]
# }
# === /NAVMAP ===

"""Per-node HTTP executor.

A :class:`Connection` owns the transport configuration of one cluster node
(TLS, proxy, keep-alive pool, auth, default headers) and executes exactly one
HTTP attempt per :meth:`Connection.request` call.

Key design:
- **Eager validation**: options are validated at construction; conflicting
  connection-reuse and proxy settings raise ConfigurationError there, never at
  request time.
- **Bounded attempts**: every attempt races the exchange against its timeout
  and the caller's cancellation token. Expiry raises TimeoutError with the
  fixed message "Request timed out"; cancellation terminates the in-flight
  exchange and raises RequestAbortedError.
- **Memory discipline**: bodies are streamed; declared and observed sizes are
  checked against two independent caps (compressed byte buffer, decoded
  string) and decompression output is bounded, so nothing is ever allocated
  past a cap.
- **Error translation**: httpx exceptions are mapped to the transport
  taxonomy at this boundary and nowhere else.
"""

from __future__ import annotations

import asyncio
import base64
import logging
import ssl
import zlib
from dataclasses import dataclass, field
from typing import Any, AsyncIterable, AsyncIterator, Iterable, Mapping, Optional, Union
from urllib.parse import quote, unquote, urlencode

import certifi
import httpx

from .cancellation import CancellationToken
from .config import ConnectionOptions, ReuseOptions, TlsOptions, validate_options
from .errors import (
    ConfigurationError,
    ConnectionError,
    DeserializationError,
    RequestAbortedError,
    TimeoutError,
)

logger = logging.getLogger(__name__)

Body = Union[bytes, str, Iterable[bytes], AsyncIterable[bytes], None]

TIMEOUT_MESSAGE = "Request timed out"
ABORTED_MESSAGE = "Request aborted"


# ============================================================================
# Data Model
# ============================================================================


@dataclass(frozen=True)
class Result:
    """A completed HTTP exchange, whatever its status code."""

    status_code: int
    headers: Mapping[str, str]
    body: bytes
    node_id: str


@dataclass
class RequestParams:
    """Wire-level description of one attempt."""

    method: str
    path: str
    querystring: Union[str, Mapping[str, Any], None] = None
    headers: Mapping[str, str] = field(default_factory=dict)
    body: Body = None


# ============================================================================
# Connection
# ============================================================================


class Connection:
    """Executes HTTP attempts against a single node.

    Args:
        options: Validated connection options. Keyword arguments are accepted
            instead and validated into :class:`ConnectionOptions`.

    Raises:
        ConfigurationError: If the options are invalid or conflicting.

    Example:
        >>> conn = Connection(url="http://localhost:9200", headers={"x-foo": "bar"})
        >>> conn.headers
        {'x-foo': 'bar'}
    """

    def __init__(self, options: Optional[ConnectionOptions] = None, **kwargs: Any) -> None:
        if options is None:
            options = validate_options(ConnectionOptions, **kwargs)
        elif kwargs:
            raise ConfigurationError("Pass either ConnectionOptions or keyword options, not both")

        self.options = options
        self.id = options.node_id
        self.roles = options.roles

        url = httpx.URL(options.url)
        self._auth_header = _authorization_header(options, url)
        if url.userinfo:
            url = httpx.URL(scheme=url.scheme, host=url.host, port=url.port, raw_path=url.raw_path)
        self.url = url
        self.headers = {key.lower(): value for key, value in options.headers.items()}

        self._closed = False
        self._client = self._build_client()

    # ── Public API ────────────────────────────────────────────────────────────

    @property
    def closed(self) -> bool:
        return self._closed

    async def request(
        self,
        params: RequestParams,
        *,
        timeout: Optional[float] = None,
        cancellation: Optional[CancellationToken] = None,
    ) -> Result:
        """Perform one HTTP attempt.

        Args:
            params: Method, path, query string, headers and body.
            timeout: Per-attempt timeout in seconds; defaults to the
                connection-level timeout.
            cancellation: Token that aborts the attempt when cancelled.

        Returns:
            The completed exchange as a :class:`Result`.

        Raises:
            RequestAbortedError: Cancelled, or the response exceeded a size cap.
            TimeoutError: The attempt outlived its timeout.
            ConnectionError: Transport-level failure.
        """
        if cancellation is not None and cancellation.is_cancelled():
            raise RequestAbortedError(ABORTED_MESSAGE)
        self._ensure_open()

        url = self._build_url(params.path, params.querystring)
        effective_timeout = timeout if timeout is not None else self.options.timeout

        exchange = asyncio.ensure_future(self._exchange(params, url))
        waiters = {exchange}
        aborter: Optional[asyncio.Future] = None
        if cancellation is not None:
            aborter = asyncio.ensure_future(cancellation.wait())
            waiters.add(aborter)

        try:
            done, _ = await asyncio.wait(
                waiters, timeout=effective_timeout, return_when=asyncio.FIRST_COMPLETED
            )
        except asyncio.CancelledError:
            exchange.cancel()
            await asyncio.gather(exchange, return_exceptions=True)
            raise
        finally:
            if aborter is not None:
                aborter.cancel()

        if exchange in done:
            return exchange.result()

        # Deadline or cancellation won the race: tear the exchange down first.
        exchange.cancel()
        await asyncio.gather(exchange, return_exceptions=True)

        if cancellation is not None and cancellation.is_cancelled():
            logger.debug("Attempt aborted", extra={"node_id": self.id, "path": params.path})
            raise RequestAbortedError(ABORTED_MESSAGE)
        logger.debug(
            "Attempt timed out",
            extra={"node_id": self.id, "path": params.path, "timeout_s": effective_timeout},
        )
        raise TimeoutError(TIMEOUT_MESSAGE)

    def discard(self) -> None:
        """Mark the connection unusable; later I/O fails with ConnectionError."""
        self._closed = True

    async def close(self) -> None:
        """Release sockets held by this connection. Safe to call repeatedly."""
        self._closed = True
        await self._client.aclose()

    def __repr__(self) -> str:
        return f"<Connection id={self.id!r} url={str(self.url)!r}>"

    # ── Implementation Details ────────────────────────────────────────────────

    def _ensure_open(self) -> None:
        if self._closed:
            raise ConnectionError(f"Connection {self.id} has been closed")

    def _build_client(self) -> httpx.AsyncClient:
        options = self.options
        common: dict[str, Any] = {
            "timeout": httpx.Timeout(None, connect=options.connect_timeout),
            "follow_redirects": False,
            "trust_env": False,
        }

        reuse = options.connection_reuse
        if callable(reuse) and not isinstance(reuse, ReuseOptions):
            # Custom factory: the caller owns pooling and TLS for this node.
            return httpx.AsyncClient(transport=reuse(options), **common)

        if reuse is False:
            limits = httpx.Limits(max_keepalive_connections=0)
        elif isinstance(reuse, ReuseOptions):
            limits = httpx.Limits(
                max_connections=reuse.max_connections,
                max_keepalive_connections=reuse.max_keepalive_connections,
                keepalive_expiry=reuse.keepalive_expiry,
            )
        else:
            limits = httpx.Limits()

        verify: Union[bool, ssl.SSLContext] = True
        if self.url.scheme == "https":
            verify = create_ssl_context(options.tls)

        return httpx.AsyncClient(limits=limits, verify=verify, proxy=options.proxy, **common)

    def _build_url(self, path: str, querystring: Union[str, Mapping[str, Any], None]) -> httpx.URL:
        if any(ord(char) > 127 for char in path):
            raise ConnectionError(f"ERR_UNESCAPED_CHARACTERS: {path}")

        base_path = self.url.raw_path.decode("ascii").split("?", 1)[0].rstrip("/")
        raw = f"{base_path}/{path.lstrip('/')}"
        if isinstance(querystring, Mapping):
            querystring = urlencode(
                {k: v for k, v in querystring.items() if v is not None},
                doseq=True,
                quote_via=quote,
            )
        if querystring:
            raw = f"{raw}?{querystring}"
        return self.url.copy_with(raw_path=raw.encode("ascii"))

    def _merge_headers(self, request_headers: Mapping[str, str]) -> dict[str, str]:
        merged = dict(self.headers)
        if self._auth_header is not None:
            merged["authorization"] = self._auth_header
        for key, value in request_headers.items():
            merged[key.lower()] = value
        return merged

    async def _exchange(self, params: RequestParams, url: httpx.URL) -> Result:
        request = self._client.build_request(
            params.method.upper(),
            url,
            headers=self._merge_headers(params.headers),
            content=_as_content(params.body),
        )
        try:
            self._ensure_open()
            response = await self._client.send(request, stream=True)
            try:
                body = await _BodyReader(self, response).read()
            finally:
                await response.aclose()
        except httpx.TimeoutException as exc:
            raise TimeoutError(TIMEOUT_MESSAGE) from exc
        except httpx.TransportError as exc:
            raise ConnectionError(str(exc) or type(exc).__name__) from exc
        except RuntimeError as exc:
            # httpx refuses to send through a client closed underneath us
            if self._closed:
                raise ConnectionError(f"Connection {self.id} has been closed") from exc
            raise

        return Result(
            status_code=response.status_code,
            headers=dict(response.headers),
            body=body,
            node_id=self.id,
        )


# ============================================================================
# Response Body Reader
# ============================================================================


class _BodyReader:
    """Streams a response body while enforcing both size caps."""

    def __init__(self, connection: Connection, response: httpx.Response) -> None:
        self.connection = connection
        self.response = response
        self.buffer_cap = connection.options.max_compressed_response_size
        self.string_cap = connection.options.max_response_size
        encoding = response.headers.get("content-encoding", "").strip().lower()
        self.encoding = encoding if encoding in ("gzip", "x-gzip", "deflate") else None
        self._decompressor = self._new_decompressor()
        self._deflate_probe = self.encoding == "deflate"
        self._raw_size = 0
        self._decoded_size = 0
        self._parts: list[bytes] = []

    async def read(self) -> bytes:
        self._check_declared_length()
        async for chunk in self.response.aiter_raw():
            if self.connection.closed:
                raise ConnectionError(f"Connection {self.connection.id} has been closed")
            if not chunk:
                continue
            self._raw_size += len(chunk)
            if self._raw_size > self.buffer_cap:
                raise _too_big(self._raw_size, self.buffer_cap, "buffer")
            if self._decompressor is None:
                self._accept(chunk)
            else:
                self._inflate(chunk)
        if self._decompressor is not None:
            self._flush()
        return b"".join(self._parts)

    def _check_declared_length(self) -> None:
        declared = self.response.headers.get("content-length")
        try:
            length = int(declared) if declared is not None else None
        except ValueError:
            length = None
        if length is None:
            return
        if self.encoding is not None and length > self.buffer_cap:
            raise _too_big(length, self.buffer_cap, "buffer")
        if length > self.string_cap:
            raise _too_big(length, self.string_cap, "string")
        if length > self.buffer_cap:
            raise _too_big(length, self.buffer_cap, "buffer")

    def _new_decompressor(self, raw_deflate: bool = False) -> Optional[Any]:
        if self.encoding is None:
            return None
        if self.encoding in ("gzip", "x-gzip"):
            return zlib.decompressobj(zlib.MAX_WBITS | 16)
        return zlib.decompressobj(-zlib.MAX_WBITS if raw_deflate else zlib.MAX_WBITS)

    def _accept(self, data: bytes) -> None:
        self._decoded_size += len(data)
        if self._decoded_size > self.string_cap:
            raise _too_big(self._decoded_size, self.string_cap, "string")
        self._parts.append(data)

    def _inflate(self, chunk: bytes) -> None:
        pending = chunk
        while pending:
            remaining = self.string_cap - self._decoded_size
            try:
                out = self._decompressor.decompress(pending, remaining + 1)
            except zlib.error as exc:
                if self._deflate_probe:
                    # Some servers send raw deflate streams without the zlib header
                    self._deflate_probe = False
                    self._decompressor = self._new_decompressor(raw_deflate=True)
                    continue
                raise DeserializationError(
                    f"Could not decompress {self.encoding} response body: {exc}",
                    data=b"".join(self._parts),
                ) from exc
            self._deflate_probe = False
            self._accept(out)
            pending = self._decompressor.unconsumed_tail

    def _flush(self) -> None:
        try:
            tail = self._decompressor.flush()
        except zlib.error as exc:
            raise DeserializationError(
                f"Could not decompress {self.encoding} response body: {exc}",
                data=b"".join(self._parts),
            ) from exc
        if tail:
            self._accept(tail)
        if self._raw_size and not self._decompressor.eof:
            raise ConnectionError(f"Premature close of {self.encoding} response body")


def _too_big(size: int, limit: int, kind: str) -> RequestAbortedError:
    return RequestAbortedError(
        f"The content length ({size}) is bigger than the maximum allowed {kind} ({limit})"
    )


# ============================================================================
# Helpers
# ============================================================================


def create_ssl_context(tls: TlsOptions) -> ssl.SSLContext:
    """Create an SSL context for https nodes.

    Uses the configured CA bundle, falling back to the certifi bundle.
    Verification can be disabled for development clusters only.
    """
    if not tls.verify:
        ctx = ssl.create_default_context()
        ctx.check_hostname = False
        ctx.verify_mode = ssl.CERT_NONE
        logger.warning("TLS verification DISABLED (development only!)")
    else:
        ctx = ssl.create_default_context(cafile=tls.ca_certs or certifi.where())
        ctx.check_hostname = True
        ctx.verify_mode = ssl.CERT_REQUIRED
    if tls.client_cert:
        ctx.load_cert_chain(tls.client_cert, tls.client_key)
    return ctx


def _authorization_header(options: ConnectionOptions, url: httpx.URL) -> Optional[str]:
    auth = options.auth
    if auth is None:
        if not url.username:
            return None
        return _basic(unquote(url.username), unquote(url.password or ""))
    if auth.api_key is not None:
        if isinstance(auth.api_key, tuple):
            token = base64.b64encode(":".join(auth.api_key).encode("utf-8")).decode("ascii")
            return f"ApiKey {token}"
        return f"ApiKey {auth.api_key}"
    if auth.bearer is not None:
        return f"Bearer {auth.bearer}"
    if auth.username is not None:
        return _basic(auth.username, auth.password or "")
    return None


def _basic(username: str, password: str) -> str:
    token = base64.b64encode(f"{username}:{password}".encode("utf-8")).decode("ascii")
    return f"Basic {token}"


def _as_content(body: Body) -> Union[bytes, AsyncIterator[bytes], None]:
    if body is None:
        return None
    if isinstance(body, str):
        return body.encode("utf-8")
    if isinstance(body, (bytes, bytearray, memoryview)):
        return bytes(body)
    if hasattr(body, "__aiter__"):
        return body.__aiter__()
    return _iterate_async(body)


async def _iterate_async(chunks: Iterable[Any]) -> AsyncIterator[bytes]:
    for chunk in chunks:
        yield chunk.encode("utf-8") if isinstance(chunk, str) else bytes(chunk)


__all__ = [
    "Body",
    "Result",
    "RequestParams",
    "Connection",
    "create_ssl_context",
    "TIMEOUT_MESSAGE",
    "ABORTED_MESSAGE",
]
