# === NAVMAP v1 ===
# {
#   "module": "ClusterTransport.policy",
#   "purpose": "Transport policy constants and defaults.",
#   "sections": []
# }
# === /NAVMAP ===

"""Transport policy constants and defaults.

Single default table for the configuration models in
:mod:`ClusterTransport.config`. Durations are seconds (floats); sizes are bytes.
"""

# ============================================================================
# Retry & Timeout Budgets (seconds)
# ============================================================================

#: Additional attempts after the first one for connection faults and timeouts
MAX_RETRIES = 3

#: Per-attempt timeout for ordinary requests
REQUEST_TIMEOUT = 30.0

#: Per-probe timeout used when resurrecting dead nodes
PING_TIMEOUT = 3.0

#: Overall per-call deadline (None = attempts are only bounded individually)
REQUEST_DEADLINE = None

#: Connection establishment timeout handed to the underlying HTTP client
CONNECT_TIMEOUT = 10.0


# ============================================================================
# Response Size Caps
# ============================================================================

#: Maximum decoded (string) response size
MAX_RESPONSE_SIZE = (1 << 29) - 24  # 512 MiB

#: Maximum raw byte buffer for compressed response bodies
MAX_COMPRESSED_RESPONSE_SIZE = 1 << 32  # 4 GiB


# ============================================================================
# Resurrection
# ============================================================================

#: Base backoff before a dead node may be probed again
RESURRECT_TIMEOUT = 60.0

#: Exponent cap: backoff = RESURRECT_TIMEOUT * 2 ** min(failures - 1, CUTOFF)
RESURRECT_TIMEOUT_CUTOFF = 5

#: Strategy used when no alive node is available (ping | optimistic | none)
RESURRECT_STRATEGY = "ping"


# ============================================================================
# Sniffing
# ============================================================================

#: Topology-discovery path probed on a living node
SNIFF_ENDPOINT = "_nodes/_all/http"

#: Interval between timed sniffs (None = disabled)
SNIFF_INTERVAL = None

SNIFF_ON_START = False

SNIFF_ON_CONNECTION_FAULT = False


# ============================================================================
# Selection
# ============================================================================

NODE_SELECTOR = "round-robin"

#: Roles that make a node eligible besides a bare ``master`` role
SERVING_ROLES = frozenset({"data", "ingest"})


# ============================================================================
# Headers & Identity
# ============================================================================

CLIENT_NAME = "cluster-transport"

USER_AGENT = "cluster-transport/0.1.0 (python)"

ACCEPT_ENCODING = "gzip,deflate"

#: Statuses never retried unless listed in ``retry_on_status``
RETRY_ON_STATUS: tuple = ()


__all__ = [
    "MAX_RETRIES",
    "REQUEST_TIMEOUT",
    "PING_TIMEOUT",
    "REQUEST_DEADLINE",
    "CONNECT_TIMEOUT",
    "MAX_RESPONSE_SIZE",
    "MAX_COMPRESSED_RESPONSE_SIZE",
    "RESURRECT_TIMEOUT",
    "RESURRECT_TIMEOUT_CUTOFF",
    "RESURRECT_STRATEGY",
    "SNIFF_ENDPOINT",
    "SNIFF_INTERVAL",
    "SNIFF_ON_START",
    "SNIFF_ON_CONNECTION_FAULT",
    "NODE_SELECTOR",
    "SERVING_ROLES",
    "CLIENT_NAME",
    "USER_AGENT",
    "ACCEPT_ENCODING",
    "RETRY_ON_STATUS",
]
