"""
Capability versions for the structured-call surface.

Scope
- The closed list of protocol versions the schema bridge understands.
- Version ordering, negotiation and the output-schema gate.
- The single piece of process-wide state in rudder: the "current" version
  used whenever tools are derived or invoked.

Behavior
- The current version starts at CURRENT_VERSION and changes only through
  set_version() (called directly or by the --s-mcp-version directive) or
  reset_version(). Nothing in the parse engine mutates it otherwise.
- set_version() negotiates its argument, so unknown or "draft" versions fall
  back to CURRENT_VERSION.

Notes
- Versions are ISO dates ("YYYY-MM-DD"), so string ordering is date ordering.
"""
import logging
import re
import threading

logger = logging.getLogger(__name__)

SUPPORTED_VERSIONS = (
    "2024-11-05",
    "2025-03-26",
    "2025-06-18",
)

CURRENT_VERSION = "2025-06-18"

# First version that advertises output schemas and structured content.
OUTPUT_SCHEMA_VERSION = "2025-06-18"

_lock = threading.Lock()
_version = CURRENT_VERSION


def is_valid(version, /):
    """
    True when version is shaped like a protocol version date.
    """
    return isinstance(version, str) and re.fullmatch(r"\d{4}-\d{2}-\d{2}", version) is not None


def compare(left, right, /):
    """
    Order two versions: negative, zero or positive like a classic cmp().
    """
    if not is_valid(left) or not is_valid(right):
        raise ValueError(f"compare() arguments must be versions like 'YYYY-MM-DD', got {left!r} and {right!r}")
    return (left > right) - (left < right)


def negotiate(version, /):
    """
    Map a client-requested version to the version rudder will speak.

    A supported version maps to itself; anything else (malformed, unknown,
    "draft") maps to CURRENT_VERSION.
    """
    if version in SUPPORTED_VERSIONS:
        return version
    logger.debug("unsupported protocol version %r, using %s", version, CURRENT_VERSION)
    return CURRENT_VERSION


def supports_output_schemas(version, /):
    """
    True when version is at or above OUTPUT_SCHEMA_VERSION.
    """
    return is_valid(version) and compare(version, OUTPUT_SCHEMA_VERSION) >= 0


def get_version():
    """
    Return the process-wide current version.
    """
    with _lock:
        return _version


def set_version(version, /):
    """
    Rebind the process-wide current version (negotiated) and return it.
    """
    global _version
    if not isinstance(version, str):
        raise TypeError("set_version() argument must be a string")
    negotiated = negotiate(version.strip())
    with _lock:
        _version = negotiated
    logger.debug("protocol version set to %s", negotiated)
    return negotiated


def reset_version():
    """
    Restore CURRENT_VERSION as the process-wide version.
    """
    return set_version(CURRENT_VERSION)


__all__ = (
    "SUPPORTED_VERSIONS",
    "CURRENT_VERSION",
    "OUTPUT_SCHEMA_VERSION",
    "is_valid",
    "compare",
    "negotiate",
    "supports_output_schemas",
    "get_version",
    "set_version",
    "reset_version",
)
