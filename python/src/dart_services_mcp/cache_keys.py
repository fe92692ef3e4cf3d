"""
Content-addressed cache keys.

Keys look like:

    %%COMPILE:v1:checkedMode:true:wantsSourceMap:false:source:<sha1>

Parameters are written in sorted name order so callers cannot produce two
spellings of the same request.
"""

import hashlib
from typing import Mapping

from .config import COMPILE_CACHE_VERSION


# Trailing comments that force a fresh compile. Compatibility shim for
# callers that cannot pass the explicit bypass flag.
SUPPRESS_CACHE_MARKERS = (
    "/** supress-memcache **/",
    "/** suppress-memcache **/",
)


def hash_source(text: str) -> str:
    """SHA-1 of the exact UTF-8 bytes of the source."""
    return hashlib.sha1(text.encode("utf-8")).hexdigest()


def _format_value(value: object) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def build_cache_key(
    operation: str,
    version: int,
    params: Mapping[str, object],
    content: str
) -> str:
    """
    Build a deterministic key for a cacheable operation.

    Args:
        operation: Operation tag, e.g. "compile"
        version: Schema version of the cached payload
        params: Non-content parameters (flags)
        content: Normalized source text

    Returns:
        Cache key string
    """
    parts = [f"%%{operation.upper()}", f"v{version}"]
    for name in sorted(params):
        parts.append(f"{name}:{_format_value(params[name])}")
    parts.append(f"source:{hash_source(content)}")
    return ":".join(parts)


def compile_cache_key(source: str, checked_mode: bool, wants_source_map: bool) -> str:
    return build_cache_key(
        "compile",
        COMPILE_CACHE_VERSION,
        {"checkedMode": checked_mode, "wantsSourceMap": wants_source_map},
        source,
    )


def has_suppress_cache_marker(source: str) -> bool:
    """True when the source ends with a recognized suppress-cache comment."""
    trimmed = source.strip().lower()
    return any(trimmed.endswith(marker) for marker in SUPPRESS_CACHE_MARKERS)
