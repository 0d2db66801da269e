"""
MessagePack codec for cached collection snapshots.

Snapshots are JSON-compatible values (dicts of records or lists of records
in their wire shape). The cache stores them as MessagePack bytes.
"""

from typing import Any

import msgpack

from shared.errors import CacheError

# Size limits so a corrupted cache entry cannot exhaust memory on load.
MAX_SNAPSHOT_LEN = 16 * 1024 * 1024
MAX_STR_LEN = 1024 * 1024
MAX_ARRAY_LEN = 100_000
MAX_MAP_LEN = 100_000


def _stringify_keys(obj: object) -> object:
    """
    Recursively convert integer dict keys to strings.

    Multiplier tables are dict[int, float] in Python but string-keyed on
    the wire, and strict MessagePack maps only allow string keys.
    """
    if isinstance(obj, dict):
        return {str(k) if isinstance(k, int) else k: _stringify_keys(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_stringify_keys(item) for item in obj]
    return obj


def encode_snapshot(value: Any) -> bytes:  # noqa: ANN401
    try:
        return msgpack.packb(_stringify_keys(value))
    except (TypeError, ValueError, OverflowError) as e:
        raise CacheError(f"failed to encode snapshot: {e}") from e


def decode_snapshot(data: bytes) -> Any:  # noqa: ANN401
    """
    Decode MessagePack bytes into a snapshot value.

    Raises CacheError if data is invalid or exceeds size limits.
    """
    if len(data) > MAX_SNAPSHOT_LEN:
        raise CacheError(f"snapshot too large: {len(data)} bytes (max {MAX_SNAPSHOT_LEN})")
    try:
        return msgpack.unpackb(
            data,
            raw=False,
            max_str_len=MAX_STR_LEN,
            max_array_len=MAX_ARRAY_LEN,
            max_map_len=MAX_MAP_LEN,
        )
    except (msgpack.UnpackException, ValueError) as e:
        raise CacheError(f"failed to decode snapshot: {e}") from e
