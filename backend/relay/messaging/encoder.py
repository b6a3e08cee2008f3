"""
MessagePack codec for relay frames.

Every frame on the wire is a single MessagePack map. Game-data frames are
forwarded to peers unchanged, so decoding keeps whatever fields the client
sent and only enforces structural and size limits.
"""

from typing import Any

import msgpack


class DecodeError(Exception):
    """Raised when a frame cannot be decoded into a map."""


# Relay payloads are small (board coordinates, shot results); anything larger
# is a misbehaving client.
MAX_BUFFER_LEN = 64 * 1024
MAX_STR_LEN = 16 * 1024
MAX_BIN_LEN = 16 * 1024
MAX_ARRAY_LEN = 1024
MAX_MAP_LEN = 256
MAX_EXT_LEN = 1024


def _stringify_keys(obj: object) -> object:
    """Recursively turn integer map keys into strings so peers decode with ``strict_map_key``."""
    if isinstance(obj, dict):
        return {str(k) if isinstance(k, int) else k: _stringify_keys(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_stringify_keys(item) for item in obj]
    return obj


def encode(data: dict[str, Any]) -> bytes:
    return msgpack.packb(_stringify_keys(data))


def decode(data: bytes) -> dict[str, Any]:
    """
    Decode a MessagePack frame into a dict.

    Raises DecodeError if the frame is too large, malformed or not a map.
    """
    if len(data) > MAX_BUFFER_LEN:
        raise DecodeError(f"payload too large: {len(data)} bytes (max {MAX_BUFFER_LEN})")
    try:
        result = msgpack.unpackb(
            data,
            raw=False,
            max_str_len=MAX_STR_LEN,
            max_bin_len=MAX_BIN_LEN,
            max_array_len=MAX_ARRAY_LEN,
            max_map_len=MAX_MAP_LEN,
            max_ext_len=MAX_EXT_LEN,
        )
    except (msgpack.UnpackException, ValueError) as e:
        raise DecodeError(f"failed to decode MessagePack data: {e}") from e

    if not isinstance(result, dict):
        raise DecodeError(f"expected map, got {type(result).__name__}")

    return result
