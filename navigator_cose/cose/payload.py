"""Plaintext setting payload validation."""
from typing import Any, Optional

import cbor2

from ..exceptions import InvalidArgument, InvalidEncoding, PayloadTooLarge
from .encrypt0 import loads_exact

# CBOR major types accepted as a declared setting content type
CTYPE_BYTES = 2
CTYPE_TEXT = 3
CTYPE_ARRAY = 4
CTYPE_MAP = 5
CTYPE_TAG = 6
CTYPES = frozenset({CTYPE_BYTES, CTYPE_TEXT, CTYPE_ARRAY, CTYPE_MAP, CTYPE_TAG})

_CTYPE_NAMES = {
    CTYPE_BYTES: "byte string",
    CTYPE_TEXT: "text string",
    CTYPE_ARRAY: "array items",
    CTYPE_MAP: "map items",
    CTYPE_TAG: "tagged item",
}


def check_payload_size(max_size: int, payload: bytes) -> None:
    if max_size > 0 and len(payload) > max_size:
        raise PayloadTooLarge(
            f"payload size {len(payload)} exceeds the limit {max_size}"
        )


def try_decode_payload(max_size: int, payload: bytes,
                       ctype: Optional[int] = None) -> Any:
    """Validate a plaintext CBOR payload and return the decoded value.

    Args:
        max_size: Namespace payload limit in bytes (0 disables the check).
        payload: Raw CBOR bytes.
        ctype: Declared CBOR major type, or None to accept any item.

    Raises:
        PayloadTooLarge: The payload exceeds ``max_size``.
        InvalidEncoding: Not CBOR, or not of the declared major type.
    """
    check_payload_size(max_size, payload)
    if ctype is not None and ctype not in CTYPES:
        raise InvalidArgument(f"ctype should be in [2..6], got {ctype}")
    if not payload:
        raise InvalidEncoding("decode CBOR payload failed: empty payload")
    try:
        value = loads_exact(payload)
    except (cbor2.CBORDecodeError, ValueError, EOFError) as err:
        raise InvalidEncoding(f"decode CBOR payload failed: {err}") from err
    if ctype is not None and payload[0] >> 5 != ctype:
        raise InvalidEncoding(f"invalid {_CTYPE_NAMES[ctype]}")
    return value
