from __future__ import annotations

import io

import cbor2


def encode(obj) -> bytes:
    return cbor2.dumps(obj, canonical=True)


def decode(b: bytes):
    """Decode exactly one CBOR item; trailing bytes are an error."""
    if not isinstance(b, (bytes, bytearray, memoryview)):
        raise TypeError("CBOR input must be bytes")
    fp = io.BytesIO(bytes(b))
    obj = cbor2.CBORDecoder(fp).decode()
    if fp.read(1):
        raise ValueError("trailing bytes after CBOR item")
    return obj
