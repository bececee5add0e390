import pytest

from rchat.codec import decode, encode


def test_codec_round_trip() -> None:
    obj = {0: 1, 1: 20, 4: b"peer", 6: "hello"}
    assert decode(encode(obj)) == obj


def test_encode_is_canonical() -> None:
    assert encode({6: "x", 0: 1}) == encode({0: 1, 6: "x"})


def test_decode_rejects_trailing_bytes() -> None:
    with pytest.raises(ValueError):
        decode(encode({0: 1}) + b"\x00")


def test_decode_rejects_truncated_input() -> None:
    data = encode({0: "a longer string value"})
    with pytest.raises(Exception):
        decode(data[:-3])


def test_decode_rejects_non_bytes() -> None:
    with pytest.raises(TypeError):
        decode("not bytes")
