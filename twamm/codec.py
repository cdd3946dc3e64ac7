"""
msgpack encoding of persisted pool state (reserves plus order book).

Token amounts and reward factors routinely exceed 64 bits, which msgpack
cannot hold natively; such integers travel as an extension type.
"""
import msgpack

from twamm.order_book import LongTermOrderBook
from twamm.reserves import Reserves

STATE_VERSION = 1
BIGINT_EXT_TYPE = 1

_INT64_MIN = -(1 << 63)
_UINT64_MAX = (1 << 64) - 1


def _wrap_big_ints(obj):
    if isinstance(obj, bool):
        return obj
    if isinstance(obj, int):
        if _INT64_MIN <= obj <= _UINT64_MAX:
            return obj
        length = (obj.bit_length() + 8) // 8
        return msgpack.ExtType(BIGINT_EXT_TYPE, obj.to_bytes(length, 'big', signed=True))
    if isinstance(obj, dict):
        return {key: _wrap_big_ints(value) for key, value in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_wrap_big_ints(value) for value in obj]
    return obj


def _ext_hook(code: int, data: bytes):
    if code == BIGINT_EXT_TYPE:
        return int.from_bytes(data, 'big', signed=True)
    return msgpack.ExtType(code, data)


def encode_state(book: LongTermOrderBook, reserves: Reserves) -> bytes:
    """Pack the order book and reserves into bytes for storage."""
    return msgpack.packb(_wrap_big_ints({
        'version': STATE_VERSION,
        'reserves': reserves.to_dict(),
        'book': book.to_dict(),
    }), use_bin_type=True)


def decode_state(encoded: bytes) -> tuple:
    """
    Unpack state written by encode_state.

    Returns:
        (LongTermOrderBook, Reserves)
    """
    # Expiry maps are keyed by block number
    data = msgpack.unpackb(encoded, raw=False, strict_map_key=False, ext_hook=_ext_hook)
    version = data.get('version')
    if version != STATE_VERSION:
        raise ValueError(f"Unsupported state version {version}")
    return LongTermOrderBook.from_dict(data['book']), Reserves.from_dict(data['reserves'])
