"""Fixed-offset little-endian field extraction from instruction data."""

import struct

from chain.base58 import DecodeError, b58encode


class FieldReader:
    """Read Borsh-style fields at explicit offsets of a byte buffer.

    Offsets are relative to the start of ``data``; callers strip the
    8-byte discriminator before constructing a reader.
    """

    def __init__(self, data: bytes):
        self.data = bytes(data)

    def __len__(self) -> int:
        return len(self.data)

    def _require(self, offset: int, size: int) -> None:
        if offset < 0 or offset + size > len(self.data):
            raise DecodeError(
                f"Need {size} bytes at offset {offset}, buffer has {len(self.data)}"
            )

    def _unpack(self, fmt: str, offset: int) -> int:
        size = struct.calcsize(fmt)
        self._require(offset, size)
        return struct.unpack_from(fmt, self.data, offset)[0]

    def u8(self, offset: int) -> int:
        return self._unpack("<B", offset)

    def u16(self, offset: int) -> int:
        return self._unpack("<H", offset)

    def u32(self, offset: int) -> int:
        return self._unpack("<I", offset)

    def u64(self, offset: int) -> int:
        return self._unpack("<Q", offset)

    def i64(self, offset: int) -> int:
        return self._unpack("<q", offset)

    def flag(self, offset: int) -> bool:
        return self.u8(offset) != 0

    def fixed(self, offset: int, length: int) -> bytes:
        """Fixed-length byte array."""
        self._require(offset, length)
        return self.data[offset:offset + length]

    def hex(self, offset: int, length: int) -> str:
        return self.fixed(offset, length).hex()

    def pubkey(self, offset: int) -> str:
        """32-byte public key as base58 text."""
        return b58encode(self.fixed(offset, 32))

    def string(self, offset: int, max_length: int = 1024) -> tuple[str, int]:
        """Length-prefixed (u32) UTF-8 string.

        Returns:
            Tuple of (decoded string, offset just past the string)
        """
        length = self.u32(offset)
        if length > max_length:
            raise DecodeError(f"String length {length} exceeds limit {max_length}")
        raw = self.fixed(offset + 4, length)
        try:
            value = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise DecodeError(f"Invalid UTF-8 string at offset {offset}") from e
        return value, offset + 4 + length
