"""Base58 (Bitcoin alphabet) codec used for Solana keys, signatures and data."""

ALPHABET = "123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"

_INDEX = {char: i for i, char in enumerate(ALPHABET)}


class DecodeError(ValueError):
    """Raised when encoded text or instruction bytes are malformed or truncated."""


def b58encode(data: bytes) -> str:
    """Encode bytes as base58, one leading '1' per leading zero byte."""
    zeros = len(data) - len(data.lstrip(b"\x00"))
    num = int.from_bytes(data, "big")

    chars = []
    while num > 0:
        num, rem = divmod(num, 58)
        chars.append(ALPHABET[rem])

    return "1" * zeros + "".join(reversed(chars))


def b58decode(text: str) -> bytes:
    """Decode base58 text into bytes.

    Raises:
        DecodeError: If the text contains a character outside the alphabet
    """
    num = 0
    for char in text:
        try:
            num = num * 58 + _INDEX[char]
        except KeyError:
            raise DecodeError(f"Invalid base58 character {char!r}") from None

    zeros = len(text) - len(text.lstrip("1"))
    body = num.to_bytes((num.bit_length() + 7) // 8, "big") if num else b""
    return b"\x00" * zeros + body
