"""Non-cryptographic checksums used for gate signatures and prompt binding.

Both helpers guard against accidental misuse (stale tokens, prompts edited
after Send). Neither is a MAC: anyone holding the salt can forge a value.
"""

import string


_BASE36_DIGITS = string.digits + string.ascii_lowercase


def string_checksum(value: str) -> int:
    """Return the signed 32-bit rolling hash ``h = h * 31 + ord(c)`` of ``value``."""
    h = 0
    for ch in value:
        h = ((h << 5) - h + ord(ch)) & 0xFFFFFFFF
    # Reinterpret as signed 32-bit
    if h >= 0x80000000:
        h -= 0x100000000
    return h


def to_base36(number: int) -> str:
    """Encode a non-negative integer in lowercase base36."""
    if number < 0:
        raise ValueError("to_base36 expects a non-negative integer")
    if number == 0:
        return "0"
    digits: list[str] = []
    while number:
        number, rem = divmod(number, 36)
        digits.append(_BASE36_DIGITS[rem])
    return "".join(reversed(digits))


def sign_payload(payload: str, secret: str) -> str:
    """Return ``sig_<base36>`` checksum over ``payload:secret``."""
    return "sig_" + to_base36(abs(string_checksum(f"{payload}:{secret}")))


def content_hash(text: str) -> str:
    """djb2-xor fingerprint (base36) binding a prompt to what the UI showed at Send."""
    if not text:
        return "0"
    h = 5381
    for ch in text:
        h = (((h << 5) + h) ^ ord(ch)) & 0xFFFFFFFF
    return to_base36(h)
