"""Ordered short-code space.

Codes are numbered shortest first: every 1-character code in alphabet order,
then every 2-character code, and so on. Within one length the code is the
fixed-width base-``BASE`` numeral of its rank, so the first alphabet character
is a valid leading digit.
"""

from app.errors import CodeSpaceExhausted, InvalidIndex

# Characters that can appear unescaped in a URL path segment.
ALPHABET = "abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789-_.~!$&'()*+,;=@:"
BASE = len(ALPHABET)
MAX_CODE_LENGTH = 16  # short_links.short_code column width

# Single source for both the router and the allocator: top-level paths the
# application serves itself, plus dot segments clients normalise away.
RESERVED_CODES = frozenset({
    ".",
    "..",
    "api",
    "app",
    "docs",
    "redoc",
    "health",
    "openapi.json",
    "security",
    "login",
    "register",
    "logout",
    "static",
    "favicon.ico",
    "favicon.svg",
    "robots.txt",
    "sitemap.xml",
})

_DIGITS = {ch: i for i, ch in enumerate(ALPHABET)}


def index_to_code(index: int, max_length: int = MAX_CODE_LENGTH) -> str:
    if index < 0:
        raise InvalidIndex(f"Negative code index: {index}")

    remaining = index
    length = 1
    block = BASE
    while remaining >= block:
        remaining -= block
        length += 1
        if length > max_length:
            raise CodeSpaceExhausted(f"Index {index} needs more than {max_length} characters")
        block *= BASE

    chars = [ALPHABET[0]] * length
    for pos in range(length - 1, -1, -1):
        remaining, digit = divmod(remaining, BASE)
        chars[pos] = ALPHABET[digit]
    return "".join(chars)


def code_to_index(code: str) -> int:
    """Inverse of :func:`index_to_code`."""
    if not code:
        raise InvalidIndex("Empty code")
    offset = 0
    block = 1
    for _ in range(len(code) - 1):
        block *= BASE
        offset += block
    rank = 0
    for ch in code:
        if ch not in _DIGITS:
            raise InvalidIndex(f"Character {ch!r} is not in the code alphabet")
        rank = rank * BASE + _DIGITS[ch]
    return offset + rank


def is_reserved(code: str, reserved: frozenset[str] = RESERVED_CODES) -> bool:
    return code in reserved
