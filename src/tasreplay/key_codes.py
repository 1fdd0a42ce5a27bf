"""
Key-code tables for ``K<name>`` fields.

Codes follow the virtual-key numbering used by the host input layer: a fixed
table of named keys, plus a character table for single-character names.
"""

from .playback_exceptions import UnknownKeyError

NAMED_KEYS: dict[str, int] = {
    "SHIFT": 16,
    "TAB": 9,
    "CTRL": 17,
    "ALT": 18,
    "BACKSPACE": 8,
    "INSERT": 155,
    "DELETE": 127,
    "UP": 38,
    "LEFT": 37,
    "DOWN": 40,
    "RIGHT": 39,
    "ENTER": 10,
}

# Punctuation with a dedicated virtual key; everything else printable falls
# back to the extended (unicode) range.
_CHARACTER_KEYS: dict[str, int] = {
    " ": 32,
    ",": 44,
    "-": 45,
    ".": 46,
    "/": 47,
    ";": 59,
    "=": 61,
    "[": 91,
    "\\": 92,
    "]": 93,
    "`": 192,
    "'": 222,
    "_": 523,
}

EXTENDED_KEY_BASE = 0x01000000


def char_key_code(char: str) -> int:
    """
    Map one printable character to its key code.

    Letters map to the code of their upper-case form, digits to their own
    code point.

    Raises:
        UnknownKeyError: If the character is not printable
    """
    if len(char) != 1 or not char.isprintable():
        raise UnknownKeyError(char)
    if char in _CHARACTER_KEYS:
        return _CHARACTER_KEYS[char]
    if char.isascii() and char.isalnum():
        return ord(char.upper())
    return EXTENDED_KEY_BASE + ord(char)


def key_code(name: str) -> int:
    """
    Resolve a key name (the part after ``K``) to a key code.

    Args:
        name: A named key such as ``SHIFT`` or a single printable character

    Returns:
        The key code

    Raises:
        UnknownKeyError: If the name is neither a named key nor a single character
    """
    if name in NAMED_KEYS:
        return NAMED_KEYS[name]
    if len(name) == 1:
        return char_key_code(name)
    raise UnknownKeyError(name)
