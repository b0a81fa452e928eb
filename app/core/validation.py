"""
Key name validation.

Key names are used as cache lookup keys and, while loading, as file names
inside the key directory. They are rejected outright instead of sanitized so
that a traversal attempt can never be turned into a valid lookup.
"""
import posixpath
import re

from app.core.errors import InvalidKeyName


KEY_SUFFIX = ".key"

_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")
_FORBIDDEN_SEQUENCES = ("..", "/", "\\")
_SEPARATORS = ("/", "\\")


def validate_key_name(name: str) -> str:
    """
    Validate a key identifier such as ``stream.key``.

    Args:
        name: Identifier supplied by a caller or found in the key directory

    Returns:
        The identifier, unchanged

    Raises:
        InvalidKeyName: If any naming rule is violated
    """
    if not name or not name.endswith(KEY_SUFFIX):
        raise InvalidKeyName(f"key name must end with {KEY_SUFFIX}")

    if _CONTROL_CHARS.search(name):
        raise InvalidKeyName("key name contains control characters")

    for sequence in _FORBIDDEN_SEQUENCES:
        if sequence in name:
            raise InvalidKeyName(f"key name contains {sequence!r}")

    cleaned = posixpath.normpath(name)
    if cleaned != name:
        raise InvalidKeyName("key name is not in canonical form")

    if any(sep in cleaned for sep in _SEPARATORS):
        raise InvalidKeyName("key name contains a path separator")

    return name


def is_valid_key_name(name: str) -> bool:
    """Non-raising variant used when scanning the key directory."""
    try:
        validate_key_name(name)
    except InvalidKeyName:
        return False
    return True
