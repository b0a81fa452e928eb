"""
Error taxonomy for the key server.

Every failure raised by the key store, the name validator and the token
components is a ``KeyServerError``. The HTTP layer maps them to a JSON body
``{"error": public_message}`` with ``status_code``; the exception message
itself may carry internal detail and is only logged.
"""
from fastapi import status


class KeyServerError(Exception):
    """Base class for failures surfaced to API callers."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    public_message: str = "Internal server error"

    def __init__(self, message: str = ""):
        super().__init__(message or self.public_message)


class InvalidKeyName(KeyServerError):
    """Identifier violates the naming rules (caller error, never retried)."""

    status_code = status.HTTP_400_BAD_REQUEST
    public_message = "Invalid key name"


class KeyNotFound(KeyServerError):
    """Identifier is well formed but not present in the current snapshot."""

    status_code = status.HTTP_404_NOT_FOUND
    public_message = "Key not found"


class ScanFailure(KeyServerError):
    """Backing directory could not be enumerated or a key file could not be read."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    public_message = "Failed to reload keys"


class AuthenticationError(KeyServerError):
    status_code = status.HTTP_401_UNAUTHORIZED
    public_message = "Unauthorized"


class TokenMissing(AuthenticationError):
    public_message = "Token is required"


class TokenInvalid(AuthenticationError):
    public_message = "Invalid or expired token"


class InvalidCredentials(AuthenticationError):
    # Raised for both header and username mismatches.
    public_message = "Invalid credentials"


class SigningFailure(KeyServerError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    public_message = "Failed to generate token"
