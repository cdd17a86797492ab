"""
Error taxonomy for the COSE store.

Every failure raised by the stores, the codec and the service derives from
``CoseError`` and carries a stable ``code`` so transports can map it to a
tagged error value.
"""


class CoseError(Exception):
    """Base class for all store errors."""

    code: str = "error"

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.code)
        self.message = message or self.code

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} {self.message!r}>"


class PermissionDenied(CoseError):
    code = "permission_denied"


class NotFound(CoseError):
    code = "not_found"


class VersionMismatch(CoseError):
    code = "version_mismatch"


class AlreadyExists(CoseError):
    code = "already_exists"


class NotEmpty(CoseError):
    code = "not_empty"


class PayloadTooLarge(CoseError):
    code = "payload_too_large"


class InvalidEncoding(CoseError):
    code = "invalid_encoding"


class CryptoFailure(CoseError):
    code = "crypto_failure"


class Disabled(CoseError):
    code = "disabled"


class InvalidArgument(CoseError, ValueError):
    code = "invalid_argument"
