"""
Custom exception classes.

Represent errors raised while resolving and relocating images.
"""

from __future__ import annotations


class CopyError(Exception):
    """Base exception class for copy operations."""

    pass


class ConfigurationError(CopyError):
    """Raised when the source/destination flags are not a valid combination."""

    pass


class MismatchError(CopyError):
    """Raised when a bundle is passed where an image is expected, or vice versa."""

    pass


class ParseError(CopyError):
    """Raised when an input value cannot be parsed."""

    pass


class LockParseError(ParseError):
    """Raised when a lock file is malformed or of an unknown kind."""

    def __init__(self, path: str, detail: str):
        self.path = path
        self.detail = detail
        super().__init__(f"{detail} ({path})")


class ReferenceParseError(ParseError):
    """Raised when an image reference is malformed."""

    def __init__(self, detail: str):
        self.detail = detail
        super().__init__(detail)


class BundleError(CopyError):
    """Raised when a bundle image does not have the expected contents."""

    def __init__(self, ref: str, detail: str):
        self.ref = ref
        self.detail = detail
        super().__init__(f"Bundle {ref}: {detail}")


class ArchiveError(CopyError):
    """Raised when a tar archive cannot be read or written."""

    pass


class DigestMismatchError(CopyError):
    """Raised when downloaded content does not hash to the expected digest."""

    def __init__(self, expected: str, actual: str):
        self.expected = expected
        self.actual = actual
        super().__init__(f"Digest mismatch: expected {expected}, got {actual}")


# ===========================================
# Registry errors
# ===========================================


class RegistryError(Exception):
    """Error returned by a registry or raised while talking to it."""

    def __init__(self, detail: str, status_code: int | None = None):
        self.detail = detail
        self.status_code = status_code
        if status_code is None:
            super().__init__(detail)
        else:
            super().__init__(f"{detail} (status {status_code})")


class NotFoundError(RegistryError):
    """The requested manifest or blob does not exist."""

    def __init__(self, detail: str):
        super().__init__(detail, 404)


class AuthError(RegistryError):
    """The registry rejected the supplied credentials."""

    pass
