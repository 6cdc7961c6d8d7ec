class CipherdirError(Exception):
    """Base class for every error raised by the storage engine."""


class IncorrectPassword(CipherdirError, ValueError):
    """The authentication tag did not verify: wrong password or tampered data."""


class MalformedEnvelope(CipherdirError, ValueError):
    """An envelope (or the index payload inside one) is structurally invalid."""


class NotFound(CipherdirError, FileNotFoundError):
    """A key is absent from the directory or a content id is not in the index."""


class AccessDenied(CipherdirError, PermissionError):
    """The directory refused write access."""


class IntegrityInconsistency(CipherdirError, RuntimeError):
    """A live index entry references a blob that is missing."""


class SessionStateError(CipherdirError, RuntimeError):
    """An operation was attempted in a session state that does not allow it."""
