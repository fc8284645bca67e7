"""Error taxonomy for blob_uploader."""


class UploaderError(RuntimeError):
    """Base class for uploader errors."""


class TransferError(UploaderError):
    """A single session's upload failed."""

    def __init__(self, message: str, key: str = None):
        super().__init__(message)
        self.key = key


class ResolutionError(UploaderError):
    """Download URL could not be resolved for a stored object."""

    def __init__(self, key: str, attempts: int, cause: Exception = None):
        detail = f": {cause}" if cause else ""
        super().__init__(f"could not resolve URL for {key} after {attempts} attempt(s){detail}")
        self.key = key
        self.attempts = attempts
        self.cause = cause


class ListingError(UploaderError):
    """Remote listing (or resolving one of its entries) failed."""

    def __init__(self, prefix: str, cause: Exception = None):
        detail = f": {cause}" if cause else ""
        super().__init__(f"listing {prefix!r} failed{detail}")
        self.prefix = prefix
        self.cause = cause


class InvalidTransitionError(UploaderError):
    """Raised on an illegal session status transition."""

    def __init__(self, session_id: str, current: str, target: str):
        super().__init__(f"session {session_id}: cannot move from {current} to {target}")
        self.session_id = session_id
        self.current = current
        self.target = target
