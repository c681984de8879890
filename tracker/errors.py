"""
Exceptions raised by the token manager and the Dropbox adapter.
"""


class TrackerError(Exception):
    """Base class for tracker failures."""


class TokenRequestError(TrackerError):
    """Token endpoint rejected the request or could not be reached (status_code None)."""

    def __init__(self, message: str, *, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code

    @property
    def rejected(self) -> bool:
        """Dropbox answered with a 4xx, e.g. invalid_grant for a revoked refresh token."""
        return self.status_code is not None and 400 <= self.status_code < 500


class AuthorizationExpired(TokenRequestError):
    """No usable credential; the user must connect to Dropbox again."""


class MissingVerifier(TrackerError):
    """Callback arrived without a matching PKCE verifier (other tab, expired or replayed flow)."""


class RemoteStoreError(TrackerError):
    def __init__(self, message: str, *, path: str | None = None, status_code: int | None = None):
        super().__init__(message)
        self.path = path
        self.status_code = status_code


class RemoteNotFound(RemoteStoreError):
    """Path does not exist. Callers treat this as an empty dataset."""


class RemoteAuthFailure(RemoteStoreError):
    """Dropbox rejected the access token (401)."""


class RemoteTransientFailure(RemoteStoreError):
    """Network error, rate limit, 5xx or any other unexpected response."""


class InvalidDataFile(RemoteStoreError):
    """The course file downloaded but is not a readable dataset."""
