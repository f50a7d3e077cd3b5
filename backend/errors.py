"""
Error taxonomy for playlist ingestion and persistence.

Every error carries a ``category`` so stores and callers can tell a network
outage from bad credentials or a broken playlist without parsing messages.
Messages are written to be shown to the user as-is.
"""
from typing import Optional


class IPTVError(Exception):
    """Base class for all categorized errors raised by this package."""

    category = "unknown"


class InvalidInputError(IPTVError):
    """Raised when a name, URL or other user input is missing or malformed."""

    category = "validation"


class NetworkError(IPTVError):
    """Raised for transport-level failures (DNS, refused connection, timeout)."""

    category = "network"

    def __init__(self, message: str = "Network error. Please check your internet connection."):
        super().__init__(message)


class HttpError(IPTVError):
    """Raised when the playlist server answers with a non-2xx status."""

    category = "http"

    def __init__(self, status_code: int, reason: str = "", message: Optional[str] = None):
        self.status_code = status_code
        self.reason = reason
        super().__init__(message or f"HTTP {status_code}: {reason}".rstrip(": "))


class AuthenticationError(HttpError):
    """401 Unauthorized or 403 Forbidden."""

    def __init__(self, status_code: int = 401, reason: str = "Unauthorized"):
        super().__init__(
            status_code,
            reason,
            "Authentication failed. Please check your credentials.",
        )

    @property
    def is_forbidden(self) -> bool:
        return self.status_code == 403


class RemoteNotFoundError(HttpError):
    """404 from the playlist server."""

    def __init__(self, reason: str = "Not Found"):
        super().__init__(404, reason, "Playlist not found. Please verify the URL.")


class ServerError(HttpError):
    """5xx from the playlist server."""

    def __init__(self, status_code: int = 500, reason: str = "Internal Server Error"):
        super().__init__(status_code, reason, "Server error. Please try again later.")


class EmptyContentError(IPTVError):
    """The server answered successfully but the body was blank."""

    category = "parse"

    def __init__(self, message: str = "Playlist content is empty"):
        super().__init__(message)


class ParseError(IPTVError):
    """The playlist text could not be parsed as M3U."""

    category = "parse"


class NoChannelsFoundError(ParseError):
    """Parsing succeeded but no channels remained."""

    def __init__(self, message: str = "No channels found in playlist. Please verify the M3U format."):
        super().__init__(message)


class PlaylistValidationError(IPTVError):
    """Structural validation of parsed playlist data failed."""

    category = "structural"

    def __init__(self, errors: list[str]):
        self.errors = list(errors)
        super().__init__(", ".join(self.errors) or "Playlist validation failed")


class NotFoundError(IPTVError):
    """An entity targeted by an update or delete does not exist."""

    category = "persistence"


class DuplicatePlaylistError(IPTVError):
    """A playlist with the same URL (case-insensitive) is already stored."""

    category = "validation"

    def __init__(self, existing_name: str):
        self.existing_name = existing_name
        super().__init__(f'Playlist from this URL already exists: "{existing_name}"')


class ConflictError(IPTVError):
    """An update was based on a stale playlist version."""

    category = "persistence"

    def __init__(self, playlist_id: str, expected: int, actual: int):
        self.playlist_id = playlist_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Playlist {playlist_id} was modified concurrently "
            f"(expected version {expected}, found {actual})"
        )


class MigrationError(IPTVError):
    """A schema migration failed and was rolled back."""

    category = "migration"

    def __init__(self, version: int, name: str, cause: Exception):
        self.version = version
        self.name = name
        self.cause = cause
        super().__init__(f"Migration {version} ({name}) failed: {cause}")
