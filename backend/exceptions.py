"""Application-level exception types.

Convention:
- ``InternalServerError``: for errors whose details must never reach clients
  (configuration validation, infrastructure failures, etc.).  The global
  handler logs the full message at ERROR and returns a generic
  "Internal server error" (500) to the client.
- ``LegacyError`` subclasses: failures of the legacy point-of-sale bridge.
  Each carries the HTTP status its global handler answers with and a message
  that is safe to show to operators.
- ``ValueError``: for *business logic* validation errors that are safe to
  forward to clients (bad folder names, rejected uploads, etc.).  The global
  ``ValueError`` handler returns ``str(exc)`` as the 422 message.
"""

from __future__ import annotations


class InternalServerError(Exception):
    """Raised for internal errors whose details must not be exposed to clients.

    The global exception handler in ``backend/main.py`` catches this, logs
    the full message server-side, and returns HTTP 500 with a generic
    ``"Internal server error"`` message.
    """


class LegacyError(Exception):
    """Base class for failures talking to legacy database files."""

    status_code = 500


class ConnectionFailed(LegacyError):
    """No usable handle could be opened on a legacy file after all retries."""

    status_code = 503

    def __init__(self, path: str, attempts: int, last_error: BaseException | None) -> None:
        self.path = path
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"Could not open {path} after {attempts} attempt(s): {last_error}")


class LegacyFileNotFound(LegacyError):
    """No candidate location holds a readable legacy database file."""

    status_code = 404
    REPORTED_LOCATIONS = 10

    def __init__(self, folder_name: str, attempted: list[str]) -> None:
        self.folder_name = folder_name
        self.attempted = attempted
        super().__init__(
            f"No readable database found for folder '{folder_name}' "
            f"({len(attempted)} location(s) searched)"
        )

    @property
    def reported_locations(self) -> list[str]:
        """Attempted locations, truncated for display."""
        return self.attempted[: self.REPORTED_LOCATIONS]


class ConversionFailed(LegacyError):
    """The local search cache could not be built."""


class SyncFailed(LegacyError):
    """Ingestion of one legacy file into the central store was rolled back."""


class NoFolderSelected(LegacyError):
    """An operation needs a selected folder but none has been chosen."""

    status_code = 400

    def __init__(self) -> None:
        super().__init__("No folder selected. Select a folder first.")
