from __future__ import annotations

from .models import StreamResponse


class StreamError(Exception):
    """Base error for everything that ends up as an error response."""

    status_code = 500
    default_message = "Internal stream error."

    def __init__(self, message: str | None = None, *, status_code: int | None = None):
        self.message = message or self.default_message
        if status_code is not None:
            self.status_code = status_code
        super().__init__(self.message)

    def to_response(self) -> StreamResponse:
        return StreamResponse.text(self.message, self.status_code)


class ConfigurationMissingError(StreamError):
    status_code = 401
    default_message = "No active connection configured."


class CredentialsMissingError(StreamError):
    status_code = 401
    default_message = "Provide a password or private key for authentication."


class RemoteConnectionError(StreamError):
    """Transport, handshake or SFTP subsystem failure."""

    status_code = 502
    default_message = "Failed to connect."


class AuthenticationError(RemoteConnectionError):
    status_code = 401
    default_message = "SSH authentication failed."


class RemoteIOError(StreamError):
    """Stat, open, seek or read failure against an open session."""

    status_code = 500
    default_message = "Remote I/O failed."


class RequestDecodeError(StreamError):
    status_code = 400
    default_message = "Invalid stream path encoding."


class InternalLockError(StreamError):
    status_code = 500
    default_message = "Failed to lock stream state."


class WorkerBusyError(StreamError):
    status_code = 503
    default_message = "Stream worker is busy."


class WorkerUnavailableError(StreamError):
    status_code = 503
    default_message = "Stream worker unavailable."
