from __future__ import annotations

import io
import logging
import posixpath
import socket
import stat
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

import paramiko

from .errors import (
    AuthenticationError,
    CredentialsMissingError,
    RemoteConnectionError,
    RemoteIOError,
)
from .responder import is_video_path

if TYPE_CHECKING:
    from collections.abc import Iterable

    from .models import ConnectionConfig

LOG = logging.getLogger("sftp_stream.connector")

_KEY_CLASSES: tuple[type[paramiko.PKey], ...] = (
    paramiko.RSAKey,
    paramiko.ECDSAKey,
    paramiko.Ed25519Key,
)
_SFTP_ERRORS = (OSError, EOFError, paramiko.SSHException, paramiko.SFTPError)


class RemoteFile(Protocol):
    def seek(self, offset: int, whence: int = 0) -> int: ...

    def read(self, size: int = -1) -> bytes: ...

    def close(self) -> None: ...


@dataclass(frozen=True)
class RemoteEntry:
    name: str
    path: str
    is_dir: bool


class RemoteSession:
    """An authenticated SFTP session used for a single purpose.

    The session owns its transport; closing it tears down both the SFTP
    channel and the underlying SSH connection.
    """

    def __init__(self, transport: paramiko.Transport, sftp: paramiko.SFTPClient):
        self._transport = transport
        self._sftp = sftp

    def __enter__(self) -> RemoteSession:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def listdir(self, folder: str) -> list[RemoteEntry]:
        try:
            attrs = self._sftp.listdir_attr(folder)
        except _SFTP_ERRORS as exc:
            msg = f"Failed to read folder: {exc}"
            raise RemoteIOError(msg) from exc
        return [
            RemoteEntry(
                name=attr.filename,
                path=posixpath.join(folder, attr.filename),
                is_dir=attr.st_mode is not None and stat.S_ISDIR(attr.st_mode),
            )
            for attr in attrs
        ]

    def stat_size(self, path: str) -> int:
        try:
            attrs = self._sftp.stat(path)
        except _SFTP_ERRORS as exc:
            msg = f"Failed to stat remote file: {exc}"
            raise RemoteIOError(msg) from exc
        return attrs.st_size or 0

    def open(self, path: str) -> RemoteFile:
        try:
            return self._sftp.open(path, "rb")
        except _SFTP_ERRORS as exc:
            msg = f"Failed to open remote file: {exc}"
            raise RemoteIOError(msg) from exc

    def close(self) -> None:
        try:
            self._sftp.close()
        finally:
            self._transport.close()


class Connector(Protocol):
    def __call__(self, config: ConnectionConfig) -> RemoteSession: ...


def load_private_key(text: str, passphrase: str | None = None) -> paramiko.PKey:
    """Parse an in-memory private key, trying each supported key type."""
    for key_class in _KEY_CLASSES:
        try:
            return key_class.from_private_key(io.StringIO(text), password=passphrase)
        except paramiko.PasswordRequiredException as exc:
            msg = "Private key is encrypted; provide a passphrase."
            raise AuthenticationError(msg) from exc
        except (paramiko.SSHException, ValueError):
            continue
    msg = "SSH key auth failed: unsupported or invalid private key."
    raise AuthenticationError(msg)


def _authenticate(transport: paramiko.Transport, config: ConnectionConfig) -> None:
    if config.private_key:
        key = load_private_key(config.private_key, config.passphrase)
        try:
            transport.auth_publickey(config.username, key)
        except paramiko.SSHException as exc:
            msg = f"SSH key auth failed: {exc}"
            raise AuthenticationError(msg) from exc
    else:
        try:
            transport.auth_password(config.username, config.password)
        except paramiko.SSHException as exc:
            msg = f"SSH password auth failed: {exc}"
            raise AuthenticationError(msg) from exc


def open_session(config: ConnectionConfig, timeout: float = 15.0) -> RemoteSession:
    """Connect, handshake, authenticate and start SFTP for ``config``.

    Blocking; callers on the event loop must offload it to a thread.

    Raises:
        CredentialsMissingError: neither a password nor a private key is set.
        AuthenticationError: the server rejected the credentials.
        RemoteConnectionError: TCP, handshake or SFTP start-up failed.
    """
    if not config.has_credentials:
        raise CredentialsMissingError

    try:
        sock = socket.create_connection((config.host, config.port), timeout=timeout)
    except OSError as exc:
        msg = f"Failed to connect: {exc}"
        raise RemoteConnectionError(msg) from exc

    try:
        transport = paramiko.Transport(sock)
    except (paramiko.SSHException, OSError) as exc:
        sock.close()
        msg = f"SSH handshake failed: {exc}"
        raise RemoteConnectionError(msg) from exc

    try:
        try:
            transport.start_client(timeout=timeout)
        except (paramiko.SSHException, OSError, EOFError) as exc:
            msg = f"SSH handshake failed: {exc}"
            raise RemoteConnectionError(msg) from exc

        _authenticate(transport, config)

        try:
            sftp = paramiko.SFTPClient.from_transport(transport)
        except (paramiko.SSHException, OSError) as exc:
            msg = f"Failed to start SFTP: {exc}"
            raise RemoteConnectionError(msg) from exc
        if sftp is None:
            msg = "Failed to start SFTP: channel refused"
            raise RemoteConnectionError(msg)
    except BaseException:
        transport.close()
        raise

    LOG.info("opened SFTP session to %s", config.describe())
    return RemoteSession(transport, sftp)


def list_videos(
    session: RemoteSession, folder: str, extensions: Iterable[str]
) -> list[str]:
    """List video files in ``folder``, sorted case-insensitively."""
    folder = folder.strip() or "."
    wanted = {ext.lower() for ext in extensions}
    files = [
        entry.path
        for entry in session.listdir(folder)
        if not entry.is_dir and is_video_path(entry.name, wanted)
    ]
    files.sort(key=str.lower)
    return files
