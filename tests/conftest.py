from __future__ import annotations

import io
import os
import socket
import threading
from dataclasses import dataclass
from typing import TYPE_CHECKING

import paramiko
import pytest
from fakes import FakeConnector, pattern_bytes
from sftp_stream import ConnectionConfig, StreamCoordinator, StreamSettings

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, Generator
    from pathlib import Path


@pytest.fixture
def connection_config() -> ConnectionConfig:
    return ConnectionConfig(host="media.example", username="viewer", password="secret")


@pytest.fixture
def other_config() -> ConnectionConfig:
    return ConnectionConfig(
        host="backup.example", username="viewer", password="other-secret"
    )


@pytest.fixture
def fake_connector() -> FakeConnector:
    return FakeConnector(
        {
            "/videos/clip.mp4": pattern_bytes(10_000),
            "/videos/movie.mkv": pattern_bytes(4_096),
        }
    )


@pytest.fixture
def stream_settings() -> StreamSettings:
    return StreamSettings(
        SFTP_STREAM_DEFAULT_CHUNK_SIZE=1024,
        SFTP_STREAM_MAILBOX_SIZE=8,
        SFTP_STREAM_LOCK_TIMEOUT=1.0,
    )


@pytest.fixture
def stream_env_vars() -> Generator[dict[str, str]]:
    """Set up environment variables for the streaming engine."""
    env_vars = {
        "SFTP_STREAM_DEFAULT_CHUNK_SIZE": "65536",
        "SFTP_STREAM_MAILBOX_SIZE": "4",
        "SFTP_STREAM_CONNECT_TIMEOUT": "2.5",
        "SFTP_STREAM_EVICT_FAILED_WORKERS": "true",
        "SFTP_STREAM_VIDEO_EXTENSIONS": " .MP4, mkv ,,ts",
    }

    original_values = {}
    for key, value in env_vars.items():
        original_values[key] = os.environ.get(key)
        os.environ[key] = value

    yield env_vars

    for key, original_value in original_values.items():
        if original_value is None:
            os.environ.pop(key, None)
        else:
            os.environ[key] = original_value


@pytest.fixture
async def coordinator(
    stream_settings: StreamSettings, fake_connector: FakeConnector
) -> AsyncGenerator[StreamCoordinator]:
    async with StreamCoordinator(stream_settings, fake_connector) as running:
        yield running


# --- in-process SFTP server -------------------------------------------------


class _SSHServer(paramiko.ServerInterface):
    def __init__(self, username: str, password: str, client_key: paramiko.PKey):
        self._username = username
        self._password = password
        self._client_key = client_key

    def get_allowed_auths(self, username: str) -> str:
        return "password,publickey"

    def check_auth_password(self, username: str, password: str) -> int:
        if username == self._username and password == self._password:
            return paramiko.AUTH_SUCCESSFUL
        return paramiko.AUTH_FAILED

    def check_auth_publickey(self, username: str, key: paramiko.PKey) -> int:
        if (
            username == self._username
            and key.get_base64() == self._client_key.get_base64()
        ):
            return paramiko.AUTH_SUCCESSFUL
        return paramiko.AUTH_FAILED

    def check_channel_request(self, kind: str, chanid: int) -> int:
        if kind == "session":
            return paramiko.OPEN_SUCCEEDED
        return paramiko.OPEN_FAILED_ADMINISTRATIVELY_PROHIBITED


class _DirectorySFTP(paramiko.SFTPServerInterface):
    """Read-only SFTP view of a local directory."""

    def __init__(self, server, *args, root: str, **kwargs):
        super().__init__(server, *args, **kwargs)
        self._root = root

    def _local(self, path: str) -> str:
        return os.path.join(self._root, self.canonicalize(path).lstrip("/"))

    def list_folder(self, path):
        local = self._local(path)
        try:
            entries = []
            for name in os.listdir(local):
                attr = paramiko.SFTPAttributes.from_stat(
                    os.stat(os.path.join(local, name))
                )
                attr.filename = name
                entries.append(attr)
        except OSError as exc:
            return paramiko.SFTPServer.convert_errno(exc.errno)
        return entries

    def stat(self, path):
        try:
            return paramiko.SFTPAttributes.from_stat(os.stat(self._local(path)))
        except OSError as exc:
            return paramiko.SFTPServer.convert_errno(exc.errno)

    lstat = stat

    def open(self, path, flags, attr):
        try:
            readfile = open(self._local(path), "rb")  # noqa: SIM115
        except OSError as exc:
            return paramiko.SFTPServer.convert_errno(exc.errno)
        handle = paramiko.SFTPHandle(flags)
        handle.readfile = readfile
        return handle


@dataclass
class SFTPServerInfo:
    host: str
    port: int
    root: Path
    username: str
    password: str
    client_key: paramiko.RSAKey

    def private_key_text(self, passphrase: str | None = None) -> str:
        buffer = io.StringIO()
        self.client_key.write_private_key(buffer, password=passphrase)
        return buffer.getvalue()


class _LocalSFTPServer:
    def __init__(self, info: SFTPServerInfo, listener: socket.socket):
        self._info = info
        self._listener = listener
        self._host_key = paramiko.RSAKey.generate(2048)
        self._transports: list[paramiko.Transport] = []
        self._thread = threading.Thread(target=self._serve, daemon=True)

    def start(self) -> None:
        self._thread.start()

    def _serve(self) -> None:
        while True:
            try:
                conn, _ = self._listener.accept()
            except OSError:
                return
            transport = paramiko.Transport(conn)
            transport.add_server_key(self._host_key)
            transport.set_subsystem_handler(
                "sftp", paramiko.SFTPServer, _DirectorySFTP, root=str(self._info.root)
            )
            server = _SSHServer(
                self._info.username, self._info.password, self._info.client_key
            )
            try:
                transport.start_server(server=server)
            except (paramiko.SSHException, EOFError, OSError):
                transport.close()
                continue
            self._transports.append(transport)

    def close(self) -> None:
        self._listener.close()
        for transport in self._transports:
            transport.close()


@pytest.fixture(scope="session")
def sftp_server(tmp_path_factory) -> Generator[SFTPServerInfo]:
    """A real SFTP server on localhost serving a temporary directory."""
    root = tmp_path_factory.mktemp("sftp-root")
    listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    listener.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
    listener.bind(("127.0.0.1", 0))
    listener.listen(16)

    info = SFTPServerInfo(
        host="127.0.0.1",
        port=listener.getsockname()[1],
        root=root,
        username="viewer",
        password="hunter2",
        client_key=paramiko.RSAKey.generate(2048),
    )
    server = _LocalSFTPServer(info, listener)
    server.start()
    yield info
    server.close()


@pytest.fixture
def sftp_config(sftp_server: SFTPServerInfo) -> ConnectionConfig:
    return ConnectionConfig(
        host=sftp_server.host,
        port=sftp_server.port,
        username=sftp_server.username,
        password=sftp_server.password,
    )
