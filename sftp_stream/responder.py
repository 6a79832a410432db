from __future__ import annotations

import logging
import posixpath
from typing import TYPE_CHECKING

from .errors import RemoteIOError
from .models import StreamResponse
from .ranges import resolve_window
from .settings import DEFAULT_CHUNK_SIZE

if TYPE_CHECKING:
    from collections.abc import Iterable

    from .connector import RemoteFile
    from .models import ServeWindow

LOG = logging.getLogger("sftp_stream.responder")

CONTENT_TYPES = {
    "mp4": "video/mp4",
    "m4v": "video/mp4",
    "mov": "video/quicktime",
    "webm": "video/webm",
    "mkv": "video/x-matroska",
    "avi": "video/x-msvideo",
}
FALLBACK_CONTENT_TYPE = "application/octet-stream"

# Upper bound for a single read call against the remote handle.
READ_BLOCK_SIZE = 256 * 1024


def _extension(remote_path: str) -> str:
    return posixpath.splitext(remote_path)[1].lstrip(".").lower()


def content_type_for(remote_path: str) -> str:
    return CONTENT_TYPES.get(_extension(remote_path), FALLBACK_CONTENT_TYPE)


def is_video_path(remote_path: str, extensions: Iterable[str]) -> bool:
    return _extension(remote_path) in {ext.lower() for ext in extensions}


def read_exact(handle: RemoteFile, start: int, length: int) -> bytes:
    """Seek to ``start`` and read exactly ``length`` bytes.

    Raises:
        RemoteIOError: on seek or read failure, or if the file ends early.
    """
    try:
        handle.seek(start)
    except (OSError, EOFError) as exc:
        msg = f"Failed to seek remote file: {exc}"
        raise RemoteIOError(msg) from exc

    parts: list[bytes] = []
    remaining = length
    while remaining > 0:
        try:
            chunk = handle.read(min(remaining, READ_BLOCK_SIZE))
        except (OSError, EOFError) as exc:
            msg = f"Failed to read remote file: {exc}"
            raise RemoteIOError(msg) from exc
        if not chunk:
            got = length - remaining
            msg = (
                f"Failed to read remote file: short read at byte {start + got} "
                f"({got} of {length} bytes)"
            )
            raise RemoteIOError(msg)
        parts.append(chunk)
        remaining -= len(chunk)
    return b"".join(parts)


def _window_headers(
    remote_path: str, window: ServeWindow, total_size: int
) -> dict[str, str]:
    return {
        "Content-Type": content_type_for(remote_path),
        "Accept-Ranges": "bytes",
        "Content-Length": str(window.length),
        "Content-Range": window.content_range(total_size),
        "Cache-Control": "no-store",
    }


def _resolve(
    remote_path: str, total_size: int, range_header: str | None, chunk_size: int
) -> ServeWindow:
    if total_size <= 0:
        msg = "Remote file is empty or size unavailable."
        raise RemoteIOError(msg)
    window = resolve_window(range_header, total_size, chunk_size)
    LOG.debug(
        "serving %s bytes %d-%d/%d (range=%r)",
        remote_path,
        window.start,
        window.end,
        total_size,
        range_header,
    )
    return window


def build_partial_response(
    handle: RemoteFile,
    remote_path: str,
    total_size: int,
    range_header: str | None,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> StreamResponse:
    """Serve one contiguous window of ``remote_path`` as a 206 response.

    Requests without a usable range get the leading ``chunk_size`` bytes
    instead of the whole file.
    """
    window = _resolve(remote_path, total_size, range_header, chunk_size)
    body = read_exact(handle, window.start, window.length)
    return StreamResponse(
        status=206, headers=_window_headers(remote_path, window, total_size), body=body
    )


def build_head_response(
    remote_path: str,
    total_size: int,
    range_header: str | None,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> StreamResponse:
    """Headers of the matching :func:`build_partial_response`, without reading."""
    window = _resolve(remote_path, total_size, range_header, chunk_size)
    return StreamResponse(
        status=206, headers=_window_headers(remote_path, window, total_size)
    )
