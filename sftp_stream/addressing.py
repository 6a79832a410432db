"""Opaque stream identifiers: unpadded URL-safe base64 of the UTF-8 path."""

from __future__ import annotations

import base64
import binascii
import re

from .errors import RequestDecodeError

STREAM_URI_PREFIX = "sshvideo://stream/"

_URLSAFE_ALPHABET = re.compile(r"[A-Za-z0-9_-]*")


def encode_stream_path(remote_path: str) -> str:
    encoded = base64.urlsafe_b64encode(remote_path.encode("utf-8"))
    return encoded.rstrip(b"=").decode("ascii")


def decode_stream_path(identifier: str) -> str:
    """Decode an identifier produced by :func:`encode_stream_path`.

    Raises:
        RequestDecodeError: if the identifier is not valid unpadded URL-safe
            base64 or does not decode to UTF-8.
    """
    if not identifier or not _URLSAFE_ALPHABET.fullmatch(identifier):
        raise RequestDecodeError("Invalid stream path encoding.")
    if len(identifier) % 4 == 1:
        raise RequestDecodeError("Invalid stream path encoding.")

    padded = identifier + "=" * (-len(identifier) % 4)
    try:
        raw = base64.urlsafe_b64decode(padded)
    except (binascii.Error, ValueError) as exc:
        raise RequestDecodeError("Invalid stream path encoding.") from exc

    # Non-zero trailing bits decode leniently; only the canonical form is valid.
    if base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii") != identifier:
        raise RequestDecodeError("Invalid stream path encoding.")

    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise RequestDecodeError("Stream path is not valid UTF-8.") from exc


def parse_stream_uri(uri: str) -> str:
    """Extract and decode the remote path from a ``sshvideo://stream/`` URI."""
    if not uri.startswith(STREAM_URI_PREFIX):
        raise RequestDecodeError("Invalid stream URI.")
    encoded = uri[len(STREAM_URI_PREFIX) :].split("?", 1)[0]
    return decode_stream_path(encoded)
