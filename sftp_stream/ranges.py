from __future__ import annotations

from .models import ServeWindow
from .settings import DEFAULT_CHUNK_SIZE


def _parse_offset(text: str) -> int:
    text = text.strip()
    if not (text.isascii() and text.isdigit()):
        msg = f"invalid byte offset {text!r}"
        raise ValueError(msg)
    return int(text)


def parse_range_header(value: str | None, total_size: int) -> tuple[int, int] | None:
    """Resolve a single ``bytes=start-end`` range against ``total_size``.

    Returns the inclusive ``(start, end)`` window, or ``None`` when the header
    cannot be used. An omitted end means "to the end of the file" and ends
    past the last byte are clamped.
    """
    if not value:
        return None
    value = value.strip()
    if not value.startswith("bytes="):
        return None

    byte_range = value[len("bytes=") :].strip()
    start_str, _, end_str = byte_range.partition("-")
    try:
        start = _parse_offset(start_str)
        end = _parse_offset(end_str) if end_str.strip() else total_size - 1
    except ValueError:
        return None

    if start > end or start >= total_size:
        return None
    return start, min(end, total_size - 1)


def resolve_window(
    value: str | None, total_size: int, chunk_size: int = DEFAULT_CHUNK_SIZE
) -> ServeWindow:
    """Pick the window to serve, falling back to the leading chunk."""
    parsed = parse_range_header(value, total_size)
    if parsed is None:
        return ServeWindow(start=0, end=min(chunk_size, total_size) - 1)
    start, end = parsed
    return ServeWindow(start=start, end=end)
