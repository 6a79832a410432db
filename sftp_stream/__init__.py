"""Stream remote SFTP files as HTTP byte ranges."""

from .app import create_app
from .coordinator import StreamCoordinator
from .models import ConnectionConfig, StreamResponse
from .settings import StreamSettings

__all__ = [
    "ConnectionConfig",
    "StreamCoordinator",
    "StreamResponse",
    "StreamSettings",
    "create_app",
]
