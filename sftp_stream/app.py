from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from prometheus_client import make_asgi_app
from pydantic import BaseModel

from .addressing import decode_stream_path
from .coordinator import StreamCoordinator
from .errors import RequestDecodeError, StreamError
from .metrics import STREAM_REQUESTS
from .models import ConnectionConfig, StreamResponse
from .settings import load_settings_from_env

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from .settings import StreamSettings


class VideosRequest(BaseModel):
    config: ConnectionConfig
    folder: str = ""


def to_http_response(result: StreamResponse) -> Response:
    return Response(content=result.body, status_code=result.status, headers=result.headers)


def create_app(
    settings: StreamSettings | None = None,
    coordinator: StreamCoordinator | None = None,
) -> FastAPI:
    """Create the streaming ASGI application."""
    if coordinator is None:
        coordinator = StreamCoordinator(settings or load_settings_from_env())

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        async with coordinator:
            yield

    app = FastAPI(title="sftp-stream", lifespan=lifespan)
    app.state.coordinator = coordinator
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["Content-Range", "Accept-Ranges", "Content-Length"],
    )
    app.mount("/metrics", make_asgi_app())

    @app.get("/health", include_in_schema=False)
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.put("/config")
    async def set_config(config: ConnectionConfig) -> dict[str, int]:
        try:
            generation = coordinator.set_active_config(config)
        except StreamError as error:
            raise HTTPException(
                status_code=error.status_code, detail=error.message
            ) from error
        return {"generation": generation}

    @app.post("/videos")
    async def list_videos(body: VideosRequest) -> dict[str, list[str]]:
        try:
            files = await coordinator.list_remote_files(body.config, body.folder)
        except StreamError as error:
            raise HTTPException(
                status_code=error.status_code, detail=error.message
            ) from error
        return {"files": files}

    @app.api_route("/stream/{identifier}", methods=["GET", "HEAD"])
    async def stream(identifier: str, request: Request) -> Response:
        try:
            remote_path = decode_stream_path(identifier)
        except RequestDecodeError as error:
            result = error.to_response()
        else:
            result = await coordinator.stream_read(
                remote_path,
                request.headers.get("range"),
                head=request.method == "HEAD",
            )
        STREAM_REQUESTS.labels(status=str(result.status)).inc()
        return to_http_response(result)

    return app


app = create_app()
