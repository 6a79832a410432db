from __future__ import annotations

import contextlib
import enum
import logging
from dataclasses import dataclass
from functools import partial
from typing import TYPE_CHECKING, Any

import anyio
from anyio import to_thread

from .errors import StreamError, WorkerBusyError, WorkerUnavailableError
from .responder import build_head_response, build_partial_response
from .settings import DEFAULT_CHUNK_SIZE

if TYPE_CHECKING:
    from collections.abc import Callable

    from anyio import CapacityLimiter

    from .connector import Connector, RemoteFile, RemoteSession
    from .models import ConnectionConfig, StreamResponse

LOG = logging.getLogger("sftp_stream.worker")


async def _run_sync(
    func: Callable[..., Any], /, *args: Any, limiter: CapacityLimiter | None = None
) -> Any:
    return await to_thread.run_sync(func, *args, limiter=limiter)


class WorkerState(str, enum.Enum):
    STARTING = "starting"
    SERVING = "serving"
    FAILED = "failed"
    STOPPED = "stopped"


class ResponseSink:
    """Single-use slot through which a worker hands back one response."""

    def __init__(self) -> None:
        self._event = anyio.Event()
        self._response: StreamResponse | None = None

    @property
    def done(self) -> bool:
        return self._event.is_set()

    def fulfil(self, response: StreamResponse) -> None:
        if self._event.is_set():
            msg = "response already delivered"
            raise RuntimeError(msg)
        self._response = response
        self._event.set()

    async def wait(self) -> StreamResponse:
        await self._event.wait()
        assert self._response is not None
        return self._response


@dataclass
class ReadRequest:
    range_header: str | None
    sink: ResponseSink
    head: bool = False


class _Shutdown:
    def __repr__(self) -> str:
        return "SHUTDOWN"


SHUTDOWN = _Shutdown()


def _stopped_response() -> StreamResponse:
    return WorkerUnavailableError("Stream worker stopped.").to_response()


class ResourceWorker:
    """Owns one remote file handle and serves reads against it in order.

    The worker is bound to the configuration and generation it was created
    with. It connects lazily inside :meth:`run`, so creating one never does
    network I/O.
    """

    def __init__(
        self,
        remote_path: str,
        config: ConnectionConfig,
        generation: int,
        connector: Connector,
        *,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        mailbox_size: int = 32,
    ):
        self.remote_path = remote_path
        self.generation = generation
        self.state = WorkerState.STARTING
        self._config = config
        self._connector = connector
        self._chunk_size = chunk_size
        # Own thread slot, separate from the shared default pool.
        self._limiter = anyio.CapacityLimiter(1)
        self._send, self._receive = anyio.create_memory_object_stream(
            max_buffer_size=mailbox_size
        )
        self._session: RemoteSession | None = None
        self._handle: RemoteFile | None = None
        self._total_size = 0

    def __repr__(self) -> str:
        return (
            f"<ResourceWorker path={self.remote_path!r} "
            f"generation={self.generation} state={self.state.value}>"
        )

    @property
    def failed(self) -> bool:
        return self.state is WorkerState.FAILED

    @property
    def total_size(self) -> int:
        return self._total_size

    def submit(self, request: ReadRequest) -> None:
        """Queue a read without waiting for mailbox space."""
        try:
            self._send.send_nowait(request)
        except anyio.WouldBlock as exc:
            raise WorkerBusyError from exc
        except (anyio.ClosedResourceError, anyio.BrokenResourceError) as exc:
            raise WorkerUnavailableError from exc

    def shutdown(self) -> None:
        """Ask the worker to stop once the requests queued so far are served."""
        with contextlib.suppress(
            anyio.WouldBlock, anyio.ClosedResourceError, anyio.BrokenResourceError
        ):
            self._send.send_nowait(SHUTDOWN)
        self._send.close()

    async def run(self) -> None:
        LOG.info(
            "starting worker for %s (generation %d)", self.remote_path, self.generation
        )
        try:
            error = await self._start()
            if error is None:
                self.state = WorkerState.SERVING
                await self._serve()
            else:
                self.state = WorkerState.FAILED
                LOG.warning(
                    "worker for %s failed to start: %s", self.remote_path, error.message
                )
                await self._drain(error)
        finally:
            self.state = WorkerState.STOPPED
            self._reject_pending()
            self._receive.close()
            with anyio.CancelScope(shield=True):
                await self._close()
            LOG.info("stopped worker for %s", self.remote_path)

    async def _start(self) -> StreamError | None:
        try:
            self._session = await _run_sync(
                self._connector, self._config, limiter=self._limiter
            )
            self._total_size = await _run_sync(
                self._session.stat_size, self.remote_path, limiter=self._limiter
            )
            self._handle = await _run_sync(
                self._session.open, self.remote_path, limiter=self._limiter
            )
        except StreamError as error:
            return error
        except Exception as exc:
            LOG.exception("unexpected error starting worker for %s", self.remote_path)
            return StreamError(f"Failed to start stream worker: {exc}")
        LOG.debug("opened %s (%d bytes)", self.remote_path, self._total_size)
        return None

    async def _serve(self) -> None:
        async for message in self._receive:
            if message is SHUTDOWN:
                LOG.debug("shutdown received for %s", self.remote_path)
                return
            response = None
            try:
                response = await _run_sync(
                    partial(self._respond, message.range_header, head=message.head),
                    limiter=self._limiter,
                )
            finally:
                message.sink.fulfil(response or _stopped_response())

    async def _drain(self, error: StreamError) -> None:
        async for message in self._receive:
            if message is SHUTDOWN:
                return
            message.sink.fulfil(error.to_response())

    def _respond(
        self, range_header: str | None, *, head: bool = False
    ) -> StreamResponse:
        assert self._handle is not None
        try:
            if head:
                return build_head_response(
                    self.remote_path, self._total_size, range_header, self._chunk_size
                )
            return build_partial_response(
                self._handle,
                self.remote_path,
                self._total_size,
                range_header,
                self._chunk_size,
            )
        except StreamError as error:
            LOG.warning("read failed for %s: %s", self.remote_path, error.message)
            return error.to_response()
        except Exception as exc:
            LOG.exception("unexpected read failure for %s", self.remote_path)
            return StreamError(f"Failed to read remote file: {exc}").to_response()

    def _reject_pending(self) -> None:
        while True:
            try:
                message = self._receive.receive_nowait()
            except (anyio.WouldBlock, anyio.EndOfStream, anyio.ClosedResourceError):
                return
            if isinstance(message, ReadRequest):
                message.sink.fulfil(_stopped_response())

    async def _close(self) -> None:
        handle, self._handle = self._handle, None
        session, self._session = self._session, None
        if handle is not None:
            try:
                await _run_sync(handle.close, limiter=self._limiter)
            except Exception:
                LOG.debug("error closing %s", self.remote_path, exc_info=True)
        if session is not None:
            try:
                await _run_sync(session.close, limiter=self._limiter)
            except Exception:
                LOG.debug("error closing session for %s", self.remote_path, exc_info=True)
