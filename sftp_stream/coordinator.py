from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from functools import partial
from typing import TYPE_CHECKING

import anyio
from anyio import to_thread

from .connector import list_videos, open_session
from .errors import ConfigurationMissingError, InternalLockError, StreamError
from .metrics import CONFIG_GENERATION, WORKERS_STARTED
from .settings import StreamSettings
from .worker import ReadRequest, ResourceWorker, ResponseSink

if TYPE_CHECKING:
    from collections.abc import Iterator

    from anyio.abc import TaskGroup

    from .connector import Connector, RemoteSession
    from .models import ConnectionConfig, StreamResponse

LOG = logging.getLogger("sftp_stream.coordinator")


@dataclass(frozen=True)
class WorkerRegistration:
    remote_path: str
    generation: int
    worker: ResourceWorker


class StreamCoordinator:
    """Routes stream reads to one worker per remote path.

    Holds the active connection configuration and its generation counter.
    Replacing the configuration bumps the generation and shuts down every
    registered worker; registrations from an older generation are never
    reused.

    Use as an async context manager: workers live in a task group that exists
    only while the coordinator is entered.
    """

    def __init__(
        self,
        settings: StreamSettings | None = None,
        connector: Connector | None = None,
    ):
        self._settings = settings or StreamSettings()
        self._connector = connector or partial(
            open_session, timeout=self._settings.connect_timeout
        )
        self._lock = threading.Lock()
        self._config: ConnectionConfig | None = None
        self._generation = 0
        self._workers: dict[str, WorkerRegistration] = {}
        self._task_group: TaskGroup | None = None
        self.workers_started = 0

    async def __aenter__(self) -> StreamCoordinator:
        task_group = anyio.create_task_group()
        await task_group.__aenter__()
        self._task_group = task_group
        LOG.info("stream coordinator ready")
        return self

    async def __aexit__(self, *exc_info: object) -> bool | None:
        task_group = self._task_group
        assert task_group is not None
        self.shutdown_workers()
        try:
            return await task_group.__aexit__(*exc_info)
        finally:
            self._task_group = None

    @property
    def settings(self) -> StreamSettings:
        return self._settings

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def active_config(self) -> ConnectionConfig | None:
        return self._config

    @property
    def worker_count(self) -> int:
        return len(self._workers)

    def registration(self, remote_path: str) -> WorkerRegistration | None:
        return self._workers.get(remote_path)

    @contextmanager
    def _locked(self) -> Iterator[None]:
        """Hold the state lock, giving up after ``lock_timeout``.

        Callers run on the event loop thread and never await while holding
        the lock, so it is only ever contended by foreign threads. Do not
        take it from worker threads: a wait here stalls the whole loop.
        """
        if not self._lock.acquire(timeout=self._settings.lock_timeout):
            raise InternalLockError
        try:
            yield
        finally:
            self._lock.release()

    def set_active_config(self, config: ConnectionConfig) -> int:
        """Replace the active configuration and retire every worker.

        Returns:
            The new generation.
        """
        with self._locked():
            self._config = config
            self._generation += 1
            generation = self._generation
            retired = list(self._workers.values())
            self._workers.clear()
            for registration in retired:
                registration.worker.shutdown()
        CONFIG_GENERATION.set(generation)
        LOG.info(
            "active configuration set to %s (generation %d, retired %d workers)",
            config.describe(),
            generation,
            len(retired),
        )
        return generation

    def shutdown_workers(self) -> None:
        with self._locked():
            retired = list(self._workers.values())
            self._workers.clear()
            for registration in retired:
                registration.worker.shutdown()
        if retired:
            LOG.info("shut down %d workers", len(retired))

    async def list_remote_files(self, config: ConnectionConfig, folder: str) -> list[str]:
        """List the video files in ``folder`` and make ``config`` active."""
        with self._locked():
            changed = config != self._config
        if changed:
            self.set_active_config(config)

        def _list() -> list[str]:
            session: RemoteSession = self._connector(config)
            with session:
                return list_videos(session, folder, self._settings.video_extensions)

        files = await to_thread.run_sync(_list, limiter=anyio.CapacityLimiter(1))
        LOG.info("listed %d videos in %r on %s", len(files), folder, config.describe())
        return files

    async def stream_read(
        self, remote_path: str, range_header: str | None = None, *, head: bool = False
    ) -> StreamResponse:
        """Fetch one byte window of ``remote_path`` through its worker.

        With ``head`` set the worker answers from the cached size and the
        response carries headers only.
        """
        sink = ResponseSink()
        try:
            worker = self._route(remote_path)
            worker.submit(ReadRequest(range_header=range_header, sink=sink, head=head))
        except StreamError as error:
            LOG.warning("stream read for %s rejected: %s", remote_path, error.message)
            return error.to_response()
        return await sink.wait()

    def _route(self, remote_path: str) -> ResourceWorker:
        with self._locked():
            config = self._config
            generation = self._generation
            if config is None:
                raise ConfigurationMissingError

            registration = self._workers.get(remote_path)
            if registration is not None and self._reusable(registration, generation):
                LOG.debug("routing %s to existing worker", remote_path)
                return registration.worker
            if registration is not None:
                registration.worker.shutdown()

            worker = ResourceWorker(
                remote_path,
                config,
                generation,
                self._connector,
                chunk_size=self._settings.default_chunk_size,
                mailbox_size=self._settings.mailbox_size,
            )
            self._spawn(worker)
            self._workers[remote_path] = WorkerRegistration(
                remote_path=remote_path, generation=generation, worker=worker
            )
        return worker

    def _reusable(self, registration: WorkerRegistration, generation: int) -> bool:
        if registration.generation != generation:
            return False
        if self._settings.evict_failed_workers and registration.worker.failed:
            LOG.info("evicting failed worker for %s", registration.remote_path)
            return False
        return True

    def _spawn(self, worker: ResourceWorker) -> None:
        if self._task_group is None:
            msg = "Stream coordinator is not running."
            raise StreamError(msg)
        self._task_group.start_soon(
            worker.run, name=f"stream-worker:{worker.remote_path}"
        )
        self.workers_started += 1
        WORKERS_STARTED.inc()
