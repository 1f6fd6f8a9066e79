"""Filesystem watcher feeding the relay pipeline.

Uses the ``watchdog`` library (inotify on Linux). The Observer runs in a
background thread; its handler turns each event into a ChangeNotification
and hands it to an asyncio queue on the event loop, which the pipeline
drains. A supervisor task checks the observer thread and restarts it if it
dies, reporting each death on the same queue as a watch error.
"""

import asyncio
import logging
import os
from collections.abc import AsyncIterator
from pathlib import Path

from watchdog.events import FileSystemEvent, FileSystemEventHandler, FileSystemMovedEvent
from watchdog.observers import Observer

from callrelay.relay.pipeline import RelayPipeline
from callrelay.schemas.relay import ChangeNotification

logger = logging.getLogger(__name__)

OBSERVER_CHECK_SECONDS = 5.0
MAX_OBSERVER_RESTARTS = 3


class WatchSetupError(Exception):
    """Raised when the filesystem watch cannot be started or kept running."""


class ObserverDiedError(Exception):
    """Queued for the pipeline when the observer thread is found dead."""


class RelayEventHandler(FileSystemEventHandler):
    """Forwards file events from the observer thread to the event loop.

    Reacts to ``on_created``, ``on_closed`` (inotify IN_CLOSE_WRITE, the file
    is complete) and ``on_moved`` (atomic rename into place). The same file
    usually produces several of these; the pipeline collapses the repeats.
    """

    def __init__(
        self,
        *,
        loop: asyncio.AbstractEventLoop,
        queue: asyncio.Queue,
    ) -> None:
        super().__init__()
        self._loop = loop
        self._queue = queue

    def _emit(self, event_type: str, path: str | bytes) -> None:
        notification = ChangeNotification(paths=(Path(os.fsdecode(path)),), event_type=event_type)
        self._loop.call_soon_threadsafe(self._queue.put_nowait, notification)

    def on_created(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        self._emit(event.event_type, event.src_path)

    def on_closed(self, event: FileSystemEvent) -> None:
        """Triggered when a file is closed after writing (inotify)."""
        if event.is_directory:
            return
        self._emit(event.event_type, event.src_path)

    def on_moved(self, event: FileSystemMovedEvent) -> None:
        """Files renamed into the tree are announced under their new name."""
        if event.is_directory:
            return
        self._emit(event.event_type, event.dest_path)


async def iter_queue(queue: asyncio.Queue) -> AsyncIterator:
    """Yield queue items forever."""
    while True:
        yield await queue.get()


def start_observer(root: Path, handler: FileSystemEventHandler) -> Observer:
    """Schedule a recursive watch on ``root`` and start the observer thread.

    Raises:
        WatchSetupError: If the root is not a directory or the OS refuses
            the watch (e.g. inotify limits).
    """
    if not root.is_dir():
        raise WatchSetupError(f"Not a directory: {root}")
    observer = Observer()
    try:
        observer.schedule(handler, str(root), recursive=True)
        observer.start()
    except OSError as exc:
        raise WatchSetupError(f"Cannot watch {root}: {exc}") from exc
    return observer


async def scan_existing(root: Path, pipeline: RelayPipeline) -> None:
    """Run every file currently under ``root`` through the pipeline once."""

    async def _walk() -> AsyncIterator[ChangeNotification]:
        for item in sorted(root.rglob("*")):
            if item.is_file():
                yield ChangeNotification(paths=(item,), event_type="scanned")

    await pipeline.run(_walk())


class ObserverSupervisor:
    """Keeps one observer running for ``root``.

    Every ``check_interval`` seconds the observer thread and its emitter
    threads are checked. A dead observer is reported on ``queue`` as an
    ObserverDiedError (the pipeline logs it and keeps going) and replaced.
    Events that happened while it was down are lost. After
    ``max_restarts`` replacements the next death raises WatchSetupError.
    """

    def __init__(
        self,
        root: Path,
        handler: RelayEventHandler,
        queue: asyncio.Queue,
        *,
        check_interval: float = OBSERVER_CHECK_SECONDS,
        max_restarts: int = MAX_OBSERVER_RESTARTS,
    ) -> None:
        self._root = root
        self._handler = handler
        self._queue = queue
        self._check_interval = check_interval
        self._max_restarts = max_restarts
        self.restarts = 0
        self.observer = start_observer(root, handler)

    def is_healthy(self) -> bool:
        if not self.observer.is_alive():
            return False
        return all(emitter.is_alive() for emitter in list(self.observer.emitters))

    async def supervise(self) -> None:
        """Check the observer until cancelled.

        Raises:
            WatchSetupError: If the observer dies more often than allowed, or
                cannot be started again.
        """
        while True:
            await asyncio.sleep(self._check_interval)
            if self.is_healthy():
                continue

            if self.restarts >= self._max_restarts:
                logger.error(
                    "Filesystem observer for %s died after %d restarts; giving up",
                    self._root,
                    self.restarts,
                )
                raise WatchSetupError(f"Filesystem watch on {self._root} keeps failing")

            self.restarts += 1
            self._queue.put_nowait(
                ObserverDiedError(f"Observer for {self._root} died (restart {self.restarts})")
            )
            self.stop()
            self.observer = start_observer(self._root, self._handler)
            logger.warning(
                "Restarted filesystem observer for %s (%d/%d)",
                self._root,
                self.restarts,
                self._max_restarts,
            )

    def stop(self) -> None:
        self.observer.stop()
        self.observer.join()


async def watch_directory(
    root: Path,
    pipeline: RelayPipeline,
    *,
    check_interval: float = OBSERVER_CHECK_SECONDS,
    max_restarts: int = MAX_OBSERVER_RESTARTS,
) -> None:
    """Watch ``root`` recursively and relay pairs until cancelled.

    Raises:
        WatchSetupError: If the watch cannot be started, or the observer
            keeps dying.
    """
    loop = asyncio.get_running_loop()
    queue: asyncio.Queue = asyncio.Queue()

    handler = RelayEventHandler(loop=loop, queue=queue)
    supervisor = ObserverSupervisor(
        root, handler, queue, check_interval=check_interval, max_restarts=max_restarts
    )
    logger.info("Watching %s recursively…", root)

    relay = asyncio.create_task(pipeline.run(iter_queue(queue)), name="relay")
    monitor = asyncio.create_task(supervisor.supervise(), name="observer-supervisor")
    try:
        done, _ = await asyncio.wait({relay, monitor}, return_when=asyncio.FIRST_COMPLETED)
        for task in done:
            task.result()
    except (asyncio.CancelledError, KeyboardInterrupt):
        pass
    finally:
        relay.cancel()
        monitor.cancel()
        await asyncio.gather(relay, monitor, return_exceptions=True)
        supervisor.stop()
        logger.info("Watcher stopped.")
