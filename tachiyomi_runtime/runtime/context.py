"""
Isolated execution contexts

A context owns one worker loop (see ``worker.serve``) and moves messages
between it and the caller. ``ProcessContext`` runs the loop in a child
process with no shared memory; ``ThreadContext`` runs it on a dedicated
thread in the caller's process.
"""
from __future__ import annotations

import itertools
import logging
import multiprocessing
import queue
import threading
from typing import Any, Callable, Optional

from ..config import RuntimeConfig
from .worker import HostFactory, create_default_host, serve

logger = logging.getLogger(__name__)

ReplyHandler = Callable[[dict[str, Any]], None]
ExitHandler = Callable[[Optional[int]], None]

# How often the reply listener checks whether the child is still alive
_POLL_INTERVAL_S = 0.1

_context_ids = itertools.count(1)


class ExecutionContext:
    """
    Base class for isolated execution contexts.

    Lifecycle: ``start(on_reply)`` once, ``send(message)`` any number of
    times, ``close()`` once or more. Replies may be delivered on any thread.
    """

    def __init__(
        self,
        host_factory: HostFactory = create_default_host,
        config: Optional[RuntimeConfig] = None,
        label: str = "extension",
    ):
        self.host_factory = host_factory
        self.config = config or RuntimeConfig.default()
        self.name = f"tachiyomi-{label}-{next(_context_ids)}"
        self.closed = False

    def start(self, on_reply: ReplyHandler, on_exit: Optional[ExitHandler] = None) -> None:
        raise NotImplementedError

    def send(self, message: dict[str, Any]) -> None:
        raise NotImplementedError

    def close(self) -> None:
        raise NotImplementedError


class ThreadContext(ExecutionContext):
    """Runs the worker loop on a daemon thread fed by a queue"""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._inbox: queue.Queue = queue.Queue()
        self._thread: threading.Thread | None = None

    def start(self, on_reply: ReplyHandler, on_exit: Optional[ExitHandler] = None) -> None:
        def run() -> None:
            try:
                serve(self._inbox.get, on_reply, self.host_factory, self.config)
            except Exception as e:
                logger.error(f"Worker thread {self.name} crashed: {e}", exc_info=True)
            if on_exit is not None and not self.closed:
                on_exit(None)

        self._thread = threading.Thread(target=run, name=self.name, daemon=True)
        self._thread.start()
        logger.debug(f"Started worker thread {self.name}")

    def send(self, message: dict[str, Any]) -> None:
        self._inbox.put(message)

    def close(self) -> None:
        # The thread finishes its in-flight call, then sees the stop marker
        if self.closed:
            return
        self.closed = True
        dropped = 0
        while True:
            try:
                self._inbox.get_nowait()
            except queue.Empty:
                break
            dropped += 1
        self._inbox.put(None)
        logger.debug(f"Stopping worker thread {self.name} ({dropped} queued message(s) dropped)")

    def join(self, timeout: float | None = None) -> bool:
        """Wait for the worker thread to exit; True if it did"""
        if self._thread is None:
            return True
        self._thread.join(timeout)
        return not self._thread.is_alive()


def _process_main(inbox, outbox, host_factory: HostFactory, config: RuntimeConfig) -> None:
    serve(inbox.get, outbox.put, host_factory, config)


class ProcessContext(ExecutionContext):
    """
    Runs the worker loop in a child process.

    ``host_factory`` must be picklable (a module-level function) under the
    ``spawn`` start method. close() terminates the child; work in flight is
    abandoned.
    """

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        ctx = multiprocessing.get_context(self.config.worker.start_method)
        self._inbox = ctx.Queue()
        self._outbox = ctx.Queue()
        self._process = ctx.Process(
            target=_process_main,
            args=(self._inbox, self._outbox, self.host_factory, self.config),
            name=self.name,
            daemon=True,
        )
        self._stopping = threading.Event()
        self._listener: threading.Thread | None = None

    @property
    def pid(self) -> int | None:
        return self._process.pid

    def start(self, on_reply: ReplyHandler, on_exit: Optional[ExitHandler] = None) -> None:
        self._process.start()
        self._listener = threading.Thread(
            target=self._listen,
            args=(on_reply, on_exit),
            name=f"{self.name}-replies",
            daemon=True,
        )
        self._listener.start()
        logger.debug(f"Started worker process {self.name} (pid {self._process.pid})")

    def _listen(self, on_reply: ReplyHandler, on_exit: Optional[ExitHandler]) -> None:
        while not self._stopping.is_set():
            try:
                message = self._outbox.get(timeout=_POLL_INTERVAL_S)
            except queue.Empty:
                if not self._process.is_alive():
                    if not self._stopping.is_set():
                        logger.warning(
                            f"Worker process {self.name} exited with code {self._process.exitcode}"
                        )
                        if on_exit is not None:
                            on_exit(self._process.exitcode)
                    return
                continue
            except (EOFError, OSError, ValueError):
                # Queue closed underneath the poll
                return
            on_reply(message)

    def send(self, message: dict[str, Any]) -> None:
        self._inbox.put(message)

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._stopping.set()

        if self._process.pid is not None:
            if self._process.is_alive():
                self._process.terminate()
            self._process.join(self.config.worker.join_timeout_s)
            if self._process.is_alive():
                logger.warning(f"Worker process {self.name} did not exit; killing it")
                self._process.kill()

        for q in (self._inbox, self._outbox):
            q.cancel_join_thread()
            q.close()
        logger.debug(f"Stopped worker process {self.name}")


def create_context(
    config: Optional[RuntimeConfig] = None,
    host_factory: HostFactory = create_default_host,
    label: str = "extension",
) -> ExecutionContext:
    """Create the context selected by ``config.worker.isolation``."""
    config = config or RuntimeConfig.default()
    if config.worker.isolation == "thread":
        return ThreadContext(host_factory, config, label)
    if config.worker.isolation == "process":
        return ProcessContext(host_factory, config, label)
    raise ValueError(f"Unknown isolation mode: {config.worker.isolation}")
