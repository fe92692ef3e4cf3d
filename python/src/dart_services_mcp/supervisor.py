"""
Restart supervisor for the backend handle.

States: STARTING -> READY <-> RESTARTING, and any state -> TERMINATED.

- At most one restart runs at a time (asyncio.Lock). A restart request
  for a generation that was already replaced is a no-op, so concurrent
  faults on one generation cause a single restart.
- A retired handle may finish its in-flight calls (bounded by
  drain_timeout) before it is shut down; new requests wait for the
  replacement.
- Reinitialization failure is fatal and is never retried.
- A non-zero engine exit is fatal, also when a request fault noticed it
  first. A zero exit is logged. Exits after shutdown began are expected.
"""

import asyncio
import inspect
import logging
from contextlib import asynccontextmanager
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Callable

from .backend import BackendFactory, BackendHandle
from .errors import FatalBackendExit

logger = logging.getLogger(__name__)


FatalCallback = Callable[[FatalBackendExit], Awaitable[None] | None]


class SupervisorState(Enum):
    STARTING = "starting"
    READY = "ready"
    RESTARTING = "restarting"
    TERMINATED = "terminated"


class RestartSupervisor:
    """Owns the current BackendHandle and replaces it as a unit."""

    def __init__(
        self,
        factory: BackendFactory,
        drain_timeout: float = 10.0,
        on_fatal: FatalCallback | None = None,
    ):
        self._factory = factory
        self.drain_timeout = drain_timeout
        self._on_fatal = on_fatal

        self.state = SupervisorState.STARTING
        self.restart_count = 0
        self.fatal_error: FatalBackendExit | None = None

        self._handle: BackendHandle | None = None
        self._ready = asyncio.Event()
        self._restart_lock = asyncio.Lock()
        self._watchers: set[asyncio.Task] = set()

    @property
    def handle(self) -> BackendHandle | None:
        return self._handle

    @property
    def generation(self) -> int:
        return self._handle.generation if self._handle else 0

    async def start(self) -> None:
        """Create, initialize and warm up the first backend generation."""
        try:
            self._handle = await self._launch(1)
        except Exception as e:
            logger.critical(f"Backend failed to start: {e}")
            self.state = SupervisorState.TERMINATED
            self.fatal_error = FatalBackendExit(f"Backend failed to start: {e}")
            self._ready.set()
            raise

        self.state = SupervisorState.READY
        self._ready.set()
        logger.info(f"Backend ready (generation {self._handle.generation})")

    async def stop(self) -> None:
        """Normal shutdown: drain, stop the engines, refuse new requests."""
        async with self._restart_lock:
            if self.state is SupervisorState.TERMINATED:
                return

            self.state = SupervisorState.TERMINATED
            self._ready.set()

            handle = self._handle
            if handle is not None:
                handle.retire()
                await self._drain(handle)
                await self._shutdown_quietly(handle)

        for task in list(self._watchers):
            task.cancel()

    @asynccontextmanager
    async def lease(self) -> AsyncIterator[BackendHandle]:
        """
        Pin the current handle for the duration of one backend call.

        Waits while the backend is starting or restarting.

        Raises:
            FatalBackendExit: If the service has been terminated
        """
        while True:
            await self._ready.wait()
            if self.state is SupervisorState.TERMINATED:
                raise self._terminated_error()
            if self.state is SupervisorState.READY:
                break

        handle = self._handle
        handle.acquire()
        try:
            yield handle
        finally:
            handle.release()

    async def restart(self, generation: int) -> bool:
        """
        Replace the backend after a fault observed on `generation`.

        Returns:
            True if this call performed the restart
        """
        async with self._restart_lock:
            if self.state is SupervisorState.TERMINATED:
                return False

            current = self._handle
            if current is None or current.generation != generation:
                logger.info(f"Backend generation {generation} already replaced, not restarting")
                return False

            logger.warning(f"Restarting backend (generation {generation})")
            self.state = SupervisorState.RESTARTING
            self._ready.clear()

            current.retire()
            await self._drain(current)

            # The fault may have been the engine dying; that is fatal, not restartable
            code = current.exit_code
            if code is not None and code != 0 and not current.stopping:
                logger.critical(f"Analysis engine exited, code: {code}")
                await self._terminate(self._exit_error(code))
            if self.state is SupervisorState.TERMINATED:
                return False

            await self._shutdown_quietly(current)
            logger.info(f"Backend generation {generation} shut down")

            try:
                handle = await self._launch(generation + 1)
            except Exception as e:
                logger.critical(f"Backend reinitialization failed: {e}", exc_info=True)
                await self._terminate(FatalBackendExit(f"Backend restart failed: {e}"))
                return False

            if self.state is SupervisorState.TERMINATED:
                handle.retire()
                await self._shutdown_quietly(handle)
                return False

            self._handle = handle
            self.restart_count += 1
            self.state = SupervisorState.READY
            self._ready.set()
            logger.warning(f"Restart complete (generation {self._handle.generation})")
            return True

    def get_status(self) -> dict[str, Any]:
        handle = self._handle
        return {
            "state": self.state.value,
            "generation": self.generation,
            "restart_count": self.restart_count,
            "in_flight": handle.in_flight if handle else 0,
            "engine_version": handle.engine_version if handle else None,
            "fatal_error": self.fatal_error.message if self.fatal_error else None,
        }

    async def _launch(self, generation: int) -> BackendHandle:
        handle = self._factory(generation)
        try:
            await handle.start()
            await handle.warmup()
        except Exception:
            handle.retire()
            await self._shutdown_quietly(handle)
            raise

        task = asyncio.create_task(self._watch_exit(handle))
        self._watchers.add(task)
        task.add_done_callback(self._watchers.discard)
        return handle

    async def _watch_exit(self, handle: BackendHandle) -> None:
        code = await handle.wait_for_exit()

        if handle.stopping or self.state is SupervisorState.TERMINATED:
            logger.info(f"Backend generation {handle.generation} stopped, code: {code}")
            return

        if code != 0:
            logger.critical(f"Analysis engine exited, code: {code}")
            await self._terminate(self._exit_error(code))
        else:
            logger.warning(f"Analysis engine exited normally (generation {handle.generation})")

    async def _drain(self, handle: BackendHandle) -> None:
        try:
            await asyncio.wait_for(handle.wait_drained(), timeout=self.drain_timeout)
        except asyncio.TimeoutError:
            logger.warning(
                f"{handle.in_flight} request(s) still running on backend generation "
                f"{handle.generation} after {self.drain_timeout}s; shutting down anyway"
            )

    async def _shutdown_quietly(self, handle: BackendHandle) -> None:
        try:
            await handle.shutdown()
        except Exception as e:
            logger.warning(f"Ignoring error while shutting down backend: {e}")

    async def _terminate(self, error: FatalBackendExit) -> None:
        if self.state is SupervisorState.TERMINATED:
            return

        self.state = SupervisorState.TERMINATED
        self.fatal_error = error
        self._ready.set()

        handle = self._handle
        if handle is not None:
            handle.retire()
            await self._shutdown_quietly(handle)

        if self._on_fatal is not None:
            result = self._on_fatal(error)
            if inspect.isawaitable(result):
                await result

    @staticmethod
    def _exit_error(code: int) -> FatalBackendExit:
        return FatalBackendExit(f"Analysis engine exited with code {code}", exit_code=code)

    def _terminated_error(self) -> FatalBackendExit:
        if self.fatal_error is None:
            return FatalBackendExit("Service is shut down")
        return FatalBackendExit(
            f"Service terminated: {self.fatal_error.message}",
            exit_code=self.fatal_error.exit_code,
        )
