"""Server lifecycle assembled from init/start/stop callables."""

from __future__ import annotations

import enum
import logging
from typing import Any, Awaitable, Callable, Generic, TypeVar

from .logging import get_logger

__all__ = ["Lifecycle", "LifecycleState"]

T = TypeVar("T")


class LifecycleState(str, enum.Enum):
    CREATED = "created"
    INITIALIZING = "initializing"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"
    FAILED = "failed"


class Lifecycle(Generic[T]):
    """Runs ``init`` then ``start`` and always ``stop`` once init produced a state.

    ``init`` builds the application state, ``start`` serves until done, and
    ``stop`` releases what ``init`` acquired.
    """

    def __init__(
        self,
        name: str,
        *,
        init: Callable[[], Awaitable[T]],
        start: Callable[[T], Awaitable[Any]],
        stop: Callable[[T], Awaitable[Any]],
        logger: logging.Logger | None = None,
    ) -> None:
        self.name = name
        self._init = init
        self._start = start
        self._stop = stop
        self._logger = logger or get_logger(__name__)
        self.state = LifecycleState.CREATED

    async def run(self) -> None:
        if self.state is not LifecycleState.CREATED:
            raise RuntimeError(f"Lifecycle '{self.name}' has already run")
        context = {"name": self.name}

        self.state = LifecycleState.INITIALIZING
        self._logger.info("lifecycle.init", extra={"context": context})
        try:
            app_state = await self._init()
        except BaseException:
            self.state = LifecycleState.FAILED
            self._logger.error("lifecycle.init_failed", extra={"context": context})
            raise

        failed = False
        try:
            self.state = LifecycleState.RUNNING
            self._logger.info("lifecycle.start", extra={"context": context})
            await self._start(app_state)
        except BaseException:
            failed = True
            raise
        finally:
            self.state = LifecycleState.STOPPING
            self._logger.info("lifecycle.stop", extra={"context": context})
            try:
                await self._stop(app_state)
            except Exception:
                failed = True
                self._logger.exception("lifecycle.stop_failed", extra={"context": context})
            self.state = LifecycleState.FAILED if failed else LifecycleState.STOPPED
