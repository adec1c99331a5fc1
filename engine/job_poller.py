"""Start a server-side generation job and follow it to a terminal state."""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, List, Optional

from loguru import logger

from config.settings import settings
from engine.errors import JobTimeoutError
from engine.observable import Listeners
from models.job import JobState, JobStatus

StartJob = Callable[[Optional[List[str]]], Awaitable[Any]]
FetchStatus = Callable[[], Awaitable[JobStatus]]


class JobPoller:
    """
    ``idle ──start──▶ running ──poll: terminal──▶ done | error``

    A run may be restarted from ``done`` or ``error``; ``start`` while
    ``running`` does nothing. The status endpoint is called every *interval*
    seconds and at most *max_attempts* times per run, after which the poller
    gives up with a :class:`JobTimeoutError`.
    """

    def __init__(
        self,
        start_fn: StartJob,
        status_fn: FetchStatus,
        interval: Optional[float] = None,
        max_attempts: Optional[int] = None,
        done_message_ttl: Optional[float] = None,
        name: str = "job",
    ) -> None:
        self._start_fn = start_fn
        self._status_fn = status_fn
        self._interval = settings.job_poll_interval_seconds if interval is None else interval
        self._max_attempts = settings.job_poll_max_attempts if max_attempts is None else max_attempts
        self._done_message_ttl = (
            settings.job_done_message_ttl_seconds if done_message_ttl is None else done_message_ttl
        )
        if self._max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self._name = name
        self._status = JobStatus()
        self._error: Optional[Exception] = None
        self._task: Optional[asyncio.Task] = None
        self._clear_handle: Optional[asyncio.TimerHandle] = None
        self._run = 0
        self._changed = Listeners(f"{name} status")
        self._done = Listeners(f"{name} done")

    # ── State ─────────────────────────────────────────────────────────────────

    @property
    def status(self) -> JobStatus:
        return self._status

    @property
    def state(self) -> JobState:
        return self._status.state

    @property
    def running(self) -> bool:
        return self._status.state is JobState.RUNNING

    @property
    def error(self) -> Optional[Exception]:
        """The exception that moved the last run to ``error``, if any."""
        return self._error

    def subscribe(self, callback: Callable[[JobStatus], Any]) -> Callable[[], None]:
        return self._changed.connect(callback)

    def on_done(self, callback: Callable[[JobStatus], Any]) -> Callable[[], None]:
        """``callback(status)`` whenever a run reaches ``done``."""
        return self._done.connect(callback)

    # ── Public API ────────────────────────────────────────────────────────────

    async def start(self, targets: Optional[List[str]] = None) -> JobStatus:
        """Kick off a run for *targets* (all when omitted) and begin polling."""
        if self.running:
            logger.debug(f"{self._name}: already running, ignoring start")
            return self._status
        self._run += 1
        run = self._run
        self._error = None
        self._cancel_clear()
        self._set(JobStatus(state=JobState.RUNNING, message="Starting..."))
        logger.info(f"{self._name}: starting ({len(targets) if targets else 'all'} targets)")

        try:
            started = await self._start_fn(list(targets) if targets else None)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            if run == self._run:
                self._fail(exc)
            return self._status

        if run != self._run:
            return self._status
        if isinstance(started, JobStatus) and started.state.is_terminal:
            self._finish(started)
        else:
            if isinstance(started, JobStatus) and started.message:
                self._set(self._status.model_copy(update={"message": started.message}))
            self._spawn(run)
        return self._status

    async def sync(self) -> JobStatus:
        """Read the current status once and resume polling if the job is running."""
        try:
            status = await self._status_fn()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self._fail(exc)
            return self._status
        if status.state is JobState.RUNNING:
            if self.running and self._task is not None and not self._task.done():
                return self._status
            self._run += 1
            self._set(status)
            self._spawn(self._run)
        elif status.state is JobState.DONE:
            # A run that finished while nobody was watching: adopt it without a refresh.
            self._set(self._with_done_message(status))
        else:
            self._set(status)
        return self._status

    async def wait(self) -> JobStatus:
        """Wait until the current run stops polling."""
        while self._task is not None and not self._task.done():
            await asyncio.wait({self._task})
        return self._status

    def close(self) -> None:
        self._run += 1
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._cancel_clear()
        self._changed.clear()
        self._done.clear()

    # ── Internal helpers ──────────────────────────────────────────────────────

    def _spawn(self, run: int) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = asyncio.get_running_loop().create_task(self._poll(run))

    async def _poll(self, run: int) -> None:
        attempts = 0
        while attempts < self._max_attempts:
            await asyncio.sleep(self._interval)
            if run != self._run:
                return
            attempts += 1
            try:
                status = await self._status_fn()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                if run == self._run:
                    self._fail(exc, attempts=attempts)
                return
            if run != self._run:
                return
            status = status.model_copy(update={"attempts": attempts})
            logger.debug(
                f"{self._name}: poll {attempts}/{self._max_attempts} → {status.state.value}"
            )
            if status.state is JobState.RUNNING:
                self._set(status)
                continue
            self._finish(status)
            return

        self._fail(
            JobTimeoutError(
                f"{self._name} did not finish after {self._max_attempts} status checks"
            ),
            attempts=attempts,
        )

    def _finish(self, status: JobStatus) -> None:
        if status.state is JobState.DONE:
            status = self._with_done_message(status)
            self._set(status)
            logger.success(f"{self._name}: done ({status.message or 'nothing to do'})")
            self._done.emit(status)
            return
        if status.state is JobState.ERROR:
            logger.warning(f"{self._name}: failed: {status.message}")
        else:
            logger.info(f"{self._name}: stopped polling, server reports {status.state.value}")
        self._set(status)

    def _with_done_message(self, status: JobStatus) -> JobStatus:
        if not status.total_count:
            return status.model_copy(update={"message": None})
        if status.message and self._done_message_ttl > 0:
            self._cancel_clear()
            self._clear_handle = asyncio.get_running_loop().call_later(
                self._done_message_ttl, self._clear_done_message, self._run
            )
        return status

    def _clear_done_message(self, run: int) -> None:
        self._clear_handle = None
        if run == self._run and self._status.state is JobState.DONE and self._status.message:
            self._set(self._status.model_copy(update={"message": None}))

    def _cancel_clear(self) -> None:
        if self._clear_handle is not None:
            self._clear_handle.cancel()
            self._clear_handle = None

    def _fail(self, exc: Exception, attempts: Optional[int] = None) -> None:
        self._error = exc
        message = str(exc) or exc.__class__.__name__
        logger.warning(f"{self._name}: {message}")
        update: dict = {"state": JobState.ERROR, "message": message}
        if attempts is not None:
            update["attempts"] = attempts
        self._set(self._status.model_copy(update=update))

    def _set(self, status: JobStatus) -> None:
        self._status = status
        self._changed.emit(status)
