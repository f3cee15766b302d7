"""
Adaptive polling engine.

The only polling primitive in arcle. Balance and incoming-transfer watchers,
hash resolution, challenge-status fallback, balance reconciliation and bridge
monitoring are all configurations of ``AdaptiveMonitor``.

Cadence rules:
- ``active_interval`` while something changed within ``idle_threshold``
- ``idle_interval`` (3x active by default) after that
- polling suspends after ``pause_after_idle`` without activity, until
  ``mark_activity()`` wakes it
- poll errors back off the interval by ``min(2**errors, 8)`` (capped at
  ``max_backoff``) and pause for ``error_pause`` after
  ``max_consecutive_errors`` failures in a row; they never stop the loop
- ``schedule`` replaces the cadence with fixed offsets from start, for
  expanding-delay patterns
"""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Awaitable, Callable, Hashable
from dataclasses import dataclass
from typing import Any

from arcle.core.logging import get_logger

PollFn = Callable[[], Awaitable[Any]]


@dataclass(frozen=True)
class PollConfig:
    active_interval: float = 5.0
    idle_interval: float | None = None
    idle_threshold: float = 30.0
    pause_after_idle: float | None = 300.0
    max_attempts: int | None = None
    max_duration: float | None = None
    schedule: tuple[float, ...] | None = None
    immediate: bool = True
    max_backoff: float = 60.0
    max_consecutive_errors: int = 5
    error_pause: float = 60.0

    def __post_init__(self) -> None:
        if self.active_interval <= 0:
            raise ValueError("active_interval must be positive")
        if self.max_attempts is not None and self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.schedule is not None and list(self.schedule) != sorted(self.schedule):
            raise ValueError("schedule offsets must be non-decreasing")

    @property
    def effective_idle_interval(self) -> float:
        if self.idle_interval is not None:
            return self.idle_interval
        return self.active_interval * 3


@dataclass
class PollingState:
    is_active: bool = True
    is_paused: bool = False
    attempts: int = 0
    error_count: int = 0
    consecutive_errors: int = 0
    last_poll: float = 0.0
    last_activity: float = 0.0


@dataclass(frozen=True)
class PollingResult:
    """How a subscription ended."""

    completed: bool
    value: Any = None
    attempts: int = 0
    reason: str = "completed"

    @property
    def exhausted(self) -> bool:
        return self.reason == "exhausted"


def _default_is_change(old: Any, new: Any) -> bool:
    return old != new


async def _invoke(callback: Callable[..., Any] | None, *args: Any) -> None:
    if callback is None:
        return
    result = callback(*args)
    if inspect.isawaitable(result):
        await result


class MonitorHandle:
    """One running subscription. Created by ``AdaptiveMonitor.start``."""

    def __init__(
        self,
        key: Hashable,
        poll_fn: PollFn,
        config: PollConfig,
        *,
        is_done: Callable[[Any], bool] | None = None,
        is_change: Callable[[Any, Any], bool] | None = None,
        on_change: Callable[[Any, Any], Any] | None = None,
        on_error: Callable[[Exception], Any] | None = None,
        on_exhausted: Callable[[], Any] | None = None,
        on_finish: Callable[[MonitorHandle], None] | None = None,
    ) -> None:
        self.key = key
        self.config = config
        self.state = PollingState()
        self._poll_fn = poll_fn
        self._is_done = is_done
        self._is_change = is_change or _default_is_change
        self._on_change = on_change
        self._on_error = on_error
        self._on_exhausted = on_exhausted
        self._on_finish = on_finish
        self._loop = asyncio.get_running_loop()
        self._result: asyncio.Future[PollingResult] = self._loop.create_future()
        self._wake = asyncio.Event()
        self._stopped = False
        self._task: asyncio.Task[None] | None = None
        self._started_at = 0.0
        self._error_pause_until = 0.0
        self._last_value: Any = None
        self._has_value = False
        self._logger = get_logger("monitor")

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def last_value(self) -> Any:
        return self._last_value

    def start(self) -> None:
        self._task = self._loop.create_task(self._run(), name=f"arcle-monitor:{self.key}")

    async def wait(self) -> PollingResult:
        return await asyncio.shield(self._result)

    def mark_activity(self) -> None:
        """Something meaningful happened: go back to the active cadence."""
        self.state.last_activity = self._loop.time()
        self.state.is_active = True
        if self.state.is_paused:
            self._logger.debug(f"Monitor {self.key} resumed")
        self._wake.set()

    def stop(self) -> None:
        if self._stopped:
            return
        self._stopped = True
        self._wake.set()
        if self._task is not None and self._task is not asyncio.current_task():
            self._task.cancel()
            # A task cancelled before its first step never reaches its finally block
            self._resolve(PollingResult(False, self._last_value, self.state.attempts, "stopped"))
            if self._on_finish is not None:
                self._on_finish(self)

    # ------------------------------------------------------------------

    def _deadline(self) -> float | None:
        if self.config.max_duration is None:
            return None
        return self._started_at + self.config.max_duration

    def _ceiling_reached(self, now: float) -> bool:
        cfg = self.config
        if cfg.max_attempts is not None and self.state.attempts >= cfg.max_attempts:
            return True
        if cfg.schedule is not None and self.state.attempts >= len(cfg.schedule):
            return True
        deadline = self._deadline()
        return deadline is not None and now >= deadline

    def _current_interval(self, now: float) -> float:
        cfg = self.config
        idle_for = now - self.state.last_activity
        self.state.is_active = idle_for < cfg.idle_threshold
        interval = cfg.active_interval if self.state.is_active else cfg.effective_idle_interval
        if self.state.consecutive_errors:
            multiplier = min(2**self.state.consecutive_errors, 8)
            interval = min(interval * multiplier, cfg.max_backoff)
        return interval

    def _next_due(self, now: float) -> float | None:
        cfg = self.config
        if cfg.schedule is not None:
            if self.state.attempts >= len(cfg.schedule):
                return None
            return self._started_at + cfg.schedule[self.state.attempts]
        if self.state.attempts == 0:
            first = self._started_at if cfg.immediate else self._started_at + cfg.active_interval
            return max(first, self._error_pause_until)
        due = self.state.last_poll + self._current_interval(now)
        return max(due, self._error_pause_until)

    def _should_pause(self, now: float) -> bool:
        cfg = self.config
        if cfg.pause_after_idle is None or cfg.schedule is not None:
            return False
        return now - self.state.last_activity >= cfg.pause_after_idle

    async def _wait_for_wake(self, timeout: float | None) -> None:
        self._wake.clear()
        try:
            await asyncio.wait_for(self._wake.wait(), timeout)
        except asyncio.TimeoutError:
            pass

    async def _wait_until_due(self) -> bool:
        """Sleep until the next tick is due. False once stopped."""
        while not self._stopped:
            now = self._loop.time()
            deadline = self._deadline()
            if self._should_pause(now):
                if not self.state.is_paused:
                    self.state.is_paused = True
                    self.state.is_active = False
                    self._logger.debug(f"Monitor {self.key} paused after idle period")
                timeout = None if deadline is None else deadline - now
                if timeout is not None and timeout <= 0:
                    return True
                await self._wait_for_wake(timeout)
                continue
            self.state.is_paused = False
            due = self._next_due(now)
            if due is None:
                return True
            if deadline is not None:
                due = min(due, deadline)
            delay = due - now
            if delay <= 0:
                return True
            await self._wait_for_wake(delay)
        return False

    async def _tick(self) -> bool:
        """Run one poll. True when the subscription reached its done condition."""
        try:
            value = await self._poll_fn()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self.state.error_count += 1
            self.state.consecutive_errors += 1
            self._logger.warning(
                f"Monitor {self.key} poll failed "
                f"({self.state.consecutive_errors} in a row): {exc}"
            )
            await self._safe_invoke(self._on_error, exc)
            if self.state.consecutive_errors >= self.config.max_consecutive_errors:
                self._logger.warning(
                    f"Monitor {self.key} pausing {self.config.error_pause}s after repeated errors"
                )
                self._error_pause_until = self._loop.time() + self.config.error_pause
                self.state.consecutive_errors = 0
            return False

        self.state.consecutive_errors = 0
        if self._has_value and self._is_change(self._last_value, value):
            previous = self._last_value
            self._last_value = value
            self.mark_activity()
            await self._safe_invoke(self._on_change, previous, value)
        else:
            self._last_value = value
        self._has_value = True

        if self._is_done is not None and self._is_done(value):
            self._resolve(PollingResult(True, value, self.state.attempts, "completed"))
            return True
        return False

    async def _safe_invoke(self, callback: Callable[..., Any] | None, *args: Any) -> None:
        # Subscriber callbacks must not end the poll loop
        try:
            await _invoke(callback, *args)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self._logger.error(f"Monitor {self.key} callback failed: {exc}", exc_info=True)

    def _resolve(self, result: PollingResult) -> None:
        if not self._result.done():
            self._result.set_result(result)

    async def _run(self) -> None:
        self._started_at = self._loop.time()
        self.state.last_activity = self._started_at
        self.state.last_poll = self._started_at
        try:
            while await self._wait_until_due():
                now = self._loop.time()
                if self._ceiling_reached(now):
                    self._logger.debug(
                        f"Monitor {self.key} exhausted after {self.state.attempts} attempts"
                    )
                    self._resolve(
                        PollingResult(False, self._last_value, self.state.attempts, "exhausted")
                    )
                    await self._safe_invoke(self._on_exhausted)
                    return
                self.state.attempts += 1
                self.state.last_poll = now
                if await self._tick():
                    return
        finally:
            self._stopped = True
            self._resolve(PollingResult(False, self._last_value, self.state.attempts, "stopped"))
            if self._on_finish is not None:
                self._on_finish(self)


class AdaptiveMonitor:
    """
    Registry of running subscriptions, at most one per key.

    Starting a key that is already running replaces the old subscription.
    Must be used from inside the event loop.
    """

    def __init__(self) -> None:
        self._handles: dict[Hashable, MonitorHandle] = {}
        self._logger = get_logger("monitor")

    def start(
        self,
        key: Hashable,
        poll_fn: PollFn,
        config: PollConfig | None = None,
        **callbacks: Any,
    ) -> MonitorHandle:
        """
        Start polling ``poll_fn`` under ``key``.

        Callbacks (all optional, sync or async): ``is_done(value)``,
        ``is_change(old, new)``, ``on_change(old, new)``, ``on_error(exc)``,
        ``on_exhausted()``.
        """
        existing = self._handles.pop(key, None)
        if existing is not None:
            self._logger.debug(f"Replacing monitor {key}")
            existing.stop()
        handle = MonitorHandle(
            key, poll_fn, config or PollConfig(), on_finish=self._forget, **callbacks
        )
        self._handles[key] = handle
        handle.start()
        return handle

    async def run_until(
        self,
        key: Hashable,
        poll_fn: PollFn,
        config: PollConfig,
        is_done: Callable[[Any], bool],
        **callbacks: Any,
    ) -> PollingResult:
        """Start a subscription and wait for it to complete, exhaust or stop."""
        handle = self.start(key, poll_fn, config, is_done=is_done, **callbacks)
        try:
            return await handle.wait()
        except asyncio.CancelledError:
            handle.stop()
            raise

    def _forget(self, handle: MonitorHandle) -> None:
        if self._handles.get(handle.key) is handle:
            del self._handles[handle.key]

    def get(self, key: Hashable) -> MonitorHandle | None:
        return self._handles.get(key)

    def is_running(self, key: Hashable) -> bool:
        handle = self._handles.get(key)
        return handle is not None and handle.running

    def mark_activity(self, key: Hashable) -> None:
        handle = self._handles.get(key)
        if handle is not None:
            handle.mark_activity()

    def keys(self) -> list[Hashable]:
        return list(self._handles)

    def stop(self, key: Hashable) -> bool:
        handle = self._handles.pop(key, None)
        if handle is None:
            return False
        handle.stop()
        return True

    def stop_all(self) -> None:
        handles = list(self._handles.values())
        self._handles.clear()
        for handle in handles:
            handle.stop()
        if handles:
            self._logger.info(f"Stopped {len(handles)} monitors")
