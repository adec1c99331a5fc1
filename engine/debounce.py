"""Trailing-edge debounce for rapidly changing input values."""

from __future__ import annotations

import asyncio
from typing import Any, Callable, Generic, Optional, TypeVar

from loguru import logger

from engine.observable import Listeners

T = TypeVar("T")

_NOTHING: Any = object()


class DebouncedValue(Generic[T]):
    """Lazily-updated copy of a value that only settles after *delay* seconds of quiet.

    The initial value is available immediately. Every later :meth:`set`
    re-arms the timer, so only the last value written before a quiet period is
    ever emitted to subscribers.
    """

    def __init__(self, initial: T, delay: float, name: str = "debounced") -> None:
        self._name = name
        self._delay = max(0.0, delay)
        self._value: T = initial
        self._pending: Any = _NOTHING
        self._handle: Optional[asyncio.TimerHandle] = None
        self._closed = False
        self._listeners = Listeners(name)

    @property
    def value(self) -> T:
        """Last settled value."""
        return self._value

    @property
    def latest(self) -> T:
        """Most recent input, settled or not."""
        return self._value if self._pending is _NOTHING else self._pending

    @property
    def pending(self) -> bool:
        return self._handle is not None

    @property
    def delay(self) -> float:
        return self._delay

    def subscribe(self, callback: Callable[[T], Any]) -> Callable[[], None]:
        return self._listeners.connect(callback)

    def set(self, value: T) -> None:
        """Record a new input value and (re-)arm the timer."""
        if self._closed:
            return
        if self._handle is None and value == self._value:
            return
        if self._handle is not None:
            self._handle.cancel()
        self._pending = value
        self._handle = asyncio.get_running_loop().call_later(self._delay, self._fire)

    def flush(self) -> None:
        """Settle a pending value now instead of waiting for the timer."""
        if self._handle is not None:
            self._handle.cancel()
            self._fire()

    def cancel(self) -> None:
        """Drop a pending value without emitting it."""
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        self._pending = _NOTHING

    def reset(self, value: T) -> None:
        """Adopt *value* as settled without notifying subscribers."""
        self.cancel()
        self._value = value

    def close(self) -> None:
        """Tear down: no emission happens after this call."""
        self.cancel()
        self._closed = True
        self._listeners.clear()

    def _fire(self) -> None:
        self._handle = None
        value, self._pending = self._pending, _NOTHING
        if self._closed or value is _NOTHING or value == self._value:
            return
        self._value = value
        logger.debug(f"{self._name} settled on {value!r}")
        self._listeners.emit(value)
