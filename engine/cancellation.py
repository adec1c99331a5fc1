"""Cancellation token handed to every fetch producer."""

from __future__ import annotations

from typing import Callable, List

from loguru import logger

from engine.errors import CancellationError


class CancellationToken:
    """One-way flag flipped when the owning request is superseded.

    Producers may poll :attr:`cancelled`, call :meth:`raise_if_cancelled`
    between awaits, or register callbacks (e.g. to close a stream).
    """

    def __init__(self, label: str = "") -> None:
        self._label = label
        self._cancelled = False
        self._callbacks: List[Callable[[], None]] = []

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            try:
                callback()
            except Exception as exc:
                logger.warning(f"Cancellation callback for {self._label or 'request'} failed: {exc}")

    def add_callback(self, callback: Callable[[], None]) -> None:
        if self._cancelled:
            callback()
        else:
            self._callbacks.append(callback)

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise CancellationError(f"{self._label or 'request'} was cancelled")

    def __repr__(self) -> str:
        state = "cancelled" if self._cancelled else "active"
        return f"CancellationToken({self._label!r}, {state})"
