"""Minimal listener registry used by every engine component."""

from __future__ import annotations

from typing import Any, Callable, List

from loguru import logger


class Listeners:
    """Ordered callbacks notified synchronously on the event loop thread.

    A failing callback is logged and does not stop the remaining ones.
    """

    def __init__(self, name: str = "") -> None:
        self._name = name
        self._callbacks: List[Callable[..., Any]] = []

    def connect(self, callback: Callable[..., Any]) -> Callable[[], None]:
        """Register *callback*; returns a function that disconnects it."""
        if callback not in self._callbacks:
            self._callbacks.append(callback)

        def _disconnect() -> None:
            self.disconnect(callback)

        return _disconnect

    def disconnect(self, callback: Callable[..., Any]) -> None:
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    def emit(self, *args: Any, **kwargs: Any) -> None:
        for callback in list(self._callbacks):
            try:
                callback(*args, **kwargs)
            except Exception as exc:
                logger.error(f"{self._name or 'listener'} callback {callback!r} failed: {exc}")

    def clear(self) -> None:
        self._callbacks.clear()

    def __len__(self) -> int:
        return len(self._callbacks)
