"""In-process navigation location with a browser-like history stack."""

from __future__ import annotations

from typing import Any, Callable, List
from urllib.parse import urlsplit

from loguru import logger

from engine.observable import Listeners


def _strip(query: str) -> str:
    return query[1:] if query.startswith("?") else query


class NavigationHistory:
    """
    Path + query string of one view plus its history entries.

    ``push`` is what the application does to itself and never
    notifies subscribers. ``back``, ``forward`` and ``navigate`` model navigation
    that happens *to* the view (history buttons, a pasted link) and notify
    subscribers with the new query string.
    """

    def __init__(self, path: str = "/", query: str = "") -> None:
        self._path = path
        self._entries: List[str] = [_strip(query)]
        self._index = 0
        self._listeners = Listeners(f"navigation {path}")

    @classmethod
    def from_url(cls, url: str) -> "NavigationHistory":
        parts = urlsplit(url)
        return cls(path=parts.path or "/", query=parts.query)

    # ── Read side ─────────────────────────────────────────────────────────────

    @property
    def path(self) -> str:
        return self._path

    @property
    def query(self) -> str:
        return self._entries[self._index]

    @property
    def href(self) -> str:
        return f"{self._path}?{self.query}" if self.query else self._path

    @property
    def entries(self) -> List[str]:
        return list(self._entries)

    @property
    def index(self) -> int:
        return self._index

    def __len__(self) -> int:
        return len(self._entries)

    def subscribe(self, callback: Callable[[str], Any]) -> Callable[[], None]:
        return self._listeners.connect(callback)

    # ── Application-driven updates (silent) ───────────────────────────────────

    def push(self, query: str) -> None:
        """Add a history entry without reloading; forward entries are dropped."""
        del self._entries[self._index + 1 :]
        self._entries.append(_strip(query))
        self._index += 1
        logger.debug(f"history push → {self.href}")

    # ── External navigation (notifies) ────────────────────────────────────────

    def back(self) -> bool:
        if self._index == 0:
            return False
        self._index -= 1
        self._listeners.emit(self.query)
        return True

    def forward(self) -> bool:
        if self._index >= len(self._entries) - 1:
            return False
        self._index += 1
        self._listeners.emit(self.query)
        return True

    def navigate(self, query: str) -> None:
        """Follow a link to this view with a different query string."""
        self.push(query)
        self._listeners.emit(self.query)
