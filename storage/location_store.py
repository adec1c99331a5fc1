"""Persistent record of the last query string used per list view."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Dict, Optional

from loguru import logger

from config.settings import settings


class LocationStore:
    """
    Small file-backed store so a console session can reopen a view with the
    filters it was last left on.

    Everything lives in a single JSON file ``<state_dir>/locations.json``
    mapping view name → query string (without the leading ``?``).
    """

    FILENAME = "locations.json"

    def __init__(self, state_dir: Optional[str] = None) -> None:
        self._dir = Path(state_dir or settings.state_dir)
        self._dir.mkdir(parents=True, exist_ok=True)
        self._path = self._dir / self.FILENAME
        self._cache: Dict[str, str] = {}
        self._load()

    # ── Internal helpers ──────────────────────────────────────────────────────

    def _load(self) -> None:
        if not self._path.exists():
            return
        try:
            with open(self._path, "r", encoding="utf-8") as fh:
                raw = json.load(fh)
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning(f"Failed to load {self._path}: {exc}")
            return
        if not isinstance(raw, dict):
            logger.warning(f"Ignoring {self._path}: expected an object, got {type(raw).__name__}")
            return
        self._cache = {str(k): str(v) for k, v in raw.items() if isinstance(v, str)}
        logger.debug(f"Loaded {len(self._cache)} saved locations.")

    def _save(self) -> None:
        with open(self._path, "w", encoding="utf-8") as fh:
            json.dump(self._cache, fh, indent=2, sort_keys=True)

    # ── Public API ────────────────────────────────────────────────────────────

    def get(self, view: str) -> Optional[str]:
        return self._cache.get(view)

    def save(self, view: str, query: str) -> None:
        query = query[1:] if query.startswith("?") else query
        if self._cache.get(view) == query:
            return
        self._cache[view] = query
        self._save()
        logger.debug(f"Saved location for '{view}': ?{query}")

    def forget(self, view: str) -> None:
        if self._cache.pop(view, None) is not None:
            self._save()

    def all(self) -> Dict[str, str]:
        return dict(self._cache)
