"""Two-way binding between a view's FilterState and its navigation location.

The store runs a small explicit state machine:

    idle ──mount / back / forward / navigate──▶ restoring ──▶ idle
    idle ──update()──────────────────────────▶ syncing   ──▶ idle

A restore decodes the URL into local state and notifies subscribers but never
writes the URL back; a sync writes the URL but never re-enters restoring,
because pushes on :class:`NavigationHistory` are silent and the store ignores
navigation notifications while it is syncing.
"""

from __future__ import annotations

import copy
from enum import Enum
from typing import Any, Callable, Dict, Optional

from loguru import logger

from engine.codec import QueryStateCodec
from engine.errors import ValidationError
from engine.observable import Listeners
from models.query import QuerySchema
from storage.location import NavigationHistory


class SyncPhase(str, Enum):
    IDLE = "idle"
    RESTORING = "restoring"
    SYNCING = "syncing"


class StateOrigin(str, Enum):
    """Why subscribers are being notified of a new state."""

    RESTORE = "restore"
    UPDATE = "update"


class QueryStateStore:
    """Owns the FilterState of one list view and mirrors it into the URL."""

    def __init__(
        self,
        schema: QuerySchema,
        location: NavigationHistory,
        codec: Optional[QueryStateCodec] = None,
    ) -> None:
        self._schema = schema
        self._codec = codec or QueryStateCodec(schema)
        self._location = location
        self._state: Dict[str, Any] = schema.defaults()
        self._phase = SyncPhase.IDLE
        self._listeners = Listeners(f"{schema.name} state")
        self._synced = Listeners(f"{schema.name} url")
        self._unsubscribe_location: Optional[Callable[[], None]] = None

    # ── Read side ─────────────────────────────────────────────────────────────

    @property
    def schema(self) -> QuerySchema:
        return self._schema

    @property
    def codec(self) -> QueryStateCodec:
        return self._codec

    @property
    def location(self) -> NavigationHistory:
        return self._location

    @property
    def phase(self) -> SyncPhase:
        return self._phase

    @property
    def state(self) -> Dict[str, Any]:
        return copy.deepcopy(self._state)

    @property
    def mounted(self) -> bool:
        return self._unsubscribe_location is not None

    def get(self, name: str) -> Any:
        self._schema.field(name)
        return copy.deepcopy(self._state[name])

    def subscribe(self, callback: Callable[[Dict[str, Any], StateOrigin], Any]) -> Callable[[], None]:
        """``callback(state, origin)`` runs after every committed change."""
        return self._listeners.connect(callback)

    def on_synced(self, callback: Callable[[str], Any]) -> Callable[[], None]:
        """``callback(query)`` runs after a new URL has been pushed."""
        return self._synced.connect(callback)

    # ── Lifecycle ─────────────────────────────────────────────────────────────

    def mount(self) -> Dict[str, Any]:
        """Adopt the state encoded in the current URL and start following navigation."""
        if self._unsubscribe_location is None:
            self._unsubscribe_location = self._location.subscribe(self._on_navigation)
            self._restore(self._location.query)
        return self.state

    def close(self) -> None:
        if self._unsubscribe_location is not None:
            self._unsubscribe_location()
            self._unsubscribe_location = None
        self._listeners.clear()
        self._synced.clear()

    # ── Mutations ─────────────────────────────────────────────────────────────

    def update(self, changes: Optional[Dict[str, Any]] = None, **fields: Any) -> bool:
        """Validate and apply field changes; returns False when nothing changed.

        Changing any page-resetting field sends the view back to its first
        page unless the same call sets the page explicitly.

        Raises ValidationError (state untouched) for unknown fields or values
        the schema rejects.
        """
        requested = {**(changes or {}), **fields}
        next_state = copy.deepcopy(self._state)
        for name, value in requested.items():
            try:
                spec = self._schema.field(name)
            except KeyError as exc:
                raise ValidationError(name, str(exc.args[0])) from None
            try:
                next_state[name] = spec.coerce(value)
            except (TypeError, ValueError) as exc:
                raise ValidationError(name, str(exc)) from exc

        changed = [name for name in requested if next_state[name] != self._state[name]]
        if not changed:
            return False

        page_field = self._schema.page_field
        if page_field is not None and page_field not in requested:
            if any(name != page_field and self._schema.field(name).resets_page for name in changed):
                next_state[page_field] = self._schema.field(page_field).default_value()

        logger.debug(f"{self._schema.name}: update {', '.join(changed)}")
        self._commit(next_state, StateOrigin.UPDATE)
        return True

    def set_page(self, page: int) -> bool:
        if self._schema.page_field is None:
            raise ValidationError("page", f"View '{self._schema.name}' is not paginated")
        return self.update({self._schema.page_field: page})

    def reset(self) -> bool:
        """Return every field to its default."""
        defaults = self._schema.defaults()
        if defaults == self._state:
            return False
        self._commit(defaults, StateOrigin.UPDATE)
        return True

    # ── Internal helpers ──────────────────────────────────────────────────────

    def _on_navigation(self, query: str) -> None:
        if self._phase is SyncPhase.SYNCING:
            logger.debug(f"{self._schema.name}: ignoring navigation while syncing")
            return
        self._restore(query)

    def _restore(self, query: str) -> None:
        self._phase = SyncPhase.RESTORING
        try:
            decoded = self._codec.decode(query)
            logger.debug(f"{self._schema.name}: restoring from ?{query}")
            self._commit(decoded, StateOrigin.RESTORE)
        finally:
            self._phase = SyncPhase.IDLE

    def _commit(self, state: Dict[str, Any], origin: StateOrigin) -> None:
        self._state = state
        self._listeners.emit(self.state, origin)
        self._sync()

    def _sync(self) -> None:
        if self._phase is not SyncPhase.IDLE:
            # Restoring consumes its own encode pass; a nested sync is a no-op.
            return
        self._phase = SyncPhase.SYNCING
        try:
            query = self._codec.encode(self._state)
            if query == self._location.query:
                return
            self._location.push(query)
            logger.info(f"{self._schema.name}: URL → {self._location.href}")
            self._synced.emit(query)
        finally:
            self._phase = SyncPhase.IDLE
