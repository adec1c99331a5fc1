"""Optimistic row mutations with exact, field-scoped rollback.

Protocol for every action:

1. snapshot the current value of the field (MutationIntent),
2. write the new value into the in-memory row and return immediately,
3. call the server in a background task,
4. on success overwrite the guess with any authoritative fields the server
   returned, otherwise keep the guess,
5. on failure restore the snapshot exactly (including a field that did not
   exist) and reverse any aggregate count adjustment.

Changes to the same (row, field) that overlap form a chain. A failing change
only writes the row when nothing newer is pending on that field; otherwise it
hands its base value to the next change, so the field always settles on the
value before the chain or on the last committed value.
"""

from __future__ import annotations

import asyncio
import copy
from collections import Counter
from typing import Any, Awaitable, Callable, Dict, Generator, Iterable, List, Optional, Tuple

from loguru import logger

from engine.errors import ValidationError
from engine.observable import Listeners
from models.mutation import (
    MISSING,
    AggregateDelta,
    MutationIntent,
    MutationOutcome,
    MutationStatus,
)
from utils.helpers import RowKey, unique

ActionHandler = Callable[[MutationIntent], Awaitable[Optional[Dict[str, Any]]]]
BulkActionHandler = Callable[[List[MutationIntent]], Awaitable[Any]]


class AggregateCounters:
    """Displayed counts that depend on row mutations, e.g. wishlist item counts.

    Unknown counts (``None``) are never adjusted; known counts never go below
    zero. :meth:`adjust` returns the delta actually applied so it can be
    reversed exactly.
    """

    def __init__(self) -> None:
        self._counts: Dict[str, Optional[int]] = {}
        self._listeners = Listeners("aggregates")

    def subscribe(self, callback: Callable[[str, Optional[int]], Any]) -> Callable[[], None]:
        return self._listeners.connect(callback)

    def set(self, key: str, count: Optional[int]) -> None:
        self._counts[key] = count
        self._listeners.emit(key, count)

    def load(self, counts: Dict[str, Optional[int]]) -> None:
        for key, count in counts.items():
            self.set(key, count)

    def get(self, key: str) -> Optional[int]:
        return self._counts.get(key)

    def adjust(self, key: str, delta: int) -> int:
        current = self._counts.get(key)
        if current is None or delta == 0:
            return 0
        updated = max(0, current + delta)
        self._counts[key] = updated
        self._listeners.emit(key, updated)
        return updated - current

    def all(self) -> Dict[str, Optional[int]]:
        return dict(self._counts)


class PendingMutation:
    """Handle for a mutation whose server call is still running; await it for the outcome."""

    def __init__(self, intents: List[MutationIntent], task: "asyncio.Task[MutationOutcome]") -> None:
        self.intents = intents
        self.task = task

    @property
    def intent(self) -> MutationIntent:
        return self.intents[0]

    @property
    def done(self) -> bool:
        return self.task.done()

    def __await__(self) -> Generator[Any, None, MutationOutcome]:
        return self.task.__await__()


class _Link:
    """One pending change in the chain of changes to a single (row, field)."""

    __slots__ = ("intent", "base", "superseded")

    def __init__(self, intent: MutationIntent) -> None:
        self.intent = intent
        # Value to show if this change fails and nothing newer is pending.
        self.base = intent.previous_value
        # A newer change on the same field has committed.
        self.superseded = False


class OptimisticActionManager:
    """Owns the visible row list of one view and every optimistic change to it."""

    def __init__(
        self,
        key: RowKey,
        tracked_fields: Optional[Iterable[str]] = None,
        name: str = "rows",
    ) -> None:
        self._key = key
        self._tracked = frozenset(tracked_fields) if tracked_fields is not None else None
        self._name = name
        self._rows: List[Dict[str, Any]] = []
        self._generation = 0
        self._handlers: Dict[str, ActionHandler] = {}
        self._bulk_handlers: Dict[str, BulkActionHandler] = {}
        self._inflight: Counter = Counter()
        self._chains: Dict[Tuple[str, str], List[_Link]] = {}
        self._tasks: set = set()
        self._error: Optional[str] = None
        self.aggregates = AggregateCounters()
        self._changed = Listeners(f"{name} rows")
        self._failed = Listeners(f"{name} errors")

    # ── Rows ──────────────────────────────────────────────────────────────────

    @property
    def rows(self) -> List[Dict[str, Any]]:
        return copy.deepcopy(self._rows)

    @property
    def error(self) -> Optional[str]:
        return self._error

    def row(self, row_id: str) -> Optional[Dict[str, Any]]:
        found = self._find(row_id)
        return copy.deepcopy(found) if found is not None else None

    def replace_rows(self, rows: Iterable[Dict[str, Any]]) -> None:
        """Adopt a freshly fetched page. In-flight rollbacks will not touch these rows."""
        self._rows = [copy.deepcopy(row) for row in rows]
        self._generation += 1
        self._chains.clear()
        self._error = None
        self._changed.emit(None, None)

    def is_pending(self, row_id: str, field: Optional[str] = None) -> bool:
        if field is not None:
            return self._inflight[(row_id, field)] > 0
        return any(count > 0 for (rid, _), count in self._inflight.items() if rid == row_id)

    def subscribe(self, callback: Callable[[Optional[str], Optional[Dict[str, Any]]], Any]) -> Callable[[], None]:
        """``callback(row_id, row)`` after a row changes; ``(None, None)`` after a page swap."""
        return self._changed.connect(callback)

    def on_error(self, callback: Callable[[List[MutationIntent], str], Any]) -> Callable[[], None]:
        return self._failed.connect(callback)

    # ── Handlers ──────────────────────────────────────────────────────────────

    def register(self, field: str, handler: ActionHandler) -> None:
        """Server call used by :meth:`apply` / :meth:`toggle` for *field*."""
        self._handlers[field] = handler

    def register_bulk(self, field: str, handler: BulkActionHandler) -> None:
        """Server call used by :meth:`apply_bulk` for *field*."""
        self._bulk_handlers[field] = handler

    # ── Actions ───────────────────────────────────────────────────────────────

    def apply(
        self,
        row_id: str,
        field: str,
        next_value: Any,
        aggregate: Optional[AggregateDelta] = None,
        handler: Optional[ActionHandler] = None,
    ) -> PendingMutation:
        """Change one field of one row now and confirm it with the server in the background."""
        handler = handler or self._handlers.get(field)
        if handler is None:
            raise KeyError(f"No action handler registered for field '{field}'")
        row = self._require(row_id, field)
        intent = self._write(row_id, row, field, next_value)
        applied = self._adjust(aggregate)
        task = asyncio.get_running_loop().create_task(
            self._confirm([intent], applied, self._generation, lambda: handler(intent))
        )
        return self._track([intent], task)

    def toggle(
        self,
        row_id: str,
        field: str,
        aggregate: Optional[AggregateDelta] = None,
    ) -> PendingMutation:
        row = self._require(row_id, field)
        return self.apply(row_id, field, not bool(row.get(field)), aggregate=aggregate)

    def apply_bulk(
        self,
        row_ids: Iterable[str],
        field: str,
        next_value: Any,
        aggregate: Optional[AggregateDelta] = None,
        handler: Optional[BulkActionHandler] = None,
        values: Optional[Dict[str, Any]] = None,
    ) -> PendingMutation:
        """Apply a change to many rows with a single server call.

        *values* overrides *next_value* per row id. The bulk endpoint is
        treated as a bare acknowledgement; on failure every row is restored.
        """
        handler = handler or self._bulk_handlers.get(field)
        if handler is None:
            raise KeyError(f"No bulk handler registered for field '{field}'")
        targets = [(row_id, self._require(row_id, field)) for row_id in unique(row_ids)]
        if not targets:
            raise ValidationError(field, "No rows selected.")
        values = values or {}
        intents = [
            self._write(row_id, row, field, values.get(row_id, next_value)) for row_id, row in targets
        ]
        applied = self._adjust(aggregate)

        async def _call() -> None:
            await handler(intents)
            return None

        task = asyncio.get_running_loop().create_task(
            self._confirm(intents, applied, self._generation, _call)
        )
        return self._track(intents, task)

    async def wait(self) -> None:
        """Wait for every in-flight server call to settle."""
        while self._tasks:
            await asyncio.wait(set(self._tasks))

    def close(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        self._changed.clear()
        self._failed.clear()
        self.aggregates._listeners.clear()

    # ── Internal helpers ──────────────────────────────────────────────────────

    def _find(self, row_id: str) -> Optional[Dict[str, Any]]:
        for row in self._rows:
            if self._key(row) == row_id:
                return row
        return None

    def _require(self, row_id: str, field: str) -> Dict[str, Any]:
        row = self._find(row_id)
        if row is None:
            raise ValidationError(field, f"Row '{row_id}' is not in the current list.")
        return row

    def _write(self, row_id: str, row: Dict[str, Any], field: str, next_value: Any) -> MutationIntent:
        intent = MutationIntent(
            target=row_id,
            field=field,
            next_value=copy.deepcopy(next_value),
            previous_value=copy.deepcopy(row[field]) if field in row else MISSING,
        )
        row[field] = copy.deepcopy(next_value)
        self._inflight[(row_id, field)] += 1
        self._chains.setdefault((row_id, field), []).append(_Link(intent))
        logger.debug(f"{self._name}: {row_id}.{field} → {next_value!r} (optimistic)")
        self._changed.emit(row_id, copy.deepcopy(row))
        return intent

    def _adjust(self, aggregate: Optional[AggregateDelta]) -> Optional[Tuple[str, int]]:
        if aggregate is None:
            return None
        return aggregate.key, self.aggregates.adjust(aggregate.key, aggregate.delta)

    def _track(self, intents: List[MutationIntent], task: "asyncio.Task[MutationOutcome]") -> PendingMutation:
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return PendingMutation(intents, task)

    async def _confirm(
        self,
        intents: List[MutationIntent],
        applied: Optional[Tuple[str, int]],
        generation: int,
        call: Callable[[], Awaitable[Optional[Dict[str, Any]]]],
    ) -> MutationOutcome:
        try:
            response = await call()
        except asyncio.CancelledError:
            self._rollback(intents, applied, generation)
            raise
        except Exception as exc:
            message = str(exc) or exc.__class__.__name__
            self._rollback(intents, applied, generation)
            self._error = message
            logger.warning(
                f"{self._name}: rolled back {len(intents)} change(s) to '{intents[0].field}': {message}"
            )
            self._failed.emit(intents, message)
            return MutationOutcome(intents=intents, status=MutationStatus.ROLLED_BACK, error=message)
        finally:
            for intent in intents:
                self._inflight[(intent.target, intent.field)] -= 1
                if self._inflight[(intent.target, intent.field)] <= 0:
                    del self._inflight[(intent.target, intent.field)]

        self._error = None
        authoritative: Dict[str, Any] = {}
        if generation == self._generation:
            single = isinstance(response, dict) and len(intents) == 1
            if single:
                authoritative = self._reconcile(intents[0], response)
            for intent in intents:
                committed = response.get(intent.field, intent.next_value) if single else intent.next_value
                self._commit_link(intent, committed)
        return MutationOutcome(
            intents=intents,
            status=MutationStatus.COMMITTED,
            authoritative=authoritative,
        )

    def _reconcile(self, intent: MutationIntent, response: Dict[str, Any]) -> Dict[str, Any]:
        row = self._find(intent.target)
        if row is None:
            return {}
        _, newer = self._neighbours(intent)
        written: Dict[str, Any] = {}
        for field, value in response.items():
            if field == intent.field:
                # A newer guess for this field is showing; the answer becomes its base instead.
                if newer:
                    continue
            else:
                if self._tracked is not None and field not in self._tracked:
                    continue
                if self._tracked is None and field not in row:
                    continue
                # Another in-flight mutation owns this field; leave its guess alone.
                if self._inflight[(intent.target, field)] > 0:
                    continue
            row[field] = copy.deepcopy(value)
            written[field] = value
        if written:
            logger.debug(f"{self._name}: {intent.target} reconciled {sorted(written)}")
            self._changed.emit(intent.target, copy.deepcopy(row))
        return written

    def _rollback(
        self,
        intents: List[MutationIntent],
        applied: Optional[Tuple[str, int]],
        generation: int,
    ) -> None:
        if applied is not None and applied[1]:
            self.aggregates.adjust(applied[0], -applied[1])
        if generation != self._generation:
            # The page was refetched since; the server's rows are fresher than our snapshot.
            return
        for intent in intents:
            link, newer = self._unlink(intent)
            if link is None or link.superseded:
                continue
            if newer:
                newer[0].base = link.base
                continue
            row = self._find(intent.target)
            if row is None:
                continue
            if link.base is MISSING:
                row.pop(intent.field, None)
            else:
                row[intent.field] = copy.deepcopy(link.base)
            self._changed.emit(intent.target, copy.deepcopy(row))

    def _commit_link(self, intent: MutationIntent, value: Any) -> None:
        older, _ = self._neighbours(intent)
        link, newer = self._unlink(intent)
        if link is None or link.superseded:
            return
        for earlier in older:
            earlier.superseded = True
        if newer:
            newer[0].base = copy.deepcopy(value)

    def _neighbours(self, intent: MutationIntent) -> Tuple[List[_Link], List[_Link]]:
        """Pending changes on the same (row, field) before and after *intent*."""
        chain = self._chains.get((intent.target, intent.field), [])
        for index, link in enumerate(chain):
            if link.intent is intent:
                return chain[:index], chain[index + 1 :]
        return [], []

    def _unlink(self, intent: MutationIntent) -> Tuple[Optional[_Link], List[_Link]]:
        key = (intent.target, intent.field)
        chain = self._chains.get(key, [])
        for index, link in enumerate(chain):
            if link.intent is intent:
                del chain[index]
                if not chain:
                    del self._chains[key]
                return link, chain[index:]
        return None, []
