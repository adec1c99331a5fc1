"""One list view wired end to end.

    search input ─▶ DebouncedValue ─▶ QueryStateStore ⇄ NavigationHistory
                                            │
                                            ▼
                               PaginatedFetchController ─▶ OptimisticActionManager
                                            ▲
                          JobPoller (done) ─┘
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from loguru import logger

from clients.catalog_client import CatalogClient
from config.settings import settings
from engine.cancellation import CancellationToken
from engine.debounce import DebouncedValue
from engine.errors import ValidationError
from engine.fetch_controller import PaginatedFetchController
from engine.job_poller import JobPoller
from engine.optimistic import BulkActionHandler, OptimisticActionManager, PendingMutation
from engine.state_store import QueryStateStore, StateOrigin
from engine.views import ViewDefinition, register_actions, wishlist_item_ref
from models.fetch import FetchResult, FetchSnapshot
from models.job import JobStatus
from models.mutation import AggregateDelta, MutationIntent
from storage.location import NavigationHistory
from storage.location_store import LocationStore
from utils.helpers import row_key_factory, unique


class ListView:
    """Composition of every engine component for one :class:`ViewDefinition`."""

    def __init__(
        self,
        definition: ViewDefinition,
        client: CatalogClient,
        location: Optional[NavigationHistory] = None,
        location_store: Optional[LocationStore] = None,
        debounce_seconds: Optional[float] = None,
        poll_interval: Optional[float] = None,
        poll_max_attempts: Optional[int] = None,
        done_message_ttl: Optional[float] = None,
    ) -> None:
        self.definition = definition
        self._client = client
        self._location_store = location_store
        self.location = location or NavigationHistory(definition.path)
        self.store = QueryStateStore(definition.query, self.location)

        page_size_field = definition.query.page_size_field
        page_size = definition.query.field(page_size_field).default if page_size_field else 25
        self.fetcher = PaginatedFetchController(self._produce, name=definition.name, page_size=page_size)
        self.rows = OptimisticActionManager(
            row_key_factory(definition.key_fields),
            tracked_fields=definition.tracked_fields,
            name=definition.name,
        )
        register_actions(definition, client, self.rows)

        self.search: Optional[DebouncedValue[str]] = None
        if definition.search_field:
            delay = debounce_seconds
            if delay is None:
                delay = definition.debounce_seconds
            if delay is None:
                delay = settings.search_debounce_seconds
            self.search = DebouncedValue(
                definition.query.field(definition.search_field).default_value(),
                delay,
                name=f"{definition.name} search",
            )

        self.job: Optional[JobPoller] = None
        if definition.job:
            job_path = definition.job
            self.job = JobPoller(
                lambda targets: client.start_job(job_path, targets, definition.job_target_key),
                lambda: client.job_status(job_path),
                interval=poll_interval,
                max_attempts=poll_max_attempts,
                done_message_ttl=done_message_ttl,
                name=f"{definition.name} {job_path}",
            )

        self._rows_seq = 0
        self._opened = False

    # ── Read side ─────────────────────────────────────────────────────────────

    @property
    def name(self) -> str:
        return self.definition.name

    @property
    def state(self) -> Dict[str, Any]:
        return self.store.state

    @property
    def snapshot(self) -> FetchSnapshot:
        return self.fetcher.snapshot

    @property
    def page_count(self) -> int:
        return self.fetcher.snapshot.page_count

    @property
    def href(self) -> str:
        return self.location.href

    @property
    def error(self) -> Optional[str]:
        """Most recent operator-visible error from the list or a row action."""
        return self.fetcher.snapshot.error or self.rows.error

    # ── Lifecycle ─────────────────────────────────────────────────────────────

    async def open(self) -> FetchSnapshot:
        """Restore state from the location, load the first page and sync job status."""
        if self._opened:
            return self.snapshot
        self._opened = True
        self.store.subscribe(self._on_state)
        self.store.on_synced(self._on_synced)
        self.fetcher.subscribe(self._on_snapshot)
        if self.search is not None:
            self.search.subscribe(self._on_search)
        if self.job is not None:
            self.job.on_done(self._on_job_done)

        logger.info(f"Opening view '{self.name}' at {self.href}")
        self.store.mount()
        if self.job is not None:
            await self.job.sync()
        return await self.fetcher.wait()

    async def settle(self) -> FetchSnapshot:
        """Flush pending search input and wait for fetches and row actions to finish."""
        if self.search is not None:
            self.search.flush()
        await self.rows.wait()
        return await self.fetcher.wait()

    def close(self) -> None:
        if self.search is not None:
            self.search.close()
        if self.job is not None:
            self.job.close()
        self.rows.close()
        self.fetcher.close()
        self.store.close()
        self._opened = False
        logger.debug(f"Closed view '{self.name}'")

    # ── Operator input ────────────────────────────────────────────────────────

    def type_search(self, text: str) -> None:
        if self.search is None:
            raise RuntimeError(f"View '{self.name}' has no search field")
        self.search.set(text)

    def set_filters(self, **changes: Any) -> bool:
        return self.store.update(changes)

    def set_page(self, page: int) -> bool:
        return self.store.set_page(page)

    def reset_filters(self) -> bool:
        return self.store.reset()

    def refresh(self) -> None:
        self.fetcher.refresh()

    # ── Row actions ───────────────────────────────────────────────────────────

    def toggle(self, row_id: str, field: str) -> PendingMutation:
        return self.rows.toggle(row_id, field)

    async def load_wishlists(self) -> Dict[str, Optional[int]]:
        """Seed the aggregate counters with each wishlist's item count."""
        if not self.definition.wishlists:
            return {}
        payload = await self._client.get_json(self.definition.wishlists)
        lists: List[Dict[str, Any]] = []
        if isinstance(payload, dict):
            lists = payload.get("owned") or payload.get("items") or []
        elif isinstance(payload, list):
            lists = payload
        counts: Dict[str, Optional[int]] = {}
        for entry in lists:
            if not isinstance(entry, dict) or "id" not in entry:
                continue
            count = entry.get("item_count")
            counts[str(entry["id"])] = count if isinstance(count, int) and not isinstance(count, bool) else None
        self.rows.aggregates.load(counts)
        return counts

    def add_to_wishlist(self, row_ids: List[str], wishlist_id: str, wishlist_name: str) -> PendingMutation:
        """Add rows to a wishlist: names show up at once and the list's count grows by the rows added."""
        resource = self._require_wishlists()
        targets = [row_id for row_id in unique(row_ids) if wishlist_name not in self._names(row_id)]
        if not targets:
            raise ValidationError("wishlist_names", f"Already in '{wishlist_name}'.")

        async def _save(intents: List[MutationIntent]) -> None:
            items = [wishlist_item_ref(self.definition, intent.target) for intent in intents]
            await self._client.mutate("POST", resource, {"wishlistId": wishlist_id, "items": items})

        return self._apply_names(targets, wishlist_name, add=True, wishlist_id=wishlist_id, handler=_save)

    def remove_from_wishlist(self, row_id: str, wishlist_id: str, wishlist_name: str) -> PendingMutation:
        resource = self._require_wishlists()
        if wishlist_name not in self._names(row_id):
            raise ValidationError("wishlist_names", f"Not in '{wishlist_name}'.")

        async def _remove(intents: List[MutationIntent]) -> None:
            body = {"wishlistId": wishlist_id, **wishlist_item_ref(self.definition, intents[0].target)}
            await self._client.mutate("DELETE", resource, body)

        return self._apply_names([row_id], wishlist_name, add=False, wishlist_id=wishlist_id, handler=_remove)

    # ── Background job ────────────────────────────────────────────────────────

    async def generate(self, targets: Optional[List[str]] = None) -> JobStatus:
        if self.job is None:
            raise RuntimeError(f"View '{self.name}' has no background job")
        return await self.job.start(targets)

    # ── Internal helpers ──────────────────────────────────────────────────────

    async def _produce(self, state: Dict[str, Any], token: CancellationToken) -> FetchResult:
        params = self.store.codec.request_params(state)
        return await self._client.list_rows(self.definition.collection, params, token)

    def _on_state(self, state: Dict[str, Any], origin: StateOrigin) -> None:
        if origin is StateOrigin.RESTORE and self.search is not None and self.definition.search_field:
            self.search.reset(state[self.definition.search_field])
        self.fetcher.set_state(state)

    def _on_search(self, text: str) -> None:
        self.store.update({self.definition.search_field: text})

    def _on_synced(self, query: str) -> None:
        if self._location_store is not None:
            self._location_store.save(self.name, query)

    def _on_snapshot(self, snapshot: FetchSnapshot) -> None:
        if self.fetcher.applied_seq != self._rows_seq:
            self._rows_seq = self.fetcher.applied_seq
            self.rows.replace_rows(snapshot.items)

    def _on_job_done(self, status: JobStatus) -> None:
        self.fetcher.refresh()

    def _require_wishlists(self) -> str:
        if not self.definition.wishlist_items:
            raise RuntimeError(f"View '{self.name}' has no wishlists")
        return self.definition.wishlist_items

    def _names(self, row_id: str) -> List[str]:
        row = self.rows.row(row_id) or {}
        return list(row.get("wishlist_names") or [])

    def _apply_names(
        self,
        row_ids: List[str],
        wishlist_name: str,
        add: bool,
        wishlist_id: str,
        handler: BulkActionHandler,
    ) -> PendingMutation:
        values = {}
        for row_id in row_ids:
            names = [name for name in self._names(row_id) if name != wishlist_name]
            values[row_id] = names + [wishlist_name] if add else names
        return self.rows.apply_bulk(
            row_ids,
            "wishlist_names",
            None,
            aggregate=AggregateDelta(key=wishlist_id, delta=len(row_ids) if add else -len(row_ids)),
            handler=handler,
            values=values,
        )
