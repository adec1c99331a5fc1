"""Race-safe paginated fetch pipeline for a single list view.

Every change of the (debounced) filter state issues a new request tagged with
a strictly increasing sequence number and cancels the previous one. A result
is only applied when it belongs to the latest request and moves the applied
sequence number forward, so a slow early response can never overwrite a
faster later one.
"""

from __future__ import annotations

import asyncio
import copy
from typing import Any, Awaitable, Callable, Dict, Iterable, Optional

from loguru import logger

from engine.cancellation import CancellationToken
from engine.errors import CancellationError
from engine.observable import Listeners
from models.fetch import FetchRequest, FetchResult, FetchSnapshot

FetchProducer = Callable[[Dict[str, Any], CancellationToken], Awaitable[FetchResult]]

_NOTHING: Any = object()


class PaginatedFetchController:
    """Owns "which page of which filtered collection is currently shown"."""

    def __init__(
        self,
        producer: FetchProducer,
        key_fields: Optional[Iterable[str]] = None,
        name: str = "list",
        page_size: int = 25,
    ) -> None:
        self._producer = producer
        self._key_fields = tuple(key_fields) if key_fields is not None else None
        self._name = name
        self._seq = 0
        self._applied_seq = 0
        self._last_key: Any = _NOTHING
        self._request: Optional[FetchRequest] = None
        self._token: Optional[CancellationToken] = None
        self._task: Optional[asyncio.Task] = None
        self._snapshot = FetchSnapshot(page_size=page_size)
        self._listeners = Listeners(f"{name} fetch")
        self._closed = False

    # ── State ─────────────────────────────────────────────────────────────────

    @property
    def snapshot(self) -> FetchSnapshot:
        return self._snapshot

    @property
    def request(self) -> Optional[FetchRequest]:
        """The most recently issued request."""
        return self._request

    @property
    def seq(self) -> int:
        return self._seq

    @property
    def applied_seq(self) -> int:
        return self._applied_seq

    def subscribe(self, callback: Callable[[FetchSnapshot], Any]) -> Callable[[], None]:
        return self._listeners.connect(callback)

    # ── Public API ────────────────────────────────────────────────────────────

    def set_state(self, state: Dict[str, Any]) -> Optional[FetchRequest]:
        """Issue a request if *state* differs by value from the last one issued."""
        if self._closed:
            return None
        key = self._project(state)
        if key == self._last_key:
            return None
        self._last_key = key
        return self._issue(state)

    def refresh(self) -> Optional[FetchRequest]:
        """Re-issue the current state as a new request, e.g. after a job finishes."""
        if self._closed or self._request is None:
            return None
        logger.info(f"{self._name}: refreshing page {self._request.state.get('page', '?')}")
        return self._issue(self._request.state)

    async def wait(self) -> FetchSnapshot:
        """Wait until the latest request has settled (or been superseded and settled)."""
        while self._task is not None and not self._task.done():
            await asyncio.wait({self._task})
        return self._snapshot

    def close(self) -> None:
        self._closed = True
        self._cancel_inflight()
        self._listeners.clear()

    # ── Internal helpers ──────────────────────────────────────────────────────

    def _project(self, state: Dict[str, Any]) -> Any:
        if self._key_fields is None:
            return copy.deepcopy(dict(state))
        return {name: copy.deepcopy(state.get(name)) for name in self._key_fields}

    def _issue(self, state: Dict[str, Any]) -> FetchRequest:
        self._cancel_inflight()
        self._seq += 1
        request = FetchRequest(seq=self._seq, state=copy.deepcopy(dict(state)))
        token = CancellationToken(f"{self._name}#{request.seq}")
        self._request = request
        self._token = token
        self._task = asyncio.get_running_loop().create_task(self._run(request, token))
        logger.debug(f"{self._name}: issued request #{request.seq}")
        self._update(is_loading=True)
        return request

    def _cancel_inflight(self) -> None:
        if self._token is not None:
            self._token.cancel()
        if self._task is not None and not self._task.done():
            self._task.cancel()

    async def _run(self, request: FetchRequest, token: CancellationToken) -> None:
        try:
            result = await self._producer(copy.deepcopy(dict(request.state)), token)
        except (asyncio.CancelledError, CancellationError):
            logger.debug(f"{self._name}: request #{request.seq} cancelled")
            return
        except Exception as exc:
            if token.cancelled:
                logger.debug(f"{self._name}: ignoring failure of cancelled request #{request.seq}")
                return
            self._fail(request, exc)
            return
        if token.cancelled:
            logger.debug(f"{self._name}: discarding result of cancelled request #{request.seq}")
            return
        self._apply(request, result)

    def _apply(self, request: FetchRequest, result: FetchResult) -> None:
        if request.seq != self._seq or request.seq <= self._applied_seq:
            logger.debug(
                f"{self._name}: discarding stale result #{request.seq} "
                f"(latest #{self._seq}, applied #{self._applied_seq})"
            )
            return
        self._applied_seq = request.seq
        logger.debug(f"{self._name}: applied #{request.seq} ({len(result.items)} of {result.total})")
        self._update(
            items=list(result.items),
            total=result.total,
            page=result.page,
            page_size=result.page_size,
            is_loading=False,
            error=None,
        )

    def _fail(self, request: FetchRequest, exc: Exception) -> None:
        if request.seq != self._seq:
            logger.debug(f"{self._name}: ignoring failure of superseded request #{request.seq}")
            return
        logger.warning(f"{self._name}: request #{request.seq} failed: {exc}")
        self._update(is_loading=False, error=str(exc) or exc.__class__.__name__)

    def _update(self, **changes: Any) -> None:
        self._snapshot = self._snapshot.model_copy(update=changes)
        self._listeners.emit(self._snapshot)
