"""Async client for the catalog data service (list, mutation and job endpoints)."""

from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import httpx
from loguru import logger

from config.settings import settings
from engine.cancellation import CancellationToken
from engine.errors import NetworkError, ServerError
from models.fetch import FetchResult
from models.job import JobStatus

Params = Union[Dict[str, Any], Sequence[Tuple[str, str]]]


class CatalogClient:
    """
    Thin ``httpx.AsyncClient`` wrapper that speaks the data service's JSON
    conventions and maps every failure onto the console's error taxonomy:

    * transport failures → :class:`NetworkError`
    * non-2xx answers    → :class:`ServerError` (message from ``{"error": ...}``)

    Idempotent GETs are retried with linear back-off; mutations never are.
    """

    DEFAULT_HEADERS = {
        "User-Agent": "catalog-console/1.0",
        "Accept": "application/json",
    }

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        retry_delay: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._base_url = base_url or settings.api_base_url
        self._timeout = settings.request_timeout_seconds if timeout is None else timeout
        self._max_retries = settings.request_max_retries if max_retries is None else max_retries
        self._retry_delay = settings.request_retry_delay_seconds if retry_delay is None else retry_delay
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self) -> "CatalogClient":
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            headers=self.DEFAULT_HEADERS,
            timeout=self._timeout,
            follow_redirects=True,
            transport=self._transport,
        )
        return self

    async def __aexit__(self, *args: Any) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    # ── List endpoints ────────────────────────────────────────────────────────

    async def list_rows(
        self,
        collection: str,
        params: Params,
        token: Optional[CancellationToken] = None,
    ) -> FetchResult:
        """Fetch one page of *collection*; page fields missing from the body fall back to *params*."""
        if token is not None:
            token.raise_if_cancelled()
        payload = await self.get_json(collection, params=params, token=token)
        if token is not None:
            token.raise_if_cancelled()
        if not isinstance(payload, dict):
            raise ServerError(200, f"Unexpected list payload from {collection}")

        sent = dict(params.items() if isinstance(params, dict) else params)
        payload.setdefault("page", _as_int(sent.get("page"), 1))
        payload.setdefault("pageSize", _as_int(sent.get("pageSize", sent.get("page_size")), 25))
        if payload.get("items") is None:
            payload["items"] = []
        if payload.get("total") is None:
            payload["total"] = 0
        return FetchResult.model_validate(payload)

    # ── Mutations ─────────────────────────────────────────────────────────────

    async def mutate(
        self,
        method: str,
        resource: str,
        body: Optional[Dict[str, Any]] = None,
    ) -> Optional[Dict[str, Any]]:
        """Send a mutation; returns the authoritative fields, or None for a bare acknowledgement."""
        client = self._require_client()
        logger.debug(f"{method.upper()} {resource}")
        try:
            response = await client.request(method.upper(), resource, json=body)
        except httpx.RequestError as exc:
            raise NetworkError(f"{method.upper()} {resource} failed: {exc}") from exc
        _raise_for_status(response)
        if not response.content:
            return None
        try:
            payload = response.json()
        except ValueError:
            return None
        if not isinstance(payload, dict):
            return None
        fields = {key: value for key, value in payload.items() if key != "ok"}
        return fields or None

    # ── Background jobs ───────────────────────────────────────────────────────

    async def start_job(
        self,
        job: str,
        targets: Optional[List[str]] = None,
        target_key: str = "targets",
    ) -> Optional[JobStatus]:
        """``POST <job>/generate``; omitting *targets* asks for every pending target."""
        body: Dict[str, Any] = {}
        if targets:
            body[target_key] = list(targets)
        payload = await self.mutate("POST", f"{job.rstrip('/')}/generate", body)
        if payload and "status" in payload:
            return JobStatus.model_validate(payload)
        return None

    async def job_status(self, job: str) -> JobStatus:
        payload = await self.get_json(f"{job.rstrip('/')}/status")
        if not isinstance(payload, dict):
            raise ServerError(200, f"Unexpected status payload from {job}")
        return JobStatus.model_validate(payload)

    # ── Generic reads ─────────────────────────────────────────────────────────

    async def get_json(
        self,
        path: str,
        params: Optional[Params] = None,
        token: Optional[CancellationToken] = None,
    ) -> Any:
        """GET *path* and decode its JSON body, retrying transport errors and 5xx answers."""
        client = self._require_client()
        attempts = self._max_retries + 1
        for attempt in range(1, attempts + 1):
            try:
                response = await client.get(path, params=params)
                _raise_for_status(response)
                return response.json()
            except httpx.RequestError as exc:
                logger.warning(f"[attempt {attempt}] Request error for {path}: {exc}")
                if attempt == attempts:
                    raise NetworkError(f"GET {path} failed: {exc}") from exc
            except ServerError as exc:
                logger.warning(f"[attempt {attempt}] HTTP {exc.status_code} for {path}")
                if exc.status_code < 500 or attempt == attempts:
                    raise
            except ValueError as exc:
                raise ServerError(200, f"Invalid JSON from {path}") from exc
            if token is not None:
                token.raise_if_cancelled()
            await asyncio.sleep(attempt * self._retry_delay)
        raise NetworkError(f"GET {path} failed")

    # ── Internal helpers ──────────────────────────────────────────────────────

    def _require_client(self) -> httpx.AsyncClient:
        assert self._client is not None, "Use as async context manager."
        return self._client


def _raise_for_status(response: httpx.Response) -> None:
    if response.is_success:
        return
    message: Optional[str] = None
    try:
        payload = response.json()
        if isinstance(payload, dict) and payload.get("error"):
            message = str(payload["error"])
    except ValueError:
        pass
    if not message:
        message = response.text.strip() or None
    raise ServerError(response.status_code, message)


def _as_int(value: Any, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default
