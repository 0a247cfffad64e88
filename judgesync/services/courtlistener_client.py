"""Rate-limited client for the CourtListener REST API (v4).

Every request waits until at least ``request_delay_seconds`` have passed
since the previous request in this process finished, whether that request
succeeded or not.
List endpoints are paginated by following the provider's ``next`` link until
it runs out or the caller's record cap is reached.

Any non-2xx page is a hard failure: :class:`CourtListenerError` propagates
to the caller and whatever was collected so far is dropped. Single-resource
lookups treat 404 as "not found" and return ``None``.
"""
from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx

from judgesync.config import settings
from judgesync.utils.logger import logger


class CourtListenerError(Exception):
    """A CourtListener request failed (non-2xx, transport error or timeout)."""

    def __init__(self, message: str, *, status_code: Optional[int] = None, url: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.url = url


class CourtListenerRateLimitError(CourtListenerError):
    """The provider rejected a request with HTTP 429."""

    def __init__(self, message: str, *, retry_after: Optional[float] = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.retry_after = retry_after


@dataclass
class CourtListenerPage:
    results: List[Dict[str, Any]] = field(default_factory=list)
    next_url: Optional[str] = None
    count: Optional[int] = None


class RequestPacer:
    """Remembers when the last CourtListener request finished.

    One pacer is shared by every client in the process, so the delay also
    holds between back-to-back jobs that each open their own client.
    """

    def __init__(self) -> None:
        self.last_request_finished_at: Optional[float] = None

    def reset(self) -> None:
        self.last_request_finished_at = None


request_pacer = RequestPacer()


def _parse_retry_after(value: Optional[str]) -> Optional[float]:
    if not value:
        return None
    try:
        return float(value)
    except ValueError:
        return None


class CourtListenerClient:
    def __init__(
        self,
        api_token: Optional[str] = None,
        *,
        base_url: Optional[str] = None,
        request_delay_seconds: Optional[float] = None,
        page_size: Optional[int] = None,
        timeout_seconds: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
        pacer: Optional[RequestPacer] = None,
    ) -> None:
        token = api_token or settings.courtlistener_api_token
        if not token:
            raise CourtListenerError("COURTLISTENER_API_KEY is not configured")

        self.base_url = (base_url or settings.COURTLISTENER_BASE_URL).rstrip("/")
        self.request_delay_seconds = (
            settings.COURTLISTENER_REQUEST_DELAY_SECONDS if request_delay_seconds is None else request_delay_seconds
        )
        self.page_size = page_size or settings.COURTLISTENER_PAGE_SIZE
        timeout = timeout_seconds or settings.COURTLISTENER_TIMEOUT_SECONDS

        self._sleep = sleep
        self._clock = clock
        self._pacer = pacer or request_pacer
        self.request_count = 0

        self._http = httpx.AsyncClient(
            base_url=self.base_url,
            headers={
                "Authorization": f"Token {token}",
                "Accept": "application/json",
                "User-Agent": settings.COURTLISTENER_USER_AGENT,
            },
            timeout=httpx.Timeout(timeout, connect=5.0),
            transport=transport,
        )

    async def __aenter__(self) -> "CourtListenerClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    # ------------------------------------------------------------------
    # Low-level request handling
    # ------------------------------------------------------------------

    async def _wait_for_slot(self) -> None:
        last = self._pacer.last_request_finished_at
        if last is None or self.request_delay_seconds <= 0:
            return
        elapsed = self._clock() - last
        remaining = self.request_delay_seconds - elapsed
        if remaining > 0:
            await self._sleep(remaining)

    async def _get(self, url: str, params: Optional[Dict[str, Any]] = None) -> httpx.Response:
        await self._wait_for_slot()
        self.request_count += 1
        try:
            return await self._http.get(url, params=params)
        except httpx.TimeoutException as exc:
            raise CourtListenerError(f"CourtListener request timed out: {url}", url=url) from exc
        except httpx.RequestError as exc:
            raise CourtListenerError(f"CourtListener request error: {exc}", url=url) from exc
        finally:
            self._pacer.last_request_finished_at = self._clock()

    def _raise_for_status(self, resp: httpx.Response) -> None:
        if resp.is_success:
            return
        url = str(resp.request.url) if resp.request is not None else None
        body = resp.text[:300]
        if resp.status_code == 429:
            retry_after = _parse_retry_after(resp.headers.get("Retry-After"))
            logger.warning("CourtListener rate limit hit url=%s retry_after=%s", url, retry_after)
            raise CourtListenerRateLimitError(
                "CourtListener rate limit exceeded",
                retry_after=retry_after,
                status_code=429,
                url=url,
            )
        logger.error("CourtListener error status=%s url=%s body=%s", resp.status_code, url, body)
        raise CourtListenerError(
            f"CourtListener API error {resp.status_code}: {body}",
            status_code=resp.status_code,
            url=url,
        )

    async def get_json(self, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        resp = await self._get(path, params=params)
        self._raise_for_status(resp)
        try:
            return resp.json()
        except ValueError as exc:
            raise CourtListenerError(f"CourtListener returned invalid JSON for {path}", url=path) from exc

    async def get_optional(self, path: str, params: Optional[Dict[str, Any]] = None) -> Optional[Dict[str, Any]]:
        """Fetch a single resource; 404 means it does not exist."""
        resp = await self._get(path, params=params)
        if resp.status_code == 404:
            return None
        self._raise_for_status(resp)
        try:
            return resp.json()
        except ValueError as exc:
            raise CourtListenerError(f"CourtListener returned invalid JSON for {path}", url=path) from exc

    async def get_page(self, path: str, params: Optional[Dict[str, Any]] = None) -> CourtListenerPage:
        data = await self.get_json(path, params=params)
        return CourtListenerPage(
            results=list(data.get("results") or []),
            next_url=data.get("next") or None,
            count=data.get("count"),
        )

    async def paginate(
        self,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        *,
        max_records: int,
    ) -> List[Dict[str, Any]]:
        """Collect records across pages, stopping at ``max_records``."""
        if max_records <= 0:
            return []

        query = dict(params or {})
        query.setdefault("page_size", min(self.page_size, max_records))
        records: List[Dict[str, Any]] = []

        page = await self.get_page(path, params=query)
        pages = 1
        records.extend(page.results)
        while page.next_url and len(records) < max_records and page.results:
            # The next link already carries every query parameter.
            page = await self.get_page(page.next_url)
            pages += 1
            records.extend(page.results)

        logger.info(
            "CourtListener %s: %s records over %s page(s) (cap %s)",
            path,
            min(len(records), max_records),
            pages,
            max_records,
        )
        return records[:max_records]

    # ------------------------------------------------------------------
    # Resources
    # ------------------------------------------------------------------

    async def list_opinions_by_judge(
        self,
        judge_id: str,
        *,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
        max_records: int = 200,
    ) -> List[Dict[str, Any]]:
        params: Dict[str, Any] = {
            "author": judge_id,
            "ordering": "-date_created",
        }
        if start_date:
            params["cluster__date_filed__gte"] = start_date
        if end_date:
            params["cluster__date_filed__lte"] = end_date
        return await self.paginate("/opinions/", params, max_records=max_records)

    async def list_dockets_by_judge(
        self,
        judge_id: str,
        *,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
        max_records: int = 300,
    ) -> List[Dict[str, Any]]:
        params: Dict[str, Any] = {
            "assigned_to_id": judge_id,
            "ordering": "-date_filed",
        }
        if start_date:
            params["date_filed__gte"] = start_date
        if end_date:
            params["date_filed__lte"] = end_date
        return await self.paginate("/dockets/", params, max_records=max_records)

    async def list_courts(self, *, max_records: int = 500) -> List[Dict[str, Any]]:
        # CourtListener's own "jurisdiction" field is a court-level code (F, S,
        # SA, ...), not a state, so state filtering happens after translation.
        params: Dict[str, Any] = {"in_use": "true", "ordering": "id"}
        return await self.paginate("/courts/", params, max_records=max_records)

    async def get_person(self, person_id: str) -> Optional[Dict[str, Any]]:
        return await self.get_optional(f"/people/{person_id}/")

    async def get_cluster(self, cluster_id: str) -> Optional[Dict[str, Any]]:
        return await self.get_optional(f"/clusters/{cluster_id}/")

    async def get_court(self, court_id: str) -> Optional[Dict[str, Any]]:
        return await self.get_optional(f"/courts/{court_id}/")
