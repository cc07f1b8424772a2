"""HTTP client for the candidate fetch contract."""

from typing import Protocol

import httpx
import structlog

from swipefeed.core.config import get_settings
from swipefeed.core.errors import FetchError, FetchErrorKind
from swipefeed.schemas.candidate import Filters

logger = structlog.get_logger()

ITEM_KEYS = ("data", "matches", "items")


class CandidateFetcher(Protocol):
    async def fetch_page(self, page: int, filters: Filters, limit: int, extra: dict | None = None) -> list: ...


def extract_items(payload) -> list:
    if isinstance(payload, list):
        return payload
    if not isinstance(payload, dict):
        return []
    for key in ITEM_KEYS:
        items = payload.get(key)
        if isinstance(items, list):
            return items
    return []


def _has_item_list(payload) -> bool:
    if isinstance(payload, list):
        return True
    return isinstance(payload, dict) and any(isinstance(payload.get(k), list) for k in ITEM_KEYS)


class HttpCandidateFetcher:
    def __init__(self, client: httpx.AsyncClient | None = None, base_url: str | None = None):
        settings = get_settings()
        self._base_url = (base_url or settings.CANDIDATE_API_URL).rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=settings.CANDIDATE_API_TIMEOUT_SECONDS)
        self._owns_client = client is None

    async def fetch_page(self, page: int, filters: Filters, limit: int, extra: dict | None = None) -> list:
        params = {"page": page, "limit": limit, **filters.to_params()}
        for key, value in (extra or {}).items():
            if value is not None:
                params[key] = str(value).lower() if isinstance(value, bool) else value

        try:
            resp = await self._client.get(
                f"{self._base_url}/matches/potential",
                params=params,
                headers={"Accept": "application/json"},
            )
        except httpx.TimeoutException as e:
            raise FetchError(FetchErrorKind.TIMEOUT, f"Candidate fetch timed out: {e}") from e
        except httpx.HTTPError as e:
            raise FetchError(FetchErrorKind.SERVER_ERROR, f"Candidate fetch failed: {e}") from e

        if resp.status_code == 404:
            logger.info("candidate_page_not_found", page=page)
            return []

        if resp.status_code >= 300:
            raise FetchError(
                FetchErrorKind.SERVER_ERROR,
                f"Server responded with status {resp.status_code}",
                status_code=resp.status_code,
            )

        try:
            payload = resp.json()
        except ValueError as e:
            raise FetchError(FetchErrorKind.SERVER_ERROR, "Invalid JSON in candidate response") from e

        items = extract_items(payload)
        if not items and not _has_item_list(payload):
            logger.warning("candidate_payload_unrecognized", page=page)
        return items

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
