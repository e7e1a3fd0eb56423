"""
Thin async client for the Square Catalog, Locations and Inventory APIs.

Only the three paged calls the sync pipeline needs. Each call is a single
request; callers drive pagination and nothing here retries.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence
import logging

import httpx

from schemas import MerchantAccount
from settings import CATALOG_OBJECT_TYPES, SQUARE_ENV, SQUARE_TIMEOUT_SECONDS, SQUARE_VERSION
from services.errors import SquareAuthError, TransientIOError

logger = logging.getLogger(__name__)

SQUARE_BASE_URLS = {
    "sandbox": "https://connect.squareupsandbox.com",
    "production": "https://connect.squareup.com",
}


def square_base_url(env: Optional[str]) -> str:
    return SQUARE_BASE_URLS["sandbox" if (env or "").lower() == "sandbox" else "production"]


@dataclass
class Page:
    """One page of a cursor-paginated response."""
    items: List[Dict[str, Any]] = field(default_factory=list)
    cursor: Optional[str] = None


class SquareClient:
    def __init__(
        self,
        access_token: str,
        env: str = SQUARE_ENV,
        *,
        http_client: Optional[httpx.AsyncClient] = None,
        square_version: str = SQUARE_VERSION,
    ):
        self.env = env
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(
            base_url=square_base_url(env),
            timeout=httpx.Timeout(SQUARE_TIMEOUT_SECONDS),
            limits=httpx.Limits(max_keepalive_connections=2, max_connections=4),
        )
        self._headers = {
            "Authorization": f"Bearer {access_token}",
            "Square-Version": square_version,
            "Accept": "application/json",
        }

    async def __aenter__(self) -> "SquareClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()

    async def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        try:
            response = await self._http.request(method, path, headers=self._headers, **kwargs)
        except httpx.HTTPError as exc:
            raise TransientIOError(f"{method} {path} failed: {exc}") from exc

        if response.status_code in (401, 403):
            raise SquareAuthError(
                f"{method} {path} rejected with {response.status_code}",
                status_code=response.status_code,
            )
        if response.status_code >= 400:
            raise TransientIOError(
                f"{method} {path} returned {response.status_code}: {response.text[:300]}",
                status_code=response.status_code,
            )
        try:
            body = response.json()
        except ValueError as exc:
            raise TransientIOError(f"{method} {path} returned a non-JSON body") from exc
        return body if isinstance(body, dict) else {}

    async def list_catalog(
        self,
        cursor: Optional[str] = None,
        types: Sequence[str] = CATALOG_OBJECT_TYPES,
    ) -> Page:
        params = {"types": ",".join(types)}
        if cursor:
            params["cursor"] = cursor
        body = await self._request("GET", "/v2/catalog/list", params=params)
        return Page(items=list(body.get("objects") or []), cursor=body.get("cursor") or None)

    async def list_locations(self) -> List[Dict[str, Any]]:
        body = await self._request("GET", "/v2/locations")
        return list(body.get("locations") or [])

    async def batch_retrieve_inventory_counts(
        self,
        location_ids: Sequence[str],
        cursor: Optional[str] = None,
    ) -> Page:
        payload: Dict[str, Any] = {"location_ids": list(location_ids)}
        if cursor:
            payload["cursor"] = cursor
        body = await self._request("POST", "/v2/inventory/counts/batch-retrieve", json=payload)
        return Page(items=list(body.get("counts") or []), cursor=body.get("cursor") or None)


def create_square_client(merchant: MerchantAccount) -> SquareClient:
    """Build a client bound to one merchant's token and environment."""
    if not merchant.access_token:
        raise SquareAuthError(f"Missing Square access token for merchant {merchant.id}")
    logger.info("Square client for merchant %s env=%s", merchant.id, merchant.env)
    return SquareClient(merchant.access_token, merchant.env)
