from __future__ import annotations
from typing import Any, Dict, Iterable, List, Optional

import httpx
import orjson

from ...infra.timings import timeit
from .entry import CatalogEntry

FIELDS = (
    "_id, name, sku, description, price, testPrice, currency, badge, "
    "available, soldOut, bundleSize, inventory, sold, reserved, "
    "allowOversell, live, order, type"
)

# listings: availability-guarded first, older-schema fallback without it
Q_LISTING = (
    '*[_type=="ticket" && type==$type && '
    '(available==true || !defined(available))]'
    '|order(order asc){' + FIELDS + '}'
)
Q_LISTING_FALLBACK = (
    '*[_type=="ticket" && type==$type]|order(order asc){' + FIELDS + '}'
)
Q_BY_SKU = (
    '*[_type=="ticket" && (sku in $skus || _id in $ids)]{' + FIELDS + '}'
)


class SanityCatalog:
    """Catalog read from the content store's HTTP query API."""

    def __init__(
        self,
        *,
        http: httpx.AsyncClient,
        project_id: str,
        dataset: str = "production",
        api_version: str = "2023-05-03",
        token: Optional[str] = None,
    ) -> None:
        self.http = http
        self.url = (
            f"https://{project_id}.api.sanity.io/v{api_version}"
            f"/data/query/{dataset}"
        )
        self.token = token

    async def _query(self, query: str, **params: Any) -> List[Dict[str, Any]]:
        qp = {"query": query}
        for k, v in params.items():
            qp[f"${k}"] = orjson.dumps(v).decode()
        headers = {}
        if self.token:
            headers["authorization"] = f"Bearer {self.token}"
        async with timeit("catalog.query"):
            r = await self.http.get(self.url, params=qp, headers=headers)
        r.raise_for_status()
        result = r.json().get("result")
        return result if isinstance(result, list) else []

    async def _listing(self, kind: str) -> List[CatalogEntry]:
        docs = await self._query(Q_LISTING, type=kind)
        if not docs:
            docs = await self._query(Q_LISTING_FALLBACK, type=kind)
        return [CatalogEntry.from_doc(d) for d in docs]

    async def list_addons(self) -> List[CatalogEntry]:
        return await self._listing("addon")

    async def list_tickets(self) -> List[CatalogEntry]:
        docs = await self._query(
            '*[_type=="ticket" && type!="addon" && '
            '(available==true || !defined(available))]'
            '|order(order asc){' + FIELDS + '}'
        )
        return [CatalogEntry.from_doc(d) for d in docs]

    async def get_entries(self, skus: Iterable[str]) -> Dict[str, CatalogEntry]:
        skus = sorted({s.strip() for s in skus if s and s.strip()})
        if not skus:
            return {}
        docs = await self._query(
            Q_BY_SKU, skus=skus, ids=[f"ticket.{s}" for s in skus]
        )
        by_sku = {}
        by_id = {}
        for d in docs:
            e = CatalogEntry.from_doc(d)
            by_sku[e.sku] = e
            by_id[e.id] = e
        out = {}
        for s in skus:
            e = by_sku.get(s) or by_id.get(f"ticket.{s}")
            if e is not None:
                out[s] = e
        return out
