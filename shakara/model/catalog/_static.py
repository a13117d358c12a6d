from __future__ import annotations
import json
from typing import Any, Dict, Iterable, List

from .entry import ADDON, TICKET, CatalogEntry


class StaticCatalog:
    """Catalog held in memory, loaded from a JSON list of documents."""

    def __init__(self, entries: Iterable[CatalogEntry]) -> None:
        self._entries = {e.sku: e for e in entries}

    @classmethod
    def from_file(cls, path: str) -> "StaticCatalog":
        with open(path, "rb") as f:
            docs = json.load(f)
        return cls(CatalogEntry.from_doc(d) for d in docs)

    def _listing(self, category: str) -> List[CatalogEntry]:
        rows = [
            e for e in self._entries.values()
            if e.category == category and e.available
        ]
        if not rows:
            rows = [
                e for e in self._entries.values() if e.category == category
            ]
        return sorted(rows, key=lambda e: (e.order, e.sku))

    async def list_addons(self) -> List[CatalogEntry]:
        return self._listing(ADDON)

    async def list_tickets(self) -> List[CatalogEntry]:
        return self._listing(TICKET)

    async def get_entries(self, skus: Iterable[str]) -> Dict[str, CatalogEntry]:
        out: Dict[str, Any] = {}
        for sku in skus:
            e = self._entries.get(sku)
            if e is not None:
                out[sku] = e
        return out
