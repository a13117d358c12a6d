# model/catalog/__init__.py
from typing import Dict, Iterable, List, Optional, Protocol

import httpx

from .entry import ADDON, TICKET, CatalogEntry
from ._sanity import SanityCatalog
from ._static import StaticCatalog


class CatalogReader(Protocol):
    async def list_addons(self) -> List[CatalogEntry]: ...

    async def list_tickets(self) -> List[CatalogEntry]: ...

    async def get_entries(
            self, skus: Iterable[str]) -> Dict[str, CatalogEntry]: ...


# Factory keeps server.py simple and backend-agnostic:
def new_reader(*, backend: str,
               catalog_file: Optional[str] = None,
               http: Optional[httpx.AsyncClient] = None,
               project_id: str = "",
               dataset: str = "production",
               api_version: str = "2023-05-03",
               token: Optional[str] = None) -> CatalogReader:
    if backend == "sanity":
        if http is None:
            raise RuntimeError("catalog(sanity) requires http=AsyncClient")
        if not project_id:
            raise RuntimeError("catalog(sanity) requires SANITY_PROJECT_ID")
        return SanityCatalog(http=http, project_id=project_id,
                             dataset=dataset, api_version=api_version,
                             token=token)
    if backend == "static":
        if not catalog_file:
            raise RuntimeError("catalog(static) requires CATALOG_FILE")
        return StaticCatalog.from_file(catalog_file)
    raise RuntimeError(f"unknown CATALOG_BACKEND: {backend}")


__all__ = [
    "ADDON", "TICKET", "CatalogEntry", "CatalogReader",
    "SanityCatalog", "StaticCatalog", "new_reader",
]
