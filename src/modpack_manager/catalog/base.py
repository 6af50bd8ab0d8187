from pathlib import Path
from typing import Protocol

from modpack_manager.constants import ContentType
from modpack_manager.schemas.catalog import CatalogFile, CatalogMod


class CatalogClient(Protocol):
    """What the reconciliation services need from a content catalog."""

    async def search_mods(
        self,
        query: str,
        *,
        game_version: str | None = None,
        loader: str | None = None,
        content_type: ContentType = ContentType.mod,
        page_size: int = 20,
    ) -> list[CatalogMod]: ...

    async def get_mod(self, project_id: int) -> CatalogMod | None: ...

    async def get_file(self, project_id: int, file_id: int) -> CatalogFile | None: ...

    async def get_mod_files(
        self,
        project_id: int,
        *,
        game_version: str | None = None,
        loader: str | None = None,
    ) -> list[CatalogFile]: ...

    async def get_best_file(
        self,
        project_id: int,
        game_version: str,
        loader: str,
        content_type: ContentType = ContentType.mod,
    ) -> CatalogFile | None: ...

    async def download_file(self, file: CatalogFile, dest: Path) -> Path: ...
