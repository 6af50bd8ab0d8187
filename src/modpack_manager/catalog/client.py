import logging
from pathlib import Path
from types import TracebackType
from typing import Any, Self
from urllib.parse import quote

import httpx

from modpack_manager.catalog.retry import with_retry
from modpack_manager.constants import CF_CLASS_IDS, CF_GAME_ID, CF_LOADER_TYPES, ContentType
from modpack_manager.errors import ExternalServiceError
from modpack_manager.schemas.catalog import CatalogDependency, CatalogFile, CatalogMod

logger = logging.getLogger(__name__)

BASE_URL = "https://api.curseforge.com"
CDN_URL = "https://edge.forgecdn.net"

_STREAM_CHUNK_SIZE = 65_536  # 64 KB


def cdn_url_for(file_id: int, file_name: str) -> str:
    """Fallback CDN path for files the API returns without a download URL."""
    return f"{CDN_URL}/files/{file_id // 1000}/{file_id % 1000}/{quote(file_name)}"


def parse_file(data: dict[str, Any]) -> CatalogFile:
    return CatalogFile(
        id=data["id"],
        project_id=data.get("modId", 0),
        display_name=data.get("displayName", ""),
        file_name=data.get("fileName", ""),
        file_length=data.get("fileLength", 0),
        download_url=data.get("downloadUrl"),
        game_versions=data.get("gameVersions", []),
        release_type=data.get("releaseType", 1),
        file_date=data.get("fileDate", ""),
        dependencies=[
            CatalogDependency(project_id=d["modId"], relation_type=d["relationType"])
            for d in data.get("dependencies", [])
        ],
    )


def parse_mod(data: dict[str, Any]) -> CatalogMod:
    logo = data.get("logo") or {}
    return CatalogMod(
        id=data["id"],
        name=data.get("name", ""),
        slug=data.get("slug", ""),
        summary=data.get("summary", ""),
        class_id=data.get("classId"),
        download_count=data.get("downloadCount", 0),
        logo_url=logo.get("url"),
        authors=[a.get("name", "") for a in data.get("authors", [])],
    )


class CurseForgeClient:
    def __init__(
        self,
        api_key: str,
        *,
        max_retries: int = 3,
        retry_base_delay: float = 1.0,
        retry_max_delay: float = 30.0,
    ) -> None:
        self._api_key = api_key
        self._client: httpx.AsyncClient | None = None
        self._max_retries = max_retries
        self._retry_base_delay = retry_base_delay
        self._retry_max_delay = retry_max_delay

    async def __aenter__(self) -> Self:
        self._client = httpx.AsyncClient(
            base_url=BASE_URL,
            headers={"x-api-key": self._api_key, "Accept": "application/json"},
            timeout=30.0,
        )
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        if self._client:
            await self._client.aclose()

    @property
    def client(self) -> httpx.AsyncClient:
        if not self._client:
            raise RuntimeError("CurseForgeClient not entered as context manager")
        return self._client

    async def _get(self, path: str, params: dict[str, Any] | None = None) -> Any:
        try:
            resp = await self.client.get(path, params=params)
        except httpx.TransportError as e:
            raise ExternalServiceError(f"Catalog unreachable: {e}", retryable=True) from e
        if resp.status_code == 404:
            return None
        if resp.status_code == 429:
            raise ExternalServiceError("Catalog rate limit hit", status_code=429, retryable=True)
        if resp.status_code >= 400:
            raise ExternalServiceError(
                f"Catalog API error: {resp.status_code}",
                status_code=resp.status_code,
                retryable=resp.status_code >= 500,
            )
        return resp.json()

    async def _get_retrying(self, path: str, params: dict[str, Any] | None = None) -> Any:
        return await with_retry(
            lambda: self._get(path, params),
            max_retries=self._max_retries,
            base_delay=self._retry_base_delay,
            max_delay=self._retry_max_delay,
            label=f"GET {path}",
        )

    async def search_mods(
        self,
        query: str,
        *,
        game_version: str | None = None,
        loader: str | None = None,
        content_type: ContentType = ContentType.mod,
        page_size: int = 20,
    ) -> list[CatalogMod]:
        params: dict[str, Any] = {
            "gameId": CF_GAME_ID,
            "classId": CF_CLASS_IDS[content_type],
            "searchFilter": query,
            "pageSize": page_size,
        }
        if game_version:
            params["gameVersion"] = game_version
        if loader and content_type == ContentType.mod:
            loader_type = CF_LOADER_TYPES.get(loader.lower())
            if loader_type is not None:
                params["modLoaderType"] = loader_type
        data = await self._get("/v1/mods/search", params)
        return [parse_mod(m) for m in (data or {}).get("data", [])]

    async def get_mod(self, project_id: int) -> CatalogMod | None:
        data = await self._get_retrying(f"/v1/mods/{project_id}")
        if not data or not data.get("data"):
            return None
        return parse_mod(data["data"])

    async def get_file(self, project_id: int, file_id: int) -> CatalogFile | None:
        data = await self._get_retrying(f"/v1/mods/{project_id}/files/{file_id}")
        if not data or not data.get("data"):
            return None
        return parse_file(data["data"])

    async def get_mod_files(
        self,
        project_id: int,
        *,
        game_version: str | None = None,
        loader: str | None = None,
    ) -> list[CatalogFile]:
        params: dict[str, Any] = {"pageSize": 50, "index": 0}
        if game_version:
            params["gameVersion"] = game_version
        if loader:
            loader_type = CF_LOADER_TYPES.get(loader.lower())
            if loader_type is not None:
                params["modLoaderType"] = loader_type
        data = await self._get_retrying(f"/v1/mods/{project_id}/files", params)
        return [parse_file(f) for f in (data or {}).get("data", [])]

    async def get_best_file(
        self,
        project_id: int,
        game_version: str,
        loader: str,
        content_type: ContentType = ContentType.mod,
    ) -> CatalogFile | None:
        """Newest release file for the target, falling back to the newest file.

        Packs ignore the loader. For mods with no loader-filtered match, files
        whose game-version tags name the loader are accepted.
        """
        is_mod = content_type == ContentType.mod
        if is_mod:
            files = await self.get_mod_files(project_id, game_version=game_version, loader=loader)
        else:
            files = await self.get_mod_files(project_id, game_version=game_version)

        if not files:
            all_files = await self.get_mod_files(project_id, game_version=game_version)
            if not all_files:
                return None
            if is_mod:
                wanted = loader.lower()
                files = [f for f in all_files if any(g.lower() == wanted for g in f.game_versions)]
                if not files:
                    return None
            else:
                files = all_files

        files.sort(key=lambda f: f.id, reverse=True)
        releases = [f for f in files if f.release_type == 1]
        return releases[0] if releases else files[0]

    async def download_file(self, file: CatalogFile, dest: Path) -> Path:
        """Stream ``file`` to ``dest`` through a separate CDN client, with retries."""
        url = file.download_url or cdn_url_for(file.id, file.file_name)
        dest.parent.mkdir(parents=True, exist_ok=True)
        tmp = dest.with_name(dest.name + ".part")

        async def _attempt() -> Path:
            async with (
                httpx.AsyncClient(follow_redirects=True, timeout=300.0) as cdn_client,
                cdn_client.stream("GET", url) as resp,
            ):
                resp.raise_for_status()
                with open(tmp, "wb") as f:
                    async for chunk in resp.aiter_bytes(chunk_size=_STREAM_CHUNK_SIZE):
                        f.write(chunk)
            tmp.replace(dest)
            return dest

        try:
            return await with_retry(
                _attempt,
                max_retries=self._max_retries,
                base_delay=self._retry_base_delay,
                max_delay=self._retry_max_delay,
                label=f"download {file.file_name}",
            )
        except httpx.HTTPError as e:
            tmp.unlink(missing_ok=True)
            raise ExternalServiceError(f"Download failed for {file.file_name}: {e}") from e
