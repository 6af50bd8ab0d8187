"""GitHub Gist as a publish target for native manifests.

A gist holds one manifest file. Its raw URL without a revision segment always
serves the latest content, so that URL is what subscribers store.
"""

import logging
import re
from types import TracebackType
from typing import Any, Self

import httpx
from pydantic import BaseModel

from modpack_manager.errors import ExternalServiceError

logger = logging.getLogger(__name__)

BASE_URL = "https://api.github.com"

# https://gist.githubusercontent.com/<user>/<gist_id>/raw/<revision>/<file>
_RAW_REVISION_RE = re.compile(
    r"^(https://gist\.githubusercontent\.com/[^/]+/[0-9a-f]+/raw)/[0-9a-f]{40}/(.+)$"
)


def strip_gist_revision(url: str) -> str:
    """Point a revision-pinned gist raw URL at the latest revision."""
    m = _RAW_REVISION_RE.match(url)
    return f"{m.group(1)}/{m.group(2)}" if m else url


class GistFile(BaseModel):
    gist_id: str
    html_url: str
    raw_url: str
    content: str | None = None


class GistClient:
    def __init__(self, token: str) -> None:
        self._token = token
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> Self:
        self._client = httpx.AsyncClient(
            base_url=BASE_URL,
            headers={
                "Authorization": f"Bearer {self._token}",
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": "2022-11-28",
            },
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
            self._client = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            raise RuntimeError("GistClient not entered as context manager")
        return self._client

    async def _request(self, method: str, path: str, payload: dict[str, Any] | None = None) -> Any:
        try:
            resp = await self.client.request(method, path, json=payload)
        except httpx.TransportError as e:
            raise ExternalServiceError(f"Gist request failed: {e}", retryable=True) from e
        if resp.status_code == 404:
            raise ExternalServiceError("Gist not found", status_code=404)
        if resp.status_code >= 400:
            raise ExternalServiceError(
                f"Gist API error {resp.status_code}: {resp.text[:200]}",
                status_code=resp.status_code,
                retryable=resp.status_code >= 500,
            )
        return resp.json()

    @staticmethod
    def _to_file(data: dict[str, Any], filename: str | None = None) -> GistFile:
        files: dict[str, Any] = data.get("files") or {}
        entry = files.get(filename) if filename else next(iter(files.values()), None)
        if entry is None:
            raise ExternalServiceError(f"Gist {data.get('id')} has no file '{filename}'")
        return GistFile(
            gist_id=data["id"],
            html_url=data.get("html_url", ""),
            raw_url=strip_gist_revision(entry.get("raw_url", "")),
            content=entry.get("content"),
        )

    async def create_gist(
        self, filename: str, content: str, *, public: bool = False, description: str = ""
    ) -> GistFile:
        data = await self._request(
            "POST",
            "/gists",
            {"description": description, "public": public, "files": {filename: {"content": content}}},
        )
        logger.info("Created gist %s", data.get("id"))
        return self._to_file(data, filename)

    async def update_gist(self, gist_id: str, filename: str, content: str) -> GistFile:
        data = await self._request(
            "PATCH", f"/gists/{gist_id}", {"files": {filename: {"content": content}}}
        )
        logger.info("Updated gist %s", gist_id)
        return self._to_file(data, filename)

    async def get_gist(self, gist_id: str, filename: str | None = None) -> GistFile:
        data = await self._request("GET", f"/gists/{gist_id}")
        return self._to_file(data, filename)
