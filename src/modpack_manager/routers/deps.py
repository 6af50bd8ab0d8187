"""Shared FastAPI dependencies used across routers."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import HTTPException, Request
from sqlmodel import Session, select

from modpack_manager.catalog.base import CatalogClient
from modpack_manager.catalog.client import CurseForgeClient
from modpack_manager.config import settings
from modpack_manager.errors import (
    AlreadyExistsError,
    EmptyCommitError,
    ExternalServiceError,
    LockedModError,
    ManifestValidationError,
    ModpackManagerError,
    NotFoundError,
)
from modpack_manager.models.modpack import Modpack
from modpack_manager.publish.gist import GistClient
from modpack_manager.services.locks import ModpackLocks


def get_modpack_or_404(modpack_id: str, session: Session) -> Modpack:
    """Look up a modpack by id, raising 404 if not found."""
    modpack = session.get(Modpack, modpack_id)
    if not modpack:
        raise HTTPException(404, f"Modpack '{modpack_id}' not found")
    return modpack


@asynccontextmanager
async def locked_modpack(
    modpack_id: str, session: Session, locks: ModpackLocks
) -> AsyncIterator[Modpack]:
    """Hold the modpack's lock and yield it as loaded after the wait.

    The row is re-read once the lock is held, so a request queued behind
    another mutation sees that mutation's result.
    """
    if session.exec(select(Modpack.id).where(Modpack.id == modpack_id)).first() is None:
        raise HTTPException(404, f"Modpack '{modpack_id}' not found")
    async with locks.hold(modpack_id):
        modpack = session.get(Modpack, modpack_id, populate_existing=True)
        if modpack is None:
            raise HTTPException(404, f"Modpack '{modpack_id}' not found")
        yield modpack


@asynccontextmanager
async def locked_share_code(
    share_code: str | None, session: Session, locks: ModpackLocks
) -> AsyncIterator[None]:
    """Hold the lock of the modpack an import with ``share_code`` updates in place."""
    existing = (
        session.exec(select(Modpack.id).where(Modpack.share_code == share_code)).first()
        if share_code
        else None
    )
    if existing is None:
        yield
        return
    async with locks.hold(existing):
        yield


def get_locks(request: Request) -> ModpackLocks:
    return request.app.state.locks


async def get_catalog() -> AsyncIterator[CatalogClient]:
    if not settings.curseforge_api_key:
        raise HTTPException(400, "CurseForge API key not configured")
    async with CurseForgeClient(
        settings.curseforge_api_key,
        max_retries=settings.download_max_retries,
        retry_base_delay=settings.download_retry_base_delay,
        retry_max_delay=settings.download_retry_max_delay,
    ) as client:
        yield client


async def get_gist_client() -> AsyncIterator[GistClient]:
    if not settings.github_token:
        raise HTTPException(400, "GitHub token not configured")
    async with GistClient(settings.github_token) as client:
        yield client


def http_error(exc: ModpackManagerError) -> HTTPException:
    """Map a service error onto the HTTP status the routers return."""
    if isinstance(exc, NotFoundError):
        return HTTPException(404, str(exc))
    if isinstance(exc, LockedModError | EmptyCommitError | AlreadyExistsError):
        return HTTPException(409, str(exc))
    if isinstance(exc, ManifestValidationError):
        return HTTPException(422, str(exc))
    if isinstance(exc, ExternalServiceError):
        if exc.status_code == 429:
            return HTTPException(429, f"Rate limited: {exc}")
        return HTTPException(502, str(exc))
    return HTTPException(400, str(exc))
