"""Endpoints for export, publishing and remote subscriptions."""

from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from sqlmodel import Session

from modpack_manager.catalog.base import CatalogClient
from modpack_manager.database import get_session
from modpack_manager.errors import ModpackManagerError
from modpack_manager.publish.gist import GistClient
from modpack_manager.routers.deps import (
    get_catalog,
    get_gist_client,
    get_locks,
    get_modpack_or_404,
    locked_modpack,
    http_error,
)
from modpack_manager.schemas.imports import ImportOutcome
from modpack_manager.schemas.manifest import ExportResult
from modpack_manager.schemas.modpack import ModpackOut
from modpack_manager.schemas.remote import PublishResult, RemoteSourceSet, RemoteUpdateCheck
from modpack_manager.services.locks import ModpackLocks
from modpack_manager.services.manifest_service import export_cf_manifest, export_native_manifest
from modpack_manager.services.modpack_service import modpack_to_out
from modpack_manager.services.publish_service import publish_modpack
from modpack_manager.services.remote_service import (
    apply_remote_update,
    check_for_update,
    clear_remote_source,
    set_remote_source,
)

router = APIRouter(prefix="/modpacks/{modpack_id}", tags=["remote"])


@router.get("/export", response_model=ExportResult)
async def export_native(
    modpack_id: str,
    history: str = "full",
    session: Session = Depends(get_session),
) -> ExportResult:
    """Native manifest; ``history`` is ``full``, ``current`` or ``none``."""
    if history not in ("full", "current", "none"):
        raise HTTPException(422, "history must be one of full, current, none")
    return export_native_manifest(session, get_modpack_or_404(modpack_id, session), history)


@router.get("/export/pack")
async def export_pack(
    modpack_id: str, author: str = "", session: Session = Depends(get_session)
) -> dict[str, Any]:
    return export_cf_manifest(session, get_modpack_or_404(modpack_id, session), author)


@router.post("/publish", response_model=PublishResult)
async def publish(
    modpack_id: str,
    public: bool = False,
    session: Session = Depends(get_session),
    client: GistClient = Depends(get_gist_client),
    locks: ModpackLocks = Depends(get_locks),
) -> PublishResult:
    async with locked_modpack(modpack_id, session, locks) as modpack:
        try:
            return await publish_modpack(session, modpack, client, public=public)
        except ModpackManagerError as exc:
            raise http_error(exc) from exc


@router.put("/remote", response_model=ModpackOut)
async def set_remote(
    modpack_id: str,
    data: RemoteSourceSet,
    session: Session = Depends(get_session),
    locks: ModpackLocks = Depends(get_locks),
) -> ModpackOut:
    async with locked_modpack(modpack_id, session, locks) as modpack:
        try:
            return modpack_to_out(session, set_remote_source(session, modpack, data))
        except ModpackManagerError as exc:
            raise http_error(exc) from exc


@router.delete("/remote", response_model=ModpackOut)
async def clear_remote(
    modpack_id: str,
    session: Session = Depends(get_session),
    locks: ModpackLocks = Depends(get_locks),
) -> ModpackOut:
    async with locked_modpack(modpack_id, session, locks) as modpack:
        return modpack_to_out(session, clear_remote_source(session, modpack))


@router.post("/remote/check", response_model=RemoteUpdateCheck)
async def check_remote(
    modpack_id: str,
    session: Session = Depends(get_session),
    locks: ModpackLocks = Depends(get_locks),
) -> RemoteUpdateCheck:
    """Compare with the remote manifest; records the checksum when up to date."""
    async with locked_modpack(modpack_id, session, locks) as modpack:
        if not modpack.remote_url:
            raise HTTPException(400, "Modpack has no remote source")
        try:
            return await check_for_update(session, modpack)
        except ModpackManagerError as exc:
            raise http_error(exc) from exc


@router.post("/remote/apply", response_model=ImportOutcome)
async def apply_remote(
    modpack_id: str,
    session: Session = Depends(get_session),
    catalog: CatalogClient = Depends(get_catalog),
    locks: ModpackLocks = Depends(get_locks),
) -> ImportOutcome:
    """Apply the remote manifest; conflicts pause like any other import."""
    async with locked_modpack(modpack_id, session, locks) as modpack:
        if not modpack.remote_url:
            raise HTTPException(400, "Modpack has no remote source")
        try:
            return await apply_remote_update(session, catalog, modpack)
        except ModpackManagerError as exc:
            raise http_error(exc) from exc
