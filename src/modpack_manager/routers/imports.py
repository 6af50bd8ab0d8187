"""Endpoints for the two-phase manifest import."""

from pathlib import Path
from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException
from sqlmodel import Session

from modpack_manager.catalog.base import CatalogClient
from modpack_manager.database import get_session
from modpack_manager.errors import ModpackManagerError
from modpack_manager.routers.deps import (
    get_catalog,
    get_locks,
    get_modpack_or_404,
    http_error,
    locked_modpack,
    locked_share_code,
)
from modpack_manager.schemas.imports import (
    ImportFromUrl,
    ImportOutcome,
    ImportPackRequest,
    PendingImportOut,
    ResolveRequest,
)
from modpack_manager.services.import_service import (
    discard_pending_import,
    get_pending_import,
    import_native_manifest,
    import_pack_archive,
    resolve_conflicts,
)
from modpack_manager.services.locks import ModpackLocks
from modpack_manager.services.manifest_service import parse_native_manifest
from modpack_manager.services.remote_service import (
    fetch_remote_manifest,
    import_from_url,
    normalize_remote_url,
)

router = APIRouter(prefix="/imports", tags=["imports"])


@router.post("/native", response_model=ImportOutcome)
async def import_native(
    manifest: dict[str, Any] = Body(...),
    session: Session = Depends(get_session),
    catalog: CatalogClient = Depends(get_catalog),
    locks: ModpackLocks = Depends(get_locks),
) -> ImportOutcome:
    """Import a native manifest. Conflicts come back as ``kind: conflict``."""
    try:
        share_code = parse_native_manifest(manifest).share_code
        async with locked_share_code(share_code, session, locks):
            return await import_native_manifest(session, catalog, manifest)
    except ModpackManagerError as exc:
        raise http_error(exc) from exc


@router.post("/pack", response_model=ImportOutcome)
async def import_pack(
    data: ImportPackRequest,
    session: Session = Depends(get_session),
    catalog: CatalogClient = Depends(get_catalog),
) -> ImportOutcome:
    path = Path(data.path)
    if not path.is_file():
        raise HTTPException(404, f"Archive not found: {data.path}")
    try:
        return await import_pack_archive(session, catalog, path, name=data.name)
    except ModpackManagerError as exc:
        raise http_error(exc) from exc


@router.post("/url", response_model=ImportOutcome)
async def import_url(
    data: ImportFromUrl,
    session: Session = Depends(get_session),
    catalog: CatalogClient = Depends(get_catalog),
    locks: ModpackLocks = Depends(get_locks),
) -> ImportOutcome:
    """Import a published manifest and subscribe the new modpack to it."""
    try:
        url = normalize_remote_url(data.url)
        raw = await fetch_remote_manifest(url)
        share_code = parse_native_manifest(raw).share_code

        async def _fetched(_url: str) -> dict[str, Any]:
            return raw

        async with locked_share_code(share_code, session, locks):
            return await import_from_url(session, catalog, url, fetch=_fetched)
    except ModpackManagerError as exc:
        raise http_error(exc) from exc


@router.get("/{modpack_id}/pending", response_model=PendingImportOut)
async def pending(modpack_id: str, session: Session = Depends(get_session)) -> PendingImportOut:
    get_modpack_or_404(modpack_id, session)
    result = get_pending_import(session, modpack_id)
    if result is None:
        raise HTTPException(404, "No pending import for this modpack")
    return result


@router.post("/{modpack_id}/resolve", response_model=ImportOutcome)
async def resolve(
    modpack_id: str,
    data: ResolveRequest,
    session: Session = Depends(get_session),
    catalog: CatalogClient = Depends(get_catalog),
    locks: ModpackLocks = Depends(get_locks),
) -> ImportOutcome:
    """Apply conflict decisions; safe to repeat."""
    async with locked_modpack(modpack_id, session, locks):
        try:
            return await resolve_conflicts(session, catalog, modpack_id, data.resolutions)
        except ModpackManagerError as exc:
            raise http_error(exc) from exc


@router.delete("/{modpack_id}/pending", status_code=204)
async def discard(
    modpack_id: str,
    session: Session = Depends(get_session),
    locks: ModpackLocks = Depends(get_locks),
) -> None:
    async with locks.hold(modpack_id):
        try:
            discard_pending_import(session, modpack_id)
        except ModpackManagerError as exc:
            raise http_error(exc) from exc
