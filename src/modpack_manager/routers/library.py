"""Endpoints for the shared mod library."""

from fastapi import APIRouter, Depends
from sqlmodel import Session

from modpack_manager.catalog.base import CatalogClient
from modpack_manager.config import settings
from modpack_manager.constants import ContentType
from modpack_manager.database import get_session
from modpack_manager.errors import ModpackManagerError
from modpack_manager.identity import ModRef
from modpack_manager.routers.deps import get_catalog, http_error
from modpack_manager.schemas.mod import CatalogAddRequest, LibraryUpdateReport, ModCreate, ModOut
from modpack_manager.services.library_service import (
    add_mod,
    check_library_updates,
    delete_mod,
    fetch_catalog_mod,
    get_mod_or_raise,
    list_mods,
    mod_to_out,
)

router = APIRouter(prefix="/library", tags=["library"])


@router.get("/", response_model=list[ModOut])
async def list_library(
    content_type: ContentType | None = None,
    session: Session = Depends(get_session),
) -> list[ModOut]:
    return [mod_to_out(m) for m in list_mods(session, content_type)]


@router.post("/", response_model=ModOut, status_code=201)
async def add_library_mod(data: ModCreate, session: Session = Depends(get_session)) -> ModOut:
    """Record a file whose metadata the caller already has."""
    return mod_to_out(add_mod(session, data))


@router.post("/from-catalog", response_model=ModOut, status_code=201)
async def add_from_catalog(
    data: CatalogAddRequest,
    session: Session = Depends(get_session),
    catalog: CatalogClient = Depends(get_catalog),
) -> ModOut:
    """Resolve a project/file pair through the catalog and add it."""
    ref = ModRef(data.source, data.project_id, data.file_id)
    try:
        mod_data = await fetch_catalog_mod(
            catalog, ref, loader=data.loader, game_version=data.game_version
        )
    except ModpackManagerError as exc:
        raise http_error(exc) from exc
    return mod_to_out(add_mod(session, mod_data))


# Register /updates BEFORE /{mod_id} to avoid path conflict
@router.post("/updates", response_model=LibraryUpdateReport)
async def check_updates(
    game_version: str = "",
    loader: str = "",
    session: Session = Depends(get_session),
    catalog: CatalogClient = Depends(get_catalog),
) -> LibraryUpdateReport:
    return await check_library_updates(
        session,
        catalog,
        game_version=game_version,
        loader=loader,
        batch_size=settings.update_check_batch_size,
    )


@router.get("/{mod_id}", response_model=ModOut)
async def get_library_mod(mod_id: str, session: Session = Depends(get_session)) -> ModOut:
    try:
        return mod_to_out(get_mod_or_raise(session, mod_id))
    except ModpackManagerError as exc:
        raise http_error(exc) from exc


@router.delete("/{mod_id}", status_code=204)
async def remove_library_mod(mod_id: str, session: Session = Depends(get_session)) -> None:
    """Delete a mod from the library. Modpacks and history keep naming it."""
    try:
        delete_mod(session, mod_id)
    except ModpackManagerError as exc:
        raise http_error(exc) from exc
