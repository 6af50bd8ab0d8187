"""Endpoints for a modpack's version history."""

from fastapi import APIRouter, Depends
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
)
from modpack_manager.schemas.version import (
    CommitRequest,
    ModpackChange,
    RollbackPreview,
    RollbackRequest,
    RollbackResult,
    UnsavedChanges,
    VersionDetail,
    VersionHistoryOut,
    VersionOut,
)
from modpack_manager.services.locks import ModpackLocks
from modpack_manager.services.version_service import (
    compare_versions,
    create_version,
    get_history,
    get_unsaved_changes,
    get_version_or_raise,
    initialize_version_control,
    revert_unsaved_changes,
    rollback,
    validate_rollback,
    version_detail,
    version_to_out,
)

router = APIRouter(prefix="/modpacks/{modpack_id}/versions", tags=["versions"])


@router.get("/", response_model=VersionHistoryOut)
async def history(modpack_id: str, session: Session = Depends(get_session)) -> VersionHistoryOut:
    return get_history(session, get_modpack_or_404(modpack_id, session))


@router.post("/", response_model=VersionOut, status_code=201)
async def commit(
    modpack_id: str,
    data: CommitRequest,
    session: Session = Depends(get_session),
    locks: ModpackLocks = Depends(get_locks),
) -> VersionOut:
    """Commit the live state. An empty commit is rejected unless forced."""
    async with locked_modpack(modpack_id, session, locks) as modpack:
        try:
            version = create_version(session, modpack, data.message, data.tag, force=data.force)
        except ModpackManagerError as exc:
            raise http_error(exc) from exc
    return version_to_out(version)


@router.post("/init", response_model=VersionOut, status_code=201)
async def init(
    modpack_id: str,
    session: Session = Depends(get_session),
    locks: ModpackLocks = Depends(get_locks),
) -> VersionOut:
    async with locked_modpack(modpack_id, session, locks) as modpack:
        return version_to_out(initialize_version_control(session, modpack))


# Register fixed paths BEFORE /{version_id} to avoid path conflict
@router.get("/unsaved", response_model=UnsavedChanges)
async def unsaved(modpack_id: str, session: Session = Depends(get_session)) -> UnsavedChanges:
    return get_unsaved_changes(session, get_modpack_or_404(modpack_id, session))


@router.post("/unsaved/revert", response_model=list[ModpackChange])
async def revert(
    modpack_id: str,
    session: Session = Depends(get_session),
    locks: ModpackLocks = Depends(get_locks),
) -> list[ModpackChange]:
    """Discard live edits since the current version; returns what was undone."""
    async with locked_modpack(modpack_id, session, locks) as modpack:
        try:
            return revert_unsaved_changes(session, modpack)
        except ModpackManagerError as exc:
            raise http_error(exc) from exc


@router.get("/compare", response_model=list[ModpackChange])
async def compare(
    modpack_id: str,
    from_id: str,
    to_id: str,
    session: Session = Depends(get_session),
) -> list[ModpackChange]:
    modpack = get_modpack_or_404(modpack_id, session)
    try:
        return compare_versions(session, modpack, from_id, to_id)
    except ModpackManagerError as exc:
        raise http_error(exc) from exc


@router.get("/{version_id}", response_model=VersionDetail)
async def get_version(
    modpack_id: str, version_id: str, session: Session = Depends(get_session)
) -> VersionDetail:
    get_modpack_or_404(modpack_id, session)
    try:
        return version_detail(get_version_or_raise(session, modpack_id, version_id))
    except ModpackManagerError as exc:
        raise http_error(exc) from exc


@router.get("/{version_id}/rollback", response_model=RollbackPreview)
async def preview_rollback(
    modpack_id: str, version_id: str, session: Session = Depends(get_session)
) -> RollbackPreview:
    modpack = get_modpack_or_404(modpack_id, session)
    try:
        return validate_rollback(session, modpack, version_id)
    except ModpackManagerError as exc:
        raise http_error(exc) from exc


@router.post("/{version_id}/rollback", response_model=RollbackResult)
async def do_rollback(
    modpack_id: str,
    version_id: str,
    data: RollbackRequest | None = None,
    session: Session = Depends(get_session),
    catalog: CatalogClient = Depends(get_catalog),
    locks: ModpackLocks = Depends(get_locks),
) -> RollbackResult:
    """Best-effort restore; per-mod failures are reported in the result."""
    restore_configs = data.restore_configs if data else True
    async with locked_modpack(modpack_id, session, locks) as modpack:
        try:
            return await rollback(
                session, catalog, modpack, version_id, restore_configs=restore_configs
            )
        except ModpackManagerError as exc:
            raise http_error(exc) from exc
